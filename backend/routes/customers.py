"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Routes Customers                                                   ║
║                                                                              ║
║  - customerId attribué UNE fois à la création: KH-<SHORT>-0001               ║
║  - shortName dérivé du nom complet quand absent ("Nguyễn Văn A" -> anv)      ║
║  - suppression = soft delete (isDel), lectures filtrées par RecordState      ║
║  - import: lignes déjà parsées, codes réservés par bloc (SequenceBatch)      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends, Query
from functools import partial
from typing import Dict, List, Optional
import logging
import uuid

from config import db, now_iso
from routes.auth import get_current_user
from models import CustomerCreate, CustomerUpdate, CustomerImportRequest
from services.errors import ConflictError, NotFoundError, ValidationError
from services.event_logger import log_event
from services.sanitize import RecordState, merge_patch, state_filter
from services.sequence import (
    SequenceBatch,
    derive_short_name,
    insert_with_generated_code,
    next_customer_id,
    short_name_part,
)

logger = logging.getLogger("customers")

router = APIRouter(prefix="/customers", tags=["Customers"])


# ==================== HELPERS ====================

async def find_customer(ref: str, state: RecordState = RecordState.ACTIVE) -> Optional[dict]:
    """Résout un client par id interne ou par customerId"""
    if not ref:
        return None
    return await db.customers.find_one(
        state_filter({"$or": [{"id": ref}, {"customerId": ref}]}, state),
        {"_id": 0}
    )


async def get_customer_or_404(ref: str, state: RecordState = RecordState.ACTIVE) -> dict:
    customer = await find_customer(ref, state)
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


async def _ensure_phone_free(phone: Optional[str], exclude_id: Optional[str] = None):
    if not phone:
        return
    query = state_filter({"phone": phone})
    if exclude_id:
        query["id"] = {"$ne": exclude_id}
    if await db.customers.find_one(query, {"_id": 1}):
        raise ConflictError(f"Phone number {phone} already exists")


def _new_customer_doc(data: dict, username: str) -> dict:
    now = now_iso()
    doc = {k: v for k, v in data.items() if v not in (None, "")}
    doc["shortName"] = doc.get("shortName") or derive_short_name(doc["fullName"])
    doc.update({
        "id": str(uuid.uuid4()),
        "isActive": doc.get("isActive", True),
        "isDel": False,
        "createdBy": username,
        "createdAt": now,
        "updatedAt": now,
    })
    return doc


# ==================== CRUD ====================

@router.post("")
async def create_customer(data: CustomerCreate, user: dict = Depends(get_current_user)):
    """
    Crée un client

    RÈGLE: customerId est toujours généré ici, jamais lu du body
    """
    if not data.fullName:
        raise ValidationError("fullName is required")

    await _ensure_phone_free(data.phone)

    doc = _new_customer_doc(data.model_dump(), user["username"])
    part = short_name_part(doc["shortName"], doc["fullName"])

    customer = await insert_with_generated_code(
        "customers", doc, "customerId", partial(next_customer_id, part)
    )

    logger.info(f"[CUSTOMERS] {customer['customerId']} created by {user['username']}")
    await log_event(
        action="customer_create",
        entity_type="customer",
        entity_id=customer["id"],
        user=user["username"],
        details={"customerId": customer["customerId"], "fullName": customer["fullName"]}
    )

    return {"success": True, "customer": customer}


@router.get("/{customer_ref}")
async def get_customer(
    customer_ref: str,
    state: RecordState = Query(RecordState.ACTIVE, description="active | deleted | all"),
    user: dict = Depends(get_current_user)
):
    """Récupère un client (id ou customerId); les clients supprimés seulement si demandé"""
    customer = await get_customer_or_404(customer_ref, state)
    return {"customer": customer}


@router.put("/{customer_ref}")
async def update_customer(customer_ref: str, data: CustomerUpdate, user: dict = Depends(get_current_user)):
    """Met à jour un client; customerId n'est jamais modifié"""
    customer = await get_customer_or_404(customer_ref)

    update_data = merge_patch(data.model_dump())
    if "fullName" in update_data and not update_data["fullName"]:
        raise ValidationError("fullName cannot be empty")
    if update_data.get("phone") and update_data["phone"] != customer.get("phone"):
        await _ensure_phone_free(update_data["phone"], exclude_id=customer["id"])

    update_data["updatedAt"] = now_iso()
    await db.customers.update_one({"id": customer["id"]}, {"$set": update_data})

    updated = await db.customers.find_one({"id": customer["id"]}, {"_id": 0})
    return {"success": True, "customer": updated}


@router.delete("/{customer_ref}")
async def delete_customer(customer_ref: str, user: dict = Depends(get_current_user)):
    """Soft delete: les opportunités / devis liés ne sont pas touchés"""
    customer = await get_customer_or_404(customer_ref)

    now = now_iso()
    await db.customers.update_one(
        {"id": customer["id"]},
        {"$set": {"isDel": True, "deletedAt": now, "deletedBy": user["username"], "updatedAt": now}}
    )

    await log_event(
        action="customer_delete",
        entity_type="customer",
        entity_id=customer["id"],
        user=user["username"],
        details={"customerId": customer.get("customerId")}
    )

    return {"success": True, "deleted_id": customer["id"]}


@router.post("/{customer_ref}/restore")
async def restore_customer(customer_ref: str, user: dict = Depends(get_current_user)):
    customer = await get_customer_or_404(customer_ref, RecordState.DELETED)
    await _ensure_phone_free(customer.get("phone"), exclude_id=customer["id"])

    await db.customers.update_one(
        {"id": customer["id"]},
        {"$set": {"isDel": False, "updatedAt": now_iso()}, "$unset": {"deletedAt": "", "deletedBy": ""}}
    )

    await log_event(
        action="customer_restore",
        entity_type="customer",
        entity_id=customer["id"],
        user=user["username"],
        details={"customerId": customer.get("customerId")}
    )

    restored = await db.customers.find_one({"id": customer["id"]}, {"_id": 0})
    return {"success": True, "customer": restored}


# ==================== IMPORT ====================

@router.post("/import")
async def import_customers(data: CustomerImportRequest, user: dict = Depends(get_current_user)):
    """
    Import de lignes déjà parsées (fichier Excel côté client).

    - ligne sans fullName -> erreur (numéro de ligne du fichier)
    - téléphone déjà connu (base ou lignes précédentes) -> ignorée
    - un bloc de codes réservé par shortName en UN aller-retour
    """
    errors: List[dict] = []
    skipped: List[dict] = []
    pending: List[dict] = []
    seen_phones = set()

    for offset, row in enumerate(data.rows):
        row_no = data.firstRow + offset
        if not row.fullName:
            errors.append({"row": row_no, "error": "fullName is required"})
            continue

        if row.phone:
            if row.phone in seen_phones or await db.customers.find_one(
                state_filter({"phone": row.phone}), {"_id": 1}
            ):
                skipped.append({"row": row_no, "phone": row.phone, "reason": "duplicate phone"})
                continue
            seen_phones.add(row.phone)

        doc = _new_customer_doc(row.model_dump(), user["username"])
        doc["source"] = doc.get("source") or "Import"
        pending.append({"row": row_no, "doc": doc, "part": short_name_part(doc["shortName"], doc["fullName"])})

    # cache de séquences limité à CET import
    batch = SequenceBatch("KH")
    per_scope: Dict[str, int] = {}
    for item in pending:
        per_scope[item["part"]] = per_scope.get(item["part"], 0) + 1
    for part, count in per_scope.items():
        await batch.reserve(part, count)

    inserted = []
    for item in pending:
        try:
            customer = await insert_with_generated_code(
                "customers", item["doc"], "customerId", partial(batch.next, item["part"])
            )
        except ConflictError as e:
            errors.append({"row": item["row"], "error": e.detail})
            continue
        inserted.append(customer)

    logger.info(
        f"[CUSTOMERS_IMPORT] {len(inserted)} inserted, {len(skipped)} skipped, {len(errors)} errors "
        f"({len(per_scope)} scopes, {batch.round_trips} counter round trips)"
    )
    await log_event(
        action="customer_import",
        entity_type="customer",
        entity_id="import",
        user=user["username"],
        details={"inserted": len(inserted), "skipped": len(skipped), "errors": len(errors)}
    )

    return {
        "success": True,
        "inserted": len(inserted),
        "customers": inserted,
        "skipped": skipped,
        "errors": errors
    }
