"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Routes Customer Care (Kế hoạch CSKH)                               ║
║                                                                              ║
║  - careId: CSKH<MM><YY><NNN>, séquence par mois                              ║
║  - création TOUJOURS en "Chờ báo cáo"                                        ║
║  - clôture (Hoàn thành / Hủy) uniquement via POST /{id}/status               ║
║  - plan clôturé = plus aucune modification                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends
from typing import Optional
import logging
import uuid

from config import db, now_iso
from routes.auth import get_current_user
from routes.customers import get_customer_or_404
from routes.opportunities import get_opportunity_or_404
from models import CareCreate, CareUpdate, CareStatusChange, CareStatus
from services.errors import NotFoundError, ValidationError
from services.event_logger import log_event
from services.sanitize import clean_empty_refs, merge_patch
from services.sequence import insert_with_generated_code, next_care_id
from services.status_machine import LOCKED_QUOTATION_STATUSES, is_care_terminal, is_quotation_locked, transition_care

logger = logging.getLogger("customer_care")

router = APIRouter(prefix="/customer-care", tags=["Customer Care"])

# "" envoyé par le formulaire = lien retiré
REF_FIELDS = ["opportunityRef", "surveyRef", "quotationRef", "timeFrom", "timeTo", "actualCareDate"]


async def get_care_or_404(ref: str) -> dict:
    care = await db.customer_care.find_one(
        {"$or": [{"id": ref}, {"careId": ref}]},
        {"_id": 0}
    )
    if not care:
        raise NotFoundError("Customer care not found")
    return care


async def _sync_opportunity_demands(opportunity_ref: Optional[str], services: Optional[list]):
    """Les services qui intéressent le client alimentent les demandes de l'opportunité"""
    if not opportunity_ref or not services:
        return
    await db.opportunities.update_one(
        {"id": opportunity_ref},
        {"$addToSet": {"demands": {"$each": services}}, "$set": {"updatedAt": now_iso()}}
    )


async def _link_back(care: dict):
    """careRef posé sur le survey et le devis liés"""
    now = now_iso()
    if care.get("surveyRef"):
        await db.surveys.update_one(
            {"id": care["surveyRef"]},
            {"$set": {"careRef": care["id"], "updatedAt": now}}
        )
    if care.get("quotationRef"):
        quotation = await db.quotations.find_one({"id": care["quotationRef"]}, {"_id": 0, "status": 1})
        if quotation and is_quotation_locked(quotation):
            logger.info(f"[CARE] Quotation {care['quotationRef']} locked, careRef not written back")
            return
        await db.quotations.update_one(
            {"id": care["quotationRef"]},
            {"$set": {"careRef": care["id"], "updatedAt": now}}
        )


async def _unlink_back(before: dict, after: dict):
    """careRef retiré du survey / devis dont le plan s'est détaché"""
    now = now_iso()
    old_survey = before.get("surveyRef")
    if old_survey and old_survey != after.get("surveyRef"):
        await db.surveys.update_one(
            {"id": old_survey, "careRef": before["id"]},
            {"$set": {"careRef": None, "updatedAt": now}}
        )
    old_quotation = before.get("quotationRef")
    if old_quotation and old_quotation != after.get("quotationRef"):
        # devis verrouillé: jamais réécrit
        await db.quotations.update_one(
            {"id": old_quotation, "careRef": before["id"], "status": {"$nin": list(LOCKED_QUOTATION_STATUSES)}},
            {"$set": {"careRef": None, "updatedAt": now}}
        )


@router.post("")
async def create_care(data: CareCreate, user: dict = Depends(get_current_user)):
    """Crée un plan CSKH; le statut envoyé par le client n'est jamais lu"""
    customer = await get_customer_or_404(data.customerRef)

    doc = clean_empty_refs(data.model_dump(mode="json"), REF_FIELDS)
    if doc.get("opportunityRef"):
        opportunity = await get_opportunity_or_404(doc["opportunityRef"])
        doc["opportunityRef"] = opportunity["id"]

    now = now_iso()
    doc.update({
        "id": str(uuid.uuid4()),
        "customerRef": customer["id"],
        "customerInfo": {
            "customerId": customer.get("customerId"),
            "fullName": customer.get("fullName"),
            "shortName": customer.get("shortName"),
        },
        "status": CareStatus.PENDING.value,
        "createdBy": user["username"],
        "createdAt": now,
        "updatedAt": now,
    })

    care = await insert_with_generated_code("customer_care", doc, "careId", next_care_id)

    if care.get("opportunityRef"):
        await db.opportunities.update_one(
            {"id": care["opportunityRef"]},
            {"$addToSet": {"careHistory": care["id"]}, "$set": {"updatedAt": now}}
        )
        await _sync_opportunity_demands(care["opportunityRef"], care.get("interestedServices"))
    await _link_back(care)

    logger.info(f"[CARE] {care['careId']} created for {customer.get('customerId')} by {user['username']}")
    return {"success": True, "care": care}


@router.get("/{care_ref}")
async def get_care(care_ref: str, user: dict = Depends(get_current_user)):
    care = await get_care_or_404(care_ref)
    return {"care": care}


@router.put("/{care_ref}")
async def update_care(care_ref: str, data: CareUpdate, user: dict = Depends(get_current_user)):
    """Modifie un plan encore "Chờ báo cáo" (hors statut)"""
    care = await get_care_or_404(care_ref)
    if is_care_terminal(care):
        raise ValidationError(f"Care {care.get('careId')} is '{care.get('status')}' and can no longer be edited")

    patch = clean_empty_refs(data.model_dump(mode="json", exclude_unset=True), REF_FIELDS)
    cleared = [f for f in REF_FIELDS if f in patch and patch[f] is None]
    if "carePerson" in patch and not (patch["carePerson"] or "").strip():
        raise ValidationError("carePerson is required")

    update_data = merge_patch(patch)
    for field in cleared:
        update_data[field] = None

    if update_data.get("opportunityRef") and update_data["opportunityRef"] != care.get("opportunityRef"):
        opportunity = await get_opportunity_or_404(update_data["opportunityRef"])
        update_data["opportunityRef"] = opportunity["id"]
        await db.opportunities.update_one(
            {"id": opportunity["id"]},
            {"$addToSet": {"careHistory": care["id"]}}
        )
        if care.get("opportunityRef"):
            await db.opportunities.update_one(
                {"id": care["opportunityRef"]},
                {"$pull": {"careHistory": care["id"]}}
            )
    elif "opportunityRef" in cleared and care.get("opportunityRef"):
        await db.opportunities.update_one(
            {"id": care["opportunityRef"]},
            {"$pull": {"careHistory": care["id"]}}
        )

    update_data["updatedAt"] = now_iso()
    await db.customer_care.update_one({"id": care["id"]}, {"$set": update_data})

    updated = await db.customer_care.find_one({"id": care["id"]}, {"_id": 0})
    if "interestedServices" in update_data:
        await _sync_opportunity_demands(updated.get("opportunityRef"), updated.get("interestedServices"))
    await _unlink_back(care, updated)
    await _link_back(updated)

    return {"success": True, "care": updated}


@router.post("/{care_ref}/status")
async def change_care_status(care_ref: str, data: CareStatusChange, user: dict = Depends(get_current_user)):
    """
    Clôture le plan:
    - "Hoàn thành" exige careResult
    - "Hủy" exige rejectGroup + rejectReason
    """
    care = await get_care_or_404(care_ref)
    updated = await transition_care(care["id"], data.status, data.model_dump(), user=user["username"])
    return {"success": True, "care": updated}


@router.delete("/{care_ref}")
async def delete_care(care_ref: str, user: dict = Depends(get_current_user)):
    care = await get_care_or_404(care_ref)

    await db.customer_care.delete_one({"id": care["id"]})
    if care.get("opportunityRef"):
        await db.opportunities.update_one(
            {"id": care["opportunityRef"]},
            {"$pull": {"careHistory": care["id"]}}
        )

    await log_event(
        action="care_delete",
        entity_type="care",
        entity_id=care["id"],
        user=user["username"],
        details={"careId": care.get("careId"), "status": care.get("status")}
    )

    return {"success": True, "deleted_id": care["id"]}
