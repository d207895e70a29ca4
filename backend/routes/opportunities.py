"""
DH CRM - Routes Opportunities (Cơ hội)

opportunityNo: OPP-<YYYYMMDD>-0001, séquence par jour
opportunityValue: toujours recalculé ici = unitPrice × probability / 100
"""

from fastapi import APIRouter, Depends
import logging
import uuid

from config import db, now_iso
from routes.auth import get_current_user
from routes.customers import get_customer_or_404
from models import OpportunityCreate, OpportunityUpdate
from services.errors import NotFoundError
from services.event_logger import log_event
from services.pricing import opportunity_value
from services.sanitize import merge_patch
from services.sequence import insert_with_generated_code, next_opportunity_no

logger = logging.getLogger("opportunities")

router = APIRouter(prefix="/opportunities", tags=["Opportunities"])


async def get_opportunity_or_404(ref: str) -> dict:
    opportunity = await db.opportunities.find_one(
        {"$or": [{"id": ref}, {"opportunityNo": ref}]},
        {"_id": 0}
    )
    if not opportunity:
        raise NotFoundError("Opportunity not found")
    return opportunity


@router.post("")
async def create_opportunity(data: OpportunityCreate, user: dict = Depends(get_current_user)):
    customer = await get_customer_or_404(data.customerRef)

    now = now_iso()
    doc = data.model_dump(mode="json")
    doc.update({
        "id": str(uuid.uuid4()),
        "customerRef": customer["id"],
        "customerId": customer.get("customerId"),
        "opportunityValue": opportunity_value(data.unitPrice, data.probability),
        "careHistory": [],
        "createdBy": user["username"],
        "createdAt": now,
        "updatedAt": now,
    })

    opportunity = await insert_with_generated_code(
        "opportunities", doc, "opportunityNo", next_opportunity_no
    )

    logger.info(f"[OPPORTUNITIES] {opportunity['opportunityNo']} created for {customer.get('customerId')}")
    return {"success": True, "opportunity": opportunity}


@router.get("/{opportunity_ref}")
async def get_opportunity(opportunity_ref: str, user: dict = Depends(get_current_user)):
    opportunity = await get_opportunity_or_404(opportunity_ref)
    return {"opportunity": opportunity}


@router.put("/{opportunity_ref}")
async def update_opportunity(opportunity_ref: str, data: OpportunityUpdate, user: dict = Depends(get_current_user)):
    """
    Mise à jour partielle. Le statut peut prendre n'importe quelle valeur de
    l'enum; opportunityValue suit unitPrice / probability.
    """
    opportunity = await get_opportunity_or_404(opportunity_ref)

    update_data = merge_patch(data.model_dump(mode="json"))
    update_data["opportunityValue"] = opportunity_value(
        update_data.get("unitPrice", opportunity.get("unitPrice", 0)),
        update_data.get("probability", opportunity.get("probability", 0)),
    )
    update_data["updatedAt"] = now_iso()

    await db.opportunities.update_one({"id": opportunity["id"]}, {"$set": update_data})

    if "status" in update_data and update_data["status"] != opportunity.get("status"):
        await log_event(
            action="opportunity_status",
            entity_type="opportunity",
            entity_id=opportunity["id"],
            user=user["username"],
            details={"from": opportunity.get("status"), "to": update_data["status"]}
        )

    updated = await db.opportunities.find_one({"id": opportunity["id"]}, {"_id": 0})
    return {"success": True, "opportunity": updated}


@router.delete("/{opportunity_ref}")
async def delete_opportunity(opportunity_ref: str, user: dict = Depends(get_current_user)):
    opportunity = await get_opportunity_or_404(opportunity_ref)

    await db.opportunities.delete_one({"id": opportunity["id"]})
    # les plans CSKH gardent leur historique mais perdent le lien
    await db.customer_care.update_many(
        {"opportunityRef": opportunity["id"]},
        {"$set": {"opportunityRef": None, "updatedAt": now_iso()}}
    )

    await log_event(
        action="opportunity_delete",
        entity_type="opportunity",
        entity_id=opportunity["id"],
        user=user["username"],
        details={"opportunityNo": opportunity.get("opportunityNo")}
    )

    return {"success": True, "deleted_id": opportunity["id"]}
