"""
DH CRM - Routes Surveys (Khảo sát dự án)

area / volume de chaque ligne recalculés à CHAQUE sauvegarde
(jamais repris du body). surveyNo unique, généré KS-<SHORT>-<YYMMDD>-0001
quand absent.
"""

from fastapi import APIRouter, Depends
from functools import partial
import logging
import uuid

from config import db, now_iso
from routes.auth import get_current_user
from routes.customers import get_customer_or_404
from models import SurveyCreate, SurveyUpdate, SurveyStatusChange, SurveyStatus, TERMINAL_SURVEY_STATUSES
from services.errors import NotFoundError, ValidationError
from services.event_logger import log_event
from services.pricing import QuotationPricing, survey_item_metrics, survey_total_volume
from services.sanitize import merge_patch
from services.sequence import insert_with_generated_code, next_survey_no, short_name_part
from services.status_machine import LOCKED_QUOTATION_STATUSES

logger = logging.getLogger("surveys")

router = APIRouter(prefix="/surveys", tags=["Surveys"])


async def get_survey_or_404(ref: str) -> dict:
    survey = await db.surveys.find_one(
        {"$or": [{"id": ref}, {"surveyNo": ref}]},
        {"_id": 0}
    )
    if not survey:
        raise NotFoundError("Survey not found")
    return survey


def _computed_items(items: list) -> list:
    if not items:
        raise ValidationError("At least one survey item is required")
    return [survey_item_metrics(item) for item in items]


async def refresh_linked_quotations(survey: dict) -> int:
    """
    Nouveau volume du survey -> lignes non "pinned" des devis liés encore éditables.
    Retourne le nombre de devis mis à jour.
    """
    volume = survey_total_volume(survey.get("surveys"))
    quotations = await db.quotations.find(
        {"surveyRef": survey["id"], "status": {"$nin": list(LOCKED_QUOTATION_STATUSES)}},
        {"_id": 0}
    ).to_list(None)

    refreshed = 0
    for quotation in quotations:
        pricing = QuotationPricing(quotation.get("packages"), default_volume=volume)
        if not pricing.apply_survey_volume(volume):
            continue
        summary = pricing.summary(quotation.get("taxAmount", 0))
        result = await db.quotations.update_one(
            {"id": quotation["id"], "revision": quotation.get("revision", 1)},
            {"$set": {**summary, "updatedAt": now_iso()}, "$inc": {"revision": 1}}
        )
        if result.modified_count:
            refreshed += 1
        else:
            logger.warning(f"[SURVEYS] Quotation {quotation.get('quotationNo')} changed concurrently, volume not refreshed")

    if refreshed:
        logger.info(f"[SURVEYS] {survey.get('surveyNo')}: volume {volume} applied to {refreshed} quotation(s)")
    return refreshed


@router.post("")
async def create_survey(data: SurveyCreate, user: dict = Depends(get_current_user)):
    """Client résolu depuis customerRef ou depuis le plan CSKH lié"""
    care = None
    if data.careRef:
        care = await db.customer_care.find_one(
            {"$or": [{"id": data.careRef}, {"careId": data.careRef}]}, {"_id": 0}
        )
        if not care:
            raise NotFoundError("Customer care not found")

    customer_ref = data.customerRef or (care or {}).get("customerRef")
    if not customer_ref:
        raise ValidationError("customerRef is required")
    customer = await get_customer_or_404(customer_ref)

    now = now_iso()
    doc = data.model_dump(mode="json")
    doc["surveys"] = _computed_items(doc["surveys"])
    doc.update({
        "id": str(uuid.uuid4()),
        "customerRef": customer["id"],
        "careRef": care["id"] if care else None,
        "status": SurveyStatus.DRAFT.value,
        "totalVolume": survey_total_volume(doc["surveys"]),
        "quotationNo": None,
        "createdBy": user["username"],
        "createdAt": now,
        "updatedAt": now,
    })
    if doc.get("surveyNo"):
        doc["surveyNo"] = doc["surveyNo"].strip()

    part = short_name_part(customer.get("shortName"), customer.get("fullName", ""))

    survey = await insert_with_generated_code("surveys", doc, "surveyNo", partial(next_survey_no, part))

    if care:
        await db.customer_care.update_one(
            {"id": care["id"]},
            {"$set": {"surveyRef": survey["id"], "updatedAt": now}}
        )

    logger.info(f"[SURVEYS] {survey['surveyNo']} created ({survey['totalVolume']} total volume)")
    return {"success": True, "survey": survey}


@router.get("/{survey_ref}")
async def get_survey(survey_ref: str, user: dict = Depends(get_current_user)):
    survey = await get_survey_or_404(survey_ref)
    return {"survey": survey}


@router.put("/{survey_ref}")
async def update_survey(survey_ref: str, data: SurveyUpdate, user: dict = Depends(get_current_user)):
    survey = await get_survey_or_404(survey_ref)
    if survey.get("status") in TERMINAL_SURVEY_STATUSES:
        raise ValidationError(f"Survey {survey.get('surveyNo')} is {survey.get('status')} and can no longer be edited")

    update_data = merge_patch(data.model_dump(mode="json"))
    if "surveys" in update_data:
        update_data["surveys"] = _computed_items(update_data["surveys"])
        update_data["totalVolume"] = survey_total_volume(update_data["surveys"])
    update_data["updatedAt"] = now_iso()

    await db.surveys.update_one({"id": survey["id"]}, {"$set": update_data})
    updated = await db.surveys.find_one({"id": survey["id"]}, {"_id": 0})

    refreshed = 0
    if "surveys" in update_data:
        refreshed = await refresh_linked_quotations(updated)

    return {"success": True, "survey": updated, "quotationsRefreshed": refreshed}


@router.post("/{survey_ref}/status")
async def change_survey_status(survey_ref: str, data: SurveyStatusChange, user: dict = Depends(get_current_user)):
    """Libre entre statuts non terminaux; completed / cancelled sont définitifs"""
    survey = await get_survey_or_404(survey_ref)
    if survey.get("status") in TERMINAL_SURVEY_STATUSES:
        raise ValidationError(
            f"INVALID TRANSITION: survey {survey.get('surveyNo')} is {survey.get('status')}"
        )

    await db.surveys.update_one(
        {"id": survey["id"]},
        {"$set": {"status": data.status.value, "updatedAt": now_iso()}}
    )
    await log_event(
        action="survey_status",
        entity_type="survey",
        entity_id=survey["id"],
        user=user["username"],
        details={"from": survey.get("status"), "to": data.status.value}
    )

    updated = await db.surveys.find_one({"id": survey["id"]}, {"_id": 0})
    return {"success": True, "survey": updated}


@router.delete("/{survey_ref}")
async def delete_survey(survey_ref: str, user: dict = Depends(get_current_user)):
    survey = await get_survey_or_404(survey_ref)

    linked = await db.quotations.find_one({"surveyRef": survey["id"]}, {"_id": 0, "quotationNo": 1})
    if survey.get("status") == SurveyStatus.QUOTED.value or linked:
        quotation_no = (linked or {}).get("quotationNo") or survey.get("quotationNo")
        raise ValidationError(f"Survey {survey.get('surveyNo')} is used by quotation {quotation_no}")

    await db.surveys.delete_one({"id": survey["id"]})
    if survey.get("careRef"):
        await db.customer_care.update_one(
            {"id": survey["careRef"]},
            {"$set": {"surveyRef": None, "updatedAt": now_iso()}}
        )

    await log_event(
        action="survey_delete",
        entity_type="survey",
        entity_id=survey["id"],
        user=user["username"],
        details={"surveyNo": survey.get("surveyNo")}
    )

    return {"success": True, "deleted_id": survey["id"]}
