"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Routes Quotations (Báo giá)                                        ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - totaux TOUJOURS recalculés serveur (services/pricing)                     ║
║  - quotationNo fourni (unique) ou généré BG-0001                             ║
║  - approved / completed: toute édition refusée AVANT écriture                ║
║  - ids "temp_..." du formulaire remplacés avant persistance                  ║
║  - revision: écriture conditionnelle, révision périmée -> 409                ║
║  - statut: uniquement via services/status_machine                            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional
import logging
import uuid

from config import db, now_iso, today_utc
from routes.auth import get_current_user
from routes.customers import get_customer_or_404
from routes.customer_care import get_care_or_404
from routes.surveys import get_survey_or_404
from models import (
    LineEdit,
    QuotationCreate,
    QuotationStatus,
    QuotationStatusChange,
    QuotationUpdate,
    SurveyLink,
    SurveyStatus,
    TERMINAL_SURVEY_STATUSES,
)
from services.errors import ConflictError, NotFoundError, ValidationError
from services.event_logger import log_event
from services.pricing import QuotationPricing, volume_for_survey
from services.sanitize import clean_empty_refs, merge_patch, strip_placeholder_ids
from services.sequence import insert_with_generated_code, next_quotation_no
from services.status_machine import (
    LOCKED_QUOTATION_STATUSES,
    ensure_quotation_editable,
    validate_quotation_transition,
    transition_quotation,
)

logger = logging.getLogger("quotations")

router = APIRouter(prefix="/quotations", tags=["Quotations"])


# ==================== HELPERS ====================

async def get_quotation_or_404(ref: str) -> dict:
    quotation = await db.quotations.find_one(
        {"$or": [{"id": ref}, {"quotationNo": ref}]},
        {"_id": 0}
    )
    if not quotation:
        raise NotFoundError("Quotation not found")
    return quotation


def _check_revision(quotation: dict, revision: Optional[int]):
    if revision is not None and revision != quotation.get("revision", 1):
        raise ConflictError(
            f"Quotation {quotation.get('quotationNo')} was modified (revision {quotation.get('revision', 1)}), "
            f"reload and retry"
        )


async def _linkable_survey(survey_ref: Optional[str]) -> Optional[dict]:
    if not survey_ref:
        return None
    survey = await get_survey_or_404(survey_ref)
    if survey.get("status") in TERMINAL_SURVEY_STATUSES:
        raise ValidationError(f"Survey {survey.get('surveyNo')} is {survey.get('status')} and cannot be quoted")
    return survey


def _build_lines(raw_lines: List[dict], default_volume: float):
    """Lignes du formulaire -> (QuotationPricing, doublons ignorés); ids temporaires remplacés"""
    pricing = QuotationPricing(default_volume=default_volume)
    skipped = pricing.merge_lines(strip_placeholder_ids(raw_lines))
    pricing.lines = strip_placeholder_ids(pricing.lines)
    return pricing, skipped


async def _save(quotation: dict, update_data: dict) -> dict:
    """Écriture conditionnée par la révision lue; incrémente la révision"""
    update_data["updatedAt"] = now_iso()
    result = await db.quotations.update_one(
        {
            "id": quotation["id"],
            "revision": quotation.get("revision", 1),
            "status": {"$nin": list(LOCKED_QUOTATION_STATUSES)},
        },
        {"$set": update_data, "$inc": {"revision": 1}}
    )
    if result.modified_count == 0:
        raise ConflictError(f"Quotation {quotation.get('quotationNo')} changed concurrently, reload and retry")
    return await db.quotations.find_one({"id": quotation["id"]}, {"_id": 0})


async def _mark_survey_quoted(survey: dict, quotation_no: str):
    await db.surveys.update_one(
        {"id": survey["id"]},
        {"$set": {"status": SurveyStatus.QUOTED.value, "quotationNo": quotation_no, "updatedAt": now_iso()}}
    )


async def _release_survey(survey_ref: Optional[str], quotation_no: str):
    """Le survey n'est plus chiffré par ce devis: retour à "surveyed" """
    if not survey_ref:
        return
    await db.surveys.update_one(
        {"id": survey_ref, "quotationNo": quotation_no, "status": SurveyStatus.QUOTED.value},
        {"$set": {"status": SurveyStatus.SURVEYED.value, "quotationNo": None, "updatedAt": now_iso()}}
    )


# ==================== CRUD ====================

@router.post("")
async def create_quotation(data: QuotationCreate, user: dict = Depends(get_current_user)):
    """
    Crée un devis

    - client obligatoire, au moins une ligne et un package sélectionné
    - volume des lignes sans volume = Σ volumes du survey lié (1 sans survey)
    """
    if not data.customerRef:
        raise ValidationError("customer is required")
    customer = await get_customer_or_404(data.customerRef)

    if not data.packages:
        raise ValidationError("At least one service line is required")

    survey = await _linkable_survey(data.surveyRef)
    if data.careRef:
        care = await get_care_or_404(data.careRef)
    elif survey and survey.get("careRef"):
        care = await db.customer_care.find_one({"id": survey["careRef"]}, {"_id": 0})
    else:
        care = None

    raw_lines = [line.model_dump() for line in data.packages]
    pricing, skipped = _build_lines(raw_lines, volume_for_survey(survey))
    if not pricing.has_selection():
        raise ValidationError("At least one package must be selected")

    now = now_iso()
    doc = {
        "id": str(uuid.uuid4()),
        "quotationNo": (data.quotationNo or "").strip() or None,
        "customer": data.customer or customer.get("fullName"),
        "customerRef": customer["id"],
        "surveyRef": survey["id"] if survey else None,
        "careRef": care["id"] if care else None,
        "opportunityRef": data.opportunityRef or (care or {}).get("opportunityRef"),
        "date": data.date or today_utc().date().isoformat(),
        "validTo": data.validTo,
        "notes": data.notes,
        "status": QuotationStatus.DRAFT.value,
        "revision": 1,
        "createdBy": user["username"],
        "createdAt": now,
        "updatedAt": now,
    }
    doc.update(pricing.summary(data.taxAmount))

    quotation = await insert_with_generated_code("quotations", doc, "quotationNo", next_quotation_no)

    if survey:
        await _mark_survey_quoted(survey, quotation["quotationNo"])
    if care:
        await db.customer_care.update_one(
            {"id": care["id"]},
            {"$set": {"quotationRef": quotation["id"], "updatedAt": now}}
        )

    logger.info(
        f"[QUOTATIONS] {quotation['quotationNo']} created for {customer.get('customerId')} "
        f"grandTotal={quotation['grandTotal']}"
    )
    await log_event(
        action="quotation_create",
        entity_type="quotation",
        entity_id=quotation["id"],
        user=user["username"],
        details={"quotationNo": quotation["quotationNo"], "grandTotal": quotation["grandTotal"]},
        related={"customerRef": customer["id"], "surveyRef": quotation["surveyRef"]}
    )

    return {"success": True, "quotation": quotation, "warnings": skipped}


@router.get("/{quotation_ref}")
async def get_quotation(quotation_ref: str, user: dict = Depends(get_current_user)):
    quotation = await get_quotation_or_404(quotation_ref)
    return {"quotation": quotation}


@router.put("/{quotation_ref}")
async def update_quotation(quotation_ref: str, data: QuotationUpdate, user: dict = Depends(get_current_user)):
    """
    Sauvegarde du formulaire d'édition.

    Refusée AVANT toute écriture si le devis est approved / completed.
    Un changement de statut est validé AVANT la sauvegarde, puis appliqué
    par la machine à états.
    """
    quotation = await get_quotation_or_404(quotation_ref)
    ensure_quotation_editable(quotation)
    _check_revision(quotation, data.revision)

    status_changed = data.status is not None and data.status.value != quotation.get("status")
    if status_changed:
        validate_quotation_transition(quotation["quotationNo"], quotation.get("status"), data.status)

    patch = clean_empty_refs(data.model_dump(exclude={"packages", "status", "revision"}), ["surveyRef"])
    update_data = merge_patch(patch)
    warnings: List[str] = []

    if "customerRef" in update_data:
        customer = await get_customer_or_404(update_data["customerRef"])
        update_data["customerRef"] = customer["id"]
        update_data.setdefault("customer", customer.get("fullName"))

    # "" = délier le survey
    unlink = data.surveyRef == "" and bool(quotation.get("surveyRef"))
    survey_changed = unlink or (
        "surveyRef" in update_data and update_data["surveyRef"] != quotation.get("surveyRef")
    )
    survey = None
    if survey_changed:
        survey = await _linkable_survey(update_data.get("surveyRef"))
        update_data["surveyRef"] = survey["id"] if survey else None
    elif quotation.get("surveyRef"):
        survey = await db.surveys.find_one({"id": quotation["surveyRef"]}, {"_id": 0})
    volume = volume_for_survey(survey)

    if data.packages is not None:
        if not data.packages:
            raise ValidationError("At least one service line is required")
        pricing, warnings = _build_lines([line.model_dump() for line in data.packages], volume)
        if not pricing.has_selection():
            raise ValidationError("At least one package must be selected")
    else:
        pricing = QuotationPricing(quotation.get("packages"), default_volume=volume)
    if survey_changed:
        pricing.apply_survey_volume(volume)

    update_data.update(pricing.summary(update_data.get("taxAmount", quotation.get("taxAmount", 0))))

    updated = await _save(quotation, update_data)

    if survey_changed:
        await _release_survey(quotation.get("surveyRef"), quotation["quotationNo"])
        if survey:
            await _mark_survey_quoted(survey, quotation["quotationNo"])

    if status_changed:
        result = await transition_quotation(quotation["id"], data.status, user=user["username"])
        updated = result["quotation"]
        warnings.extend(result["warnings"])

    return {"success": True, "quotation": updated, "warnings": warnings}


@router.patch("/{quotation_ref}/lines/{line_index}")
async def edit_line(quotation_ref: str, line_index: int, data: LineEdit, user: dict = Depends(get_current_user)):
    """
    Édition d'une ligne (aperçu):
    - packageName + unitPrice: prix du package (créé si absent)
    - volume: volume manuel, la ligne devient "pinned"
    """
    quotation = await get_quotation_or_404(quotation_ref)
    ensure_quotation_editable(quotation)
    _check_revision(quotation, data.revision)

    if data.unitPrice is None and data.volume is None:
        raise ValidationError("unitPrice or volume is required")

    pricing = QuotationPricing(quotation.get("packages"))
    if data.volume is not None:
        pricing.set_volume(line_index, data.volume)
    if data.unitPrice is not None:
        if not data.packageName:
            raise ValidationError("packageName is required to set a unit price")
        pricing.set_unit_price(line_index, data.packageName, data.unitPrice)

    pricing.lines = strip_placeholder_ids(pricing.lines)
    updated = await _save(quotation, pricing.summary(quotation.get("taxAmount", 0)))
    return {"success": True, "quotation": updated, "line": updated["packages"][line_index]}


@router.post("/{quotation_ref}/survey")
async def relink_survey(quotation_ref: str, data: SurveyLink, user: dict = Depends(get_current_user)):
    """
    Change le survey lié (None = délier). Les lignes non "pinned" prennent
    le nouveau volume; les volumes saisis à la main sont conservés.
    """
    quotation = await get_quotation_or_404(quotation_ref)
    ensure_quotation_editable(quotation)
    _check_revision(quotation, data.revision)

    survey = await _linkable_survey(data.surveyRef)
    volume = volume_for_survey(survey)

    pricing = QuotationPricing(quotation.get("packages"), default_volume=volume)
    updated_lines = pricing.apply_survey_volume(volume)

    update_data = pricing.summary(quotation.get("taxAmount", 0))
    update_data["surveyRef"] = survey["id"] if survey else None
    updated = await _save(quotation, update_data)

    if update_data["surveyRef"] != quotation.get("surveyRef"):
        await _release_survey(quotation.get("surveyRef"), quotation["quotationNo"])
        if survey:
            await _mark_survey_quoted(survey, quotation["quotationNo"])

    logger.info(
        f"[QUOTATIONS] {quotation['quotationNo']} survey -> {update_data['surveyRef']} "
        f"(volume {volume}, {updated_lines} line(s) updated)"
    )
    return {"success": True, "quotation": updated, "linesUpdated": updated_lines}


@router.get("/{quotation_ref}/comparison")
async def package_comparison(
    quotation_ref: str,
    headers: Optional[List[str]] = Query(None, description="Packages à comparer (défaut: catalogue actif)"),
    user: dict = Depends(get_current_user)
):
    """Total par package côte à côte (Gói A vs Gói B)"""
    quotation = await get_quotation_or_404(quotation_ref)

    if not headers:
        catalog = await db.service_packages.find({"active": True}, {"_id": 0, "packageName": 1}).to_list(50)
        headers = [p["packageName"] for p in catalog] or None

    pricing = QuotationPricing(quotation.get("packages"))
    comparison = pricing.package_comparison(headers)
    comparison["byPackage"] = pricing.aggregate_by_package_name()
    comparison["quotationNo"] = quotation["quotationNo"]
    return comparison


@router.post("/{quotation_ref}/status")
async def change_quotation_status(
    quotation_ref: str,
    data: QuotationStatusChange,
    user: dict = Depends(get_current_user)
):
    quotation = await get_quotation_or_404(quotation_ref)
    result = await transition_quotation(quotation["id"], data.status, user=user["username"])
    return {"success": True, **result}


@router.delete("/{quotation_ref}")
async def delete_quotation(quotation_ref: str, user: dict = Depends(get_current_user)):
    quotation = await get_quotation_or_404(quotation_ref)
    if quotation.get("status") in LOCKED_QUOTATION_STATUSES:
        raise ValidationError(f"Quotation {quotation['quotationNo']} is {quotation['status']} and cannot be deleted")

    await db.quotations.delete_one({"id": quotation["id"]})
    await _release_survey(quotation.get("surveyRef"), quotation["quotationNo"])
    if quotation.get("careRef"):
        await db.customer_care.update_one(
            {"id": quotation["careRef"], "quotationRef": quotation["id"]},
            {"$set": {"quotationRef": None, "updatedAt": now_iso()}}
        )

    await log_event(
        action="quotation_delete",
        entity_type="quotation",
        entity_id=quotation["id"],
        user=user["username"],
        details={"quotationNo": quotation["quotationNo"], "status": quotation.get("status")}
    )

    return {"success": True, "deleted_id": quotation["id"]}
