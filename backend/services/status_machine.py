"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Quotation / Care State Machine                                     ║
║                                                                              ║
║  RÈGLES STRICTES DE TRANSITION DE STATUT                                     ║
║                                                                              ║
║  SEUL CE MODULE change quotation.status et customer_care.status              ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - aucune transition hors de la table d'adjacence                            ║
║  - quotation approved / completed = VERROUILLÉE (aucune édition)             ║
║  - care "Hoàn thành" IMPLIQUE careResult non vide                            ║
║  - care "Hủy" IMPLIQUE rejectGroup ET rejectReason non vides                 ║
║  - cascade vers le survey = best-effort, ne bloque JAMAIS la transition      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List, Optional

from config import db, now_iso
from models.care import CareStatus
from models.quotation import QuotationStatus
from models.survey import SurveyStatus
from services.errors import ConflictError, NotFoundError, ValidationError
from services.event_logger import log_event

logger = logging.getLogger("status_machine")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_QUOTATION_TRANSITIONS = {
    "draft": ["sent"],
    "sent": ["approved", "rejected"],
    "approved": ["completed"],
    "rejected": [],  # TERMINAL
    "completed": [],  # TERMINAL
}

LOCKED_QUOTATION_STATUSES = {QuotationStatus.APPROVED.value, QuotationStatus.COMPLETED.value}

# statut du survey lié après la transition du devis
SURVEY_CASCADE = {
    "approved": SurveyStatus.COMPLETED.value,
    "rejected": SurveyStatus.CANCELLED.value,
}

VALID_CARE_TRANSITIONS = {
    CareStatus.PENDING.value: [CareStatus.DONE.value, CareStatus.CANCELLED.value],
    CareStatus.DONE.value: [],  # TERMINAL
    CareStatus.CANCELLED.value: [],  # TERMINAL
}


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else status


def _filled(value: Optional[str]) -> bool:
    return bool(value and str(value).strip())


# ════════════════════════════════════════════════════════════════════════════
# QUOTATION
# ════════════════════════════════════════════════════════════════════════════

def validate_quotation_transition(quotation_no: str, from_status: str, to_status: str) -> bool:
    from_status, to_status = _status_value(from_status), _status_value(to_status)
    valid_next = VALID_QUOTATION_TRANSITIONS.get(from_status, [])

    if to_status not in valid_next:
        raise ValidationError(
            f"INVALID TRANSITION: quotation {quotation_no} cannot go from '{from_status}' to '{to_status}'. "
            f"Valid transitions from '{from_status}': {valid_next}"
        )

    return True


def is_quotation_locked(quotation: dict) -> bool:
    return quotation.get("status") in LOCKED_QUOTATION_STATUSES


def ensure_quotation_editable(quotation: dict):
    """À appeler AVANT toute écriture sur un devis"""
    if is_quotation_locked(quotation):
        raise ValidationError(
            f"Quotation {quotation.get('quotationNo')} is {quotation.get('status')} and can no longer be edited"
        )


async def _cascade_survey(quotation: dict, to_status: str) -> List[str]:
    """
    Met à jour le survey lié. Toute erreur devient un warning:
    la transition du devis est déjà persistée et reste valide.
    """
    survey_status = SURVEY_CASCADE.get(to_status)
    survey_ref = quotation.get("surveyRef")
    if not survey_status or not survey_ref:
        return []

    quotation_no = quotation.get("quotationNo")
    try:
        result = await db.surveys.update_one(
            {"id": survey_ref},
            {"$set": {"status": survey_status, "updatedAt": now_iso()}}
        )
    except Exception as e:
        logger.warning(f"[QUOTATION_SM] Survey {survey_ref} cascade failed for {quotation_no}: {e}")
        return [f"Linked survey {survey_ref} could not be set to '{survey_status}'"]

    if result.matched_count == 0:
        logger.warning(f"[QUOTATION_SM] Survey {survey_ref} linked to {quotation_no} not found")
        return [f"Linked survey {survey_ref} not found"]

    logger.info(f"[QUOTATION_SM] Survey {survey_ref} -> {survey_status} (quotation {quotation_no})")
    return []


async def transition_quotation(quotation_id: str, to_status, user: str = "system") -> Dict[str, Any]:
    """
    🔒 SEULE FONCTION AUTORISÉE pour changer le statut d'un devis

    1. Valide la transition
    2. Écrit avec un filtre sur le statut courant (transition concurrente -> ConflictError)
    3. Cascade best-effort vers le survey lié

    Returns:
        {"quotation": <doc mis à jour>, "warnings": [...]}
    """
    to_status = _status_value(to_status)

    quotation = await db.quotations.find_one({"id": quotation_id}, {"_id": 0})
    if not quotation:
        raise NotFoundError("Quotation not found")

    from_status = quotation.get("status", QuotationStatus.DRAFT.value)
    validate_quotation_transition(quotation.get("quotationNo"), from_status, to_status)

    now = now_iso()
    result = await db.quotations.update_one(
        {"id": quotation_id, "status": from_status},
        {"$set": {"status": to_status, "statusChangedAt": now, "updatedAt": now}, "$inc": {"revision": 1}}
    )
    if result.modified_count == 0:
        raise ConflictError(f"Quotation {quotation.get('quotationNo')} changed status concurrently, reload and retry")

    logger.info(f"[QUOTATION_SM] Quotation {quotation.get('quotationNo')} {from_status} -> {to_status} by {user}")

    await log_event(
        action="quotation_status",
        entity_type="quotation",
        entity_id=quotation_id,
        user=user,
        details={"from": from_status, "to": to_status, "quotationNo": quotation.get("quotationNo")},
        related={"surveyRef": quotation.get("surveyRef"), "customerRef": quotation.get("customerRef")}
    )

    warnings = await _cascade_survey(quotation, to_status)

    updated = await db.quotations.find_one({"id": quotation_id}, {"_id": 0})
    return {"quotation": updated, "warnings": warnings}


# ════════════════════════════════════════════════════════════════════════════
# CUSTOMER CARE
# ════════════════════════════════════════════════════════════════════════════

def validate_care_transition(care: dict, to_status, payload: Optional[dict] = None) -> bool:
    """
    Vérifie la transition ET les champs requis par l'état cible.
    payload: champs envoyés avec le changement de statut (careResult, rejectReason...)
    """
    payload = payload or {}
    to_status = _status_value(to_status)
    from_status = care.get("status", CareStatus.PENDING.value)
    valid_next = VALID_CARE_TRANSITIONS.get(from_status, [])

    if to_status not in valid_next:
        raise ValidationError(
            f"INVALID TRANSITION: care {care.get('careId')} cannot go from '{from_status}' to '{to_status}'. "
            f"Valid transitions from '{from_status}': {valid_next}"
        )

    if to_status == CareStatus.DONE.value and not _filled(payload.get("careResult")):
        raise ValidationError("careResult is required to complete a care plan")

    if to_status == CareStatus.CANCELLED.value:
        missing = [f for f in ("rejectGroup", "rejectReason") if not _filled(payload.get(f))]
        if missing:
            raise ValidationError(f"{' and '.join(missing)} required to cancel a care plan")

    return True


def is_care_terminal(care: dict) -> bool:
    return not VALID_CARE_TRANSITIONS.get(care.get("status"), [])


async def transition_care(care_id: str, to_status, payload: Optional[dict] = None, user: str = "system") -> dict:
    """
    🔒 SEULE FONCTION AUTORISÉE pour clôturer un plan CSKH (Hoàn thành / Hủy)
    """
    payload = payload or {}
    to_status = _status_value(to_status)

    care = await db.customer_care.find_one({"id": care_id}, {"_id": 0})
    if not care:
        raise NotFoundError("Customer care not found")

    validate_care_transition(care, to_status, payload)

    now = now_iso()
    update_data = {"status": to_status, "statusChangedAt": now, "updatedAt": now}
    if to_status == CareStatus.DONE.value:
        update_data["careResult"] = payload["careResult"].strip()
        if payload.get("careClassification"):
            update_data["careClassification"] = payload["careClassification"]
        update_data["actualCareDate"] = payload.get("actualCareDate") or care.get("actualCareDate") or now
    else:
        update_data["rejectGroup"] = payload["rejectGroup"].strip()
        update_data["rejectReason"] = payload["rejectReason"].strip()

    result = await db.customer_care.update_one(
        {"id": care_id, "status": care.get("status")},
        {"$set": update_data}
    )
    if result.modified_count == 0:
        raise ConflictError(f"Care {care.get('careId')} changed status concurrently, reload and retry")

    logger.info(f"[CARE_SM] Care {care.get('careId')} {care.get('status')} -> {to_status} by {user}")

    await log_event(
        action="care_status",
        entity_type="care",
        entity_id=care_id,
        user=user,
        details={
            "from": care.get("status"),
            "to": to_status,
            "careId": care.get("careId"),
            "rejectReason": update_data.get("rejectReason"),
        },
        related={"customerRef": care.get("customerRef"), "opportunityRef": care.get("opportunityRef")}
    )

    return await db.customer_care.find_one({"id": care_id}, {"_id": 0})
