"""
DH CRM - Record Upsert / Sanitize Layer

Nettoie les documents avant persistance:
- ids temporaires créés côté formulaire ("temp_...") remplacés par de vrais ids
- références vides ("") converties en None
- patch partiel -> document $set, champs immuables ignorés
- soft delete: lecture par état explicite (Active / Deleted / All)
"""

import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

TEMP_ID_PREFIX = "temp_"

IMMUTABLE_FIELDS = {
    "_id",
    "id",
    "customerId",
    "opportunityNo",
    "quotationNo",
    "careId",
    "surveyNo",
    "createdBy",
    "createdAt",
    "revision",
}


def is_placeholder_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


def _strip_ids(record: dict) -> dict:
    cleaned = dict(record)
    # _id: ancien format des sous-documents, converti en id string
    legacy = cleaned.pop("_id", None)
    if not cleaned.get("id") or is_placeholder_id(cleaned["id"]):
        if legacy and not is_placeholder_id(legacy):
            cleaned["id"] = str(legacy)
        else:
            cleaned["id"] = str(uuid.uuid4())
    return cleaned


def strip_placeholder_ids(lines: Optional[List[dict]], nested: str = "packages") -> List[dict]:
    """
    Remove client-side placeholder ids from lines and their nested rows,
    then give every sub-record a real id.
    """
    result = []
    for line in lines or []:
        cleaned = _strip_ids(line)
        if isinstance(cleaned.get(nested), list):
            cleaned[nested] = [_strip_ids(row) for row in cleaned[nested]]
        result.append(cleaned)
    return result


def clean_empty_refs(data: dict, fields: Iterable[str]) -> dict:
    """"" -> None pour les références et dates optionnelles"""
    for field in fields:
        if data.get(field) == "":
            data[field] = None
    return data


def merge_patch(patch: Dict[str, Any], immutable: Iterable[str] = IMMUTABLE_FIELDS) -> Dict[str, Any]:
    """$set document from a partial update: None means "not sent"."""
    blocked = set(immutable)
    return {k: v for k, v in patch.items() if v is not None and k not in blocked}


# ════════════════════════════════════════════════════════════════════════════
# SOFT DELETE
# ════════════════════════════════════════════════════════════════════════════

class RecordState(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"
    ALL = "all"


def state_filter(query: Optional[dict] = None, state: RecordState = RecordState.ACTIVE) -> dict:
    """
    Every read of a soft-deletable collection goes through here so that a
    deleted record never leaks because of a forgotten filter.
    """
    scoped = dict(query or {})
    if state == RecordState.ACTIVE:
        scoped["isDel"] = {"$ne": True}
    elif state == RecordState.DELETED:
        scoped["isDel"] = True
    return scoped
