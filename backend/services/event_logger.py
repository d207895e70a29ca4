"""
DH CRM - Event Logger

Audit trail for status changes, code assignment and deletions.
Single function to call from any route/service.
"""

import logging
import uuid
from config import db, now_iso

logger = logging.getLogger("event_logger")


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. quotation_status, care_status, customer_delete, customer_import
        entity_type: customer | opportunity | care | survey | quotation | catalog
        entity_id: ID of the primary entity
        user: username of the actor
        details: free-form dict (from/to status, reason, counts...)
        related: linked entity IDs (surveyRef, customerRef...)
    """
    event = {
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    }
    try:
        await db.event_log.insert_one(event)
    except Exception as e:
        # l'audit ne doit jamais faire échouer l'opération principale
        logger.error(f"[EVENT_LOG] Failed to record {action} on {entity_type} {entity_id}: {e}")
    event.pop("_id", None)
    return event
