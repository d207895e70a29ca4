"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - State Machine Transition Testing (Direct Python Tests)             ║
║                                                                              ║
║  1. Adjacency tables (quotation / care)                                      ║
║  2. Invalid transitions are blocked                                          ║
║  3. Required fields for care closing                                         ║
║  4. Survey cascade is best-effort                                            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid

import pytest

from config import db, now_iso
from services.errors import NotFoundError, ValidationError
from services import status_machine
from services.status_machine import (
    VALID_CARE_TRANSITIONS,
    VALID_QUOTATION_TRANSITIONS,
    ensure_quotation_editable,
    transition_care,
    transition_quotation,
    validate_care_transition,
    validate_quotation_transition,
)

ALL_QUOTATION_STATUSES = ["draft", "sent", "approved", "rejected", "completed"]


async def make_quotation(status="draft", survey_ref=None) -> dict:
    doc = {
        "id": str(uuid.uuid4()),
        "quotationNo": f"BG-{uuid.uuid4().hex[:6]}",
        "status": status,
        "surveyRef": survey_ref,
        "revision": 1,
        "packages": [],
        "createdAt": now_iso(),
    }
    await db.quotations.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def make_survey(status="quoted") -> dict:
    doc = {"id": str(uuid.uuid4()), "surveyNo": f"KS-{uuid.uuid4().hex[:6]}", "status": status, "surveys": []}
    await db.surveys.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def make_care(status="Chờ báo cáo") -> dict:
    doc = {"id": str(uuid.uuid4()), "careId": f"CSKH{uuid.uuid4().hex[:7]}", "status": status}
    await db.customer_care.insert_one(doc)
    doc.pop("_id", None)
    return doc


class TestQuotationTransitions:
    """Adjacency: draft -> sent -> approved|rejected ; approved -> completed"""

    @pytest.mark.parametrize("from_status,allowed", [
        ("draft", {"sent"}),
        ("sent", {"approved", "rejected"}),
        ("approved", {"completed"}),
        ("rejected", set()),
        ("completed", set()),
    ])
    def test_only_listed_targets_are_reachable(self, from_status, allowed):
        assert set(VALID_QUOTATION_TRANSITIONS[from_status]) == allowed
        for target in ALL_QUOTATION_STATUSES:
            if target in allowed:
                assert validate_quotation_transition("BG-0001", from_status, target)
            else:
                with pytest.raises(ValidationError) as exc_info:
                    validate_quotation_transition("BG-0001", from_status, target)
                assert "INVALID TRANSITION" in exc_info.value.detail

    def test_draft_to_approved_blocked(self):
        with pytest.raises(ValidationError):
            validate_quotation_transition("BG-0001", "draft", "approved")
        print("✅ draft -> approved blocked")

    def test_locked_statuses(self):
        for status in ("approved", "completed"):
            with pytest.raises(ValidationError):
                ensure_quotation_editable({"quotationNo": "BG-0001", "status": status})
        for status in ("draft", "sent", "rejected"):
            ensure_quotation_editable({"quotationNo": "BG-0001", "status": status})


class TestTransitionQuotation:
    @pytest.mark.asyncio
    async def test_full_path_bumps_revision_and_logs(self):
        quotation = await make_quotation()

        for target in ("sent", "approved", "completed"):
            result = await transition_quotation(quotation["id"], target, user="sales01")
            assert result["quotation"]["status"] == target

        assert result["quotation"]["revision"] == 4
        events = await db.event_log.find({"entity_id": quotation["id"]}, {"_id": 0}).to_list(10)
        assert [e["details"]["to"] for e in events] == ["sent", "approved", "completed"]

    @pytest.mark.asyncio
    async def test_invalid_transition_writes_nothing(self):
        quotation = await make_quotation()

        with pytest.raises(ValidationError):
            await transition_quotation(quotation["id"], "approved")

        stored = await db.quotations.find_one({"id": quotation["id"]})
        assert stored["status"] == "draft"
        assert stored["revision"] == 1
        assert await db.event_log.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_not_found(self):
        with pytest.raises(NotFoundError):
            await transition_quotation("missing", "sent")

    @pytest.mark.asyncio
    async def test_approved_completes_survey(self):
        survey = await make_survey()
        quotation = await make_quotation("sent", survey["id"])

        result = await transition_quotation(quotation["id"], "approved")

        assert result["warnings"] == []
        assert (await db.surveys.find_one({"id": survey["id"]}))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_rejected_cancels_survey(self):
        survey = await make_survey()
        quotation = await make_quotation("sent", survey["id"])

        await transition_quotation(quotation["id"], "rejected")

        assert (await db.surveys.find_one({"id": survey["id"]}))["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cascade_failure_is_a_warning(self):
        """Missing survey: the quotation still moves, the caller gets a warning"""
        quotation = await make_quotation("sent", "deleted-survey")

        result = await transition_quotation(quotation["id"], "approved")

        assert result["quotation"]["status"] == "approved"
        assert len(result["warnings"]) == 1
        assert "deleted-survey" in result["warnings"][0]

    @pytest.mark.asyncio
    async def test_cascade_exception_is_a_warning(self, monkeypatch):
        survey = await make_survey()
        quotation = await make_quotation("sent", survey["id"])

        class SurveysDown:
            def __getattr__(self, name):
                return getattr(db, name)

            class surveys:
                @staticmethod
                async def update_one(*args, **kwargs):
                    raise RuntimeError("connection reset")

        monkeypatch.setattr(status_machine, "db", SurveysDown())
        result = await transition_quotation(quotation["id"], "rejected")

        assert result["quotation"]["status"] == "rejected"
        assert result["warnings"]


class TestCareTransitions:
    def test_terminal_states(self):
        assert VALID_CARE_TRANSITIONS["Hoàn thành"] == []
        assert VALID_CARE_TRANSITIONS["Hủy"] == []

    def test_done_requires_result(self):
        care = {"careId": "CSKH0326001", "status": "Chờ báo cáo"}
        with pytest.raises(ValidationError) as exc_info:
            validate_care_transition(care, "Hoàn thành", {"careResult": "   "})
        assert "careResult" in exc_info.value.detail
        assert validate_care_transition(care, "Hoàn thành", {"careResult": "Khách đồng ý khảo sát"})

    def test_cancel_requires_group_and_reason(self):
        care = {"careId": "CSKH0326001", "status": "Chờ báo cáo"}
        with pytest.raises(ValidationError) as exc_info:
            validate_care_transition(care, "Hủy", {"rejectGroup": "Giá"})
        assert "rejectReason" in exc_info.value.detail
        assert validate_care_transition(care, "Hủy", {"rejectGroup": "Giá", "rejectReason": "Quá cao"})

    def test_no_way_back(self):
        for status in ("Hoàn thành", "Hủy"):
            with pytest.raises(ValidationError):
                validate_care_transition({"status": status}, "Chờ báo cáo")
            with pytest.raises(ValidationError):
                validate_care_transition({"status": status}, "Hoàn thành", {"careResult": "x"})

    @pytest.mark.asyncio
    async def test_transition_care_persists_fields(self):
        care = await make_care()

        updated = await transition_care(
            care["id"], "Hủy", {"rejectGroup": "Giá", "rejectReason": "Ngân sách thấp"}, user="sales01"
        )

        assert updated["status"] == "Hủy"
        assert updated["rejectReason"] == "Ngân sách thấp"
        event = await db.event_log.find_one({"entity_id": care["id"]})
        assert event["action"] == "care_status"
        assert event["user"] == "sales01"
