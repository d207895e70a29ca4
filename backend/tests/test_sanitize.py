"""
DH CRM - Record Upsert / Sanitize Layer Tests
"""

from services.sanitize import (
    RecordState,
    clean_empty_refs,
    is_placeholder_id,
    merge_patch,
    state_filter,
    strip_placeholder_ids,
)


class TestPlaceholderIds:
    def test_placeholder_detection(self):
        assert is_placeholder_id("temp_1718000000")
        assert not is_placeholder_id("8c1f1d6e-1111-4222-8333-944455556666")
        assert not is_placeholder_id(None)

    def test_placeholders_replaced_on_lines_and_packages(self):
        lines = [{
            "id": "temp_line_1",
            "service": "Thiết kế nhà",
            "packages": [
                {"_id": "temp_pkg_1", "packageName": "A"},
                {"id": "keep-me", "packageName": "B"},
            ],
        }]
        cleaned = strip_placeholder_ids(lines)

        line = cleaned[0]
        assert not is_placeholder_id(line["id"])
        assert "_id" not in line["packages"][0]
        assert not is_placeholder_id(line["packages"][0]["id"])
        assert line["packages"][1]["id"] == "keep-me"
        # l'entrée n'est pas modifiée
        assert lines[0]["id"] == "temp_line_1"
        print("✅ no placeholder id reaches storage")

    def test_legacy_underscore_id_kept(self):
        cleaned = strip_placeholder_ids([{"_id": "65f0c0ffee", "packages": []}])
        assert cleaned[0]["id"] == "65f0c0ffee"
        assert "_id" not in cleaned[0]

    def test_every_row_gets_an_id(self):
        cleaned = strip_placeholder_ids([{"packages": [{"packageName": "A"}]}])
        assert cleaned[0]["id"]
        assert cleaned[0]["packages"][0]["id"]

    def test_none(self):
        assert strip_placeholder_ids(None) == []


class TestPatch:
    def test_merge_patch_skips_none_and_immutable(self):
        patch = {
            "fullName": "Lê Văn B",
            "phone": None,
            "customerId": "KH-HACK-9999",
            "createdBy": "someone",
            "revision": 99,
        }
        assert merge_patch(patch) == {"fullName": "Lê Văn B"}

    def test_merge_patch_keeps_falsy_values(self):
        assert merge_patch({"isActive": False, "taxAmount": 0}) == {"isActive": False, "taxAmount": 0}

    def test_clean_empty_refs(self):
        data = clean_empty_refs({"surveyRef": "", "quotationRef": "q1", "notes": ""}, ["surveyRef", "quotationRef"])
        assert data == {"surveyRef": None, "quotationRef": "q1", "notes": ""}


class TestRecordState:
    def test_active_is_default(self):
        assert state_filter({"phone": "090"}) == {"phone": "090", "isDel": {"$ne": True}}

    def test_deleted_and_all(self):
        assert state_filter({}, RecordState.DELETED) == {"isDel": True}
        assert state_filter({"phone": "090"}, RecordState.ALL) == {"phone": "090"}
