"""
DH CRM - Surveys / Catalog / Media API Tests
"""

import pytest
import pytest_asyncio

from config import db, today_utc
from routes.surveys import refresh_linked_quotations
from services import blob_storage


@pytest_asyncio.fixture
async def customer(api, customer_payload):
    r = await api.post("/api/customers", json=customer_payload)
    return r.json()["customer"]


ITEMS = [
    {"name": "Phòng khách", "unit": "m2", "length": 5, "width": 4},
    {"name": "Tầng 1", "unit": "m3", "length": 2, "width": 3, "coefficient": 1.5, "area": 1, "volume": 1},
]


class TestSurveys:
    @pytest.mark.asyncio
    async def test_metrics_recomputed_and_number(self, api, customer):
        r = await api.post("/api/surveys", json={
            "customerRef": customer["customerId"], "surveyDate": "2026-03-07", "surveys": ITEMS
        })
        assert r.status_code == 200, r.text
        survey = r.json()["survey"]

        assert [i["area"] for i in survey["surveys"]] == [20, 6]
        assert [i["volume"] for i in survey["surveys"]] == [20, 9]
        assert survey["totalVolume"] == 29
        assert survey["status"] == "draft"
        assert survey["surveyNo"] == f"KS-ANV-{today_utc().strftime('%y%m%d')}-0001"
        print(f"✅ {survey['surveyNo']} totalVolume={survey['totalVolume']}")

    @pytest.mark.asyncio
    async def test_customer_from_care(self, api, customer):
        care = (await api.post("/api/customer-care", json={
            "customerRef": customer["id"], "carePerson": "sales01"
        })).json()["care"]

        r = await api.post("/api/surveys", json={"careRef": care["careId"], "surveyDate": "2026-03-07", "surveys": ITEMS})
        survey = r.json()["survey"]
        assert survey["customerRef"] == customer["id"]
        assert survey["careRef"] == care["id"]
        assert (await db.customer_care.find_one({"id": care["id"]}))["surveyRef"] == survey["id"]

    @pytest.mark.asyncio
    async def test_items_required(self, api, customer):
        r = await api.post("/api/surveys", json={"customerRef": customer["id"], "surveyDate": "2026-03-07", "surveys": []})
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_terminal_survey_is_frozen(self, api, customer):
        survey = (await api.post("/api/surveys", json={
            "customerRef": customer["id"], "surveyDate": "2026-03-07", "surveys": ITEMS
        })).json()["survey"]

        r = await api.post(f"/api/surveys/{survey['id']}/status", json={"status": "cancelled"})
        assert r.status_code == 200

        r = await api.put(f"/api/surveys/{survey['id']}", json={"surveyNotes": "x"})
        assert r.status_code == 400
        r = await api.post(f"/api/surveys/{survey['id']}/status", json={"status": "draft"})
        assert r.status_code == 400

        # un survey annulé ne peut plus être chiffré
        r = await api.post("/api/quotations", json={
            "customerRef": customer["id"],
            "surveyRef": survey["id"],
            "packages": [{"service": "Thiết kế nhà", "packages": [{"packageName": "A", "unitPrice": 1}]}],
        })
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_volume_refresh_reaches_every_linked_quotation(self):
        await db.quotations.insert_many([
            {
                "id": f"q{i}", "quotationNo": f"BG-{i:04d}", "surveyRef": "s1", "status": "draft", "revision": 1,
                "packages": [{"serviceGroup": "G", "service": "S", "volume": 1, "volumePinned": False,
                              "packages": [{"packageName": "A", "unitPrice": 10}]}],
            }
            for i in range(101)
        ])

        refreshed = await refresh_linked_quotations({"id": "s1", "surveyNo": "KS-1", "surveys": [{"length": 2, "width": 3}]})
        assert refreshed == 101
        last = await db.quotations.find_one({"id": "q100"})
        assert last["packages"][0]["volume"] == 6
        assert last["totalAmount"] == 60


class TestCatalog:
    @pytest.mark.asyncio
    async def test_package_codes_and_case_insensitive_names(self, api):
        r = await api.post("/api/catalog/packages", json={"packageName": "Gói Cơ Bản"})
        assert r.json()["package"]["code"] == "PKG-0001"

        r = await api.post("/api/catalog/packages", json={"packageName": "gói cơ bản "})
        assert r.status_code == 409

        r = await api.post("/api/catalog/services", json={"serviceName": "Thiết kế nhà"})
        assert r.json()["service"]["code"] == "DV-0001"

    @pytest.mark.asyncio
    async def test_latest_pricing(self, api):
        await api.post("/api/catalog/pricing", json={
            "serviceGroupName": "Thiết kế", "serviceName": "Thiết kế nhà", "packageName": "Gói cơ bản", "unitPrice": 450_000
        })
        r = await api.post("/api/catalog/pricing", json={
            "serviceGroupName": "Thiết kế", "serviceName": "Thiết kế nhà", "packageName": "Gói cơ bản", "unitPrice": 500_000
        })
        assert r.status_code == 409

        r = await api.get("/api/catalog/pricing/latest", params={"serviceName": "THIẾT KẾ NHÀ"})
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["count"] == 1
        assert body["packages"]["Gói cơ bản"]["unitPrice"] == 450_000

        pricing_id = (await db.service_pricing.find_one({}))["id"]
        r = await api.post(f"/api/catalog/pricing/{pricing_id}/deactivate")
        assert r.status_code == 200
        r = await api.post("/api/catalog/pricing", json={
            "serviceGroupName": "Thiết kế", "serviceName": "Thiết kế nhà", "packageName": "Gói cơ bản", "unitPrice": 500_000
        })
        assert r.status_code == 200


class TestMedia:
    @pytest.mark.asyncio
    async def test_upload_and_download(self, api, tmp_path, monkeypatch):
        monkeypatch.setattr(blob_storage, "MEDIA_DIR", tmp_path)

        r = await api.post(
            "/api/media",
            files={"file": ("bao-gia.pdf", b"%PDF-1.4 test", "application/pdf")},
            data={"folder": "quotations"},
        )
        assert r.status_code == 200, r.text
        uploaded = r.json()["file"]
        assert uploaded["format"] == "pdf"
        assert uploaded["name"] == "bao-gia.pdf"

        media_id = uploaded["url"].rstrip("/").split("/")[-1]
        r = await api.get(f"/api/media/file/{media_id}")
        assert r.status_code == 200
        assert r.content == b"%PDF-1.4 test"

    @pytest.mark.asyncio
    async def test_rejected_extension(self, api, tmp_path, monkeypatch):
        monkeypatch.setattr(blob_storage, "MEDIA_DIR", tmp_path)
        r = await api.post("/api/media", files={"file": ("run.exe", b"MZ", "application/octet-stream")})
        assert r.status_code == 400
