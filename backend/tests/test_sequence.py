"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Sequence Generator Tests                                           ║
║                                                                              ║
║  1. Codes formatés par famille (KH, OPP, BG, CSKH, KS, PKG, DV)              ║
║  2. Unicité sous concurrence (compteur atomique)                             ║
║  3. Seed depuis les codes déjà en base                                       ║
║  4. Import: un bloc par scope, cache limité à l'import                       ║
║  5. Retry sur doublon d'index unique                                         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
from datetime import datetime, timezone

import pytest

from config import db
from services.errors import ConflictError
from services.sequence import (
    SequenceBatch,
    derive_short_name,
    get_spec,
    insert_with_generated_code,
    next_care_id,
    next_code,
    next_customer_id,
    next_opportunity_no,
    next_package_code,
    next_quotation_no,
    next_survey_no,
    short_name_part,
    strip_tones,
)

DAY = datetime(2026, 3, 7, tzinfo=timezone.utc)


class TestShortName:
    def test_strip_tones(self):
        assert strip_tones("Nguyễn Văn Đức") == "Nguyen Van Duc"

    def test_derive_short_name_initials_plus_last_word(self):
        """last word + initials of the others, lower case"""
        assert derive_short_name("Nguyen Van A") == "anv"
        assert derive_short_name("Nguyễn Văn A") == "anv"
        assert derive_short_name("Trần Thị Bích Ngọc") == "ngocttb"

    def test_derive_short_name_single_word(self):
        assert derive_short_name("Smith") == "smith"
        assert derive_short_name("   ") == ""

    def test_short_name_part(self):
        assert short_name_part("smith") == "SMITH"
        assert short_name_part(None, "Nguyen Van A") == "ANV"
        assert short_name_part("Công ty ABC-123 Việt Nam") == "CONGTYABC1"
        assert short_name_part("", "") == "UNKNOWN"


class TestCodeFormats:
    @pytest.mark.asyncio
    async def test_customer_codes(self):
        assert await next_customer_id("SMITH") == "KH-SMITH-0001"
        assert await next_customer_id("SMITH") == "KH-SMITH-0002"
        # scope indépendant
        assert await next_customer_id("ANV") == "KH-ANV-0001"

    @pytest.mark.asyncio
    async def test_opportunity_numbers_reset_each_day(self):
        assert await next_opportunity_no(DAY) == "OPP-20260307-0001"
        assert await next_opportunity_no(DAY) == "OPP-20260307-0002"
        assert await next_opportunity_no(datetime(2026, 3, 8, tzinfo=timezone.utc)) == "OPP-20260308-0001"

    @pytest.mark.asyncio
    async def test_care_id_month_year_scope(self):
        """CSKH<MM><YY><NNN>, true sequence instead of a random suffix"""
        assert await next_care_id(DAY) == "CSKH0326001"
        assert await next_care_id(DAY) == "CSKH0326002"
        assert await next_care_id(datetime(2026, 4, 1, tzinfo=timezone.utc)) == "CSKH0426001"

    @pytest.mark.asyncio
    async def test_global_scopes(self):
        assert await next_quotation_no() == "BG-0001"
        assert await next_package_code() == "PKG-0001"
        assert await next_code("DV") == "DV-0001"

    @pytest.mark.asyncio
    async def test_survey_numbers(self):
        assert await next_survey_no("ANV", DAY) == "KS-ANV-260307-0001"

    @pytest.mark.asyncio
    async def test_unknown_prefix(self):
        with pytest.raises(ValueError):
            await next_code("XX")


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_codes_are_unique_and_gapless(self):
        """N concurrent nextCode("KH", "SMITH") -> KH-SMITH-0001..000N"""
        n = 25
        codes = await asyncio.gather(*[next_code("KH", "SMITH") for _ in range(n)])

        assert len(set(codes)) == n
        assert sorted(codes) == [f"KH-SMITH-{i:04d}" for i in range(1, n + 1)]
        print(f"✅ {n} concurrent codes, no duplicate, no gap")

    @pytest.mark.asyncio
    async def test_concurrent_inserts(self):
        async def create():
            return await insert_with_generated_code(
                "customers", {"fullName": "John Smith"}, "customerId", lambda: next_customer_id("SMITH")
            )

        docs = await asyncio.gather(*[create() for _ in range(10)])
        assert len({d["customerId"] for d in docs}) == 10
        assert await db.customers.count_documents({}) == 10


class TestLegacySeed:
    @pytest.mark.asyncio
    async def test_counter_seeded_from_existing_codes(self):
        """Codes created before the counter existed are never re-issued"""
        await db.customers.insert_many([
            {"customerId": "KH-SMITH-0007"},
            {"customerId": "KH-SMITH-0003"},
            {"customerId": "KH-OTHER-0042"},
        ])
        assert await next_customer_id("SMITH") == "KH-SMITH-0008"
        assert await next_customer_id("NEW") == "KH-NEW-0001"

    @pytest.mark.asyncio
    async def test_care_seed_uses_scope(self):
        await db.customer_care.insert_one({"careId": "CSKH0326014"})
        assert await next_care_id(DAY) == "CSKH0326015"

    @pytest.mark.asyncio
    async def test_seed_compares_numbers_not_strings(self):
        await db.customers.insert_many([
            {"customerId": "KH-X-9999"},
            {"customerId": "KH-X-10000"},
        ])
        assert await next_customer_id("X") == "KH-X-10001"

    def test_parse(self):
        spec = get_spec("CSKH")
        assert spec.parse("CSKH0326014", "0326") == 14
        assert spec.parse("CSKH0426014", "0326") == 0
        assert get_spec("KH").parse("KH-SMITH-0012", "SMITH") == 12


class TestInsertRetry:
    @pytest.mark.asyncio
    async def test_generated_duplicate_is_regenerated(self):
        """Counter behind the data (e.g. reset): the insert retries with a new code"""
        await db.quotations.insert_one({"quotationNo": "BG-0001"})
        await db.counters.insert_one({"key": "BG", "seq": 0})

        doc = await insert_with_generated_code("quotations", {"id": "q1"}, "quotationNo", next_quotation_no)
        assert doc["quotationNo"] == "BG-0002"

    @pytest.mark.asyncio
    async def test_supplied_duplicate_is_conflict(self):
        await db.quotations.insert_one({"quotationNo": "BG-2026-01"})

        with pytest.raises(ConflictError) as exc_info:
            await insert_with_generated_code(
                "quotations", {"quotationNo": "BG-2026-01"}, "quotationNo", next_quotation_no
            )
        assert "already exists" in exc_info.value.detail


class TestSequenceBatch:
    @pytest.mark.asyncio
    async def test_one_round_trip_per_scope(self):
        batch = SequenceBatch("KH")
        await batch.reserve("ANV", 3)
        await batch.reserve("SMITH", 2)

        codes = [await batch.next("ANV") for _ in range(3)] + [await batch.next("SMITH") for _ in range(2)]

        assert codes == ["KH-ANV-0001", "KH-ANV-0002", "KH-ANV-0003", "KH-SMITH-0001", "KH-SMITH-0002"]
        assert batch.round_trips == 2

    @pytest.mark.asyncio
    async def test_batch_does_not_collide_with_single_creation(self):
        batch = SequenceBatch("KH")
        await batch.reserve("ANV", 2)

        # création unitaire pendant l'import: prend le numéro après le bloc
        assert await next_customer_id("ANV") == "KH-ANV-0003"
        assert await batch.next("ANV") == "KH-ANV-0001"
        assert await batch.next("ANV") == "KH-ANV-0002"

    @pytest.mark.asyncio
    async def test_exhausted_block_reserves_lazily(self):
        batch = SequenceBatch("KH")
        await batch.reserve("ANV", 1)
        assert await batch.next("ANV") == "KH-ANV-0001"
        assert await batch.next("ANV") == "KH-ANV-0002"
        assert await batch.next("NEW") == "KH-NEW-0001"
        assert batch.round_trips == 3
