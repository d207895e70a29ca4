"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Sequence Generator                                                 ║
║                                                                              ║
║  Codes lisibles: KH-ANV-0001, OPP-20261019-0001, BG-0001, CSKH1026001 ...    ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - un compteur par (prefix, scope) dans la collection "counters"             ║
║  - incrément ATOMIQUE ($inc via find_one_and_update), jamais read-max+1      ║
║  - premier usage d'un scope: seed via $max depuis les codes déjà en base     ║
║  - insertion protégée par index unique + retry sur DuplicateKeyError         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
import unicodedata
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import db, now_iso, today_utc, SEQUENCE_MAX_RETRIES
from services.errors import ConflictError

logger = logging.getLogger("sequence")


class SequenceSpec:
    """Format of one family of codes and where its legacy codes live"""

    def __init__(self, prefix: str, collection: str, field: str, width: int = 4, separator: str = "-"):
        self.prefix = prefix
        self.collection = collection
        self.field = field
        self.width = width
        self.separator = separator

    def key(self, scope_key: str = "") -> str:
        return f"{self.prefix}:{scope_key}" if scope_key else self.prefix

    def stem(self, scope_key: str = "") -> str:
        parts = [self.prefix, scope_key] if scope_key else [self.prefix]
        return self.separator.join(parts)

    def format(self, scope_key: str, seq: int) -> str:
        return f"{self.stem(scope_key)}{self.separator}{str(seq).zfill(self.width)}"

    def legacy_regex(self, scope_key: str = "") -> str:
        return f"^{re.escape(self.stem(scope_key) + self.separator)}\\d{{{self.width},}}$"

    def parse(self, code: str, scope_key: str = "") -> int:
        head = self.stem(scope_key) + self.separator
        tail = code[len(head):] if code and code.startswith(head) else ""
        return int(tail) if tail.isdigit() else 0


SEQUENCES: Dict[str, SequenceSpec] = {
    "KH": SequenceSpec("KH", "customers", "customerId"),
    "OPP": SequenceSpec("OPP", "opportunities", "opportunityNo"),
    "BG": SequenceSpec("BG", "quotations", "quotationNo"),
    "KS": SequenceSpec("KS", "surveys", "surveyNo"),
    # CSKH<MM><YY><seq>: format historique sans séparateur, suffixe sur 3 chiffres
    "CSKH": SequenceSpec("CSKH", "customer_care", "careId", width=3, separator=""),
    "PKG": SequenceSpec("PKG", "service_packages", "code"),
    "DV": SequenceSpec("DV", "services", "code"),
}


def get_spec(prefix: str) -> SequenceSpec:
    spec = SEQUENCES.get(prefix)
    if not spec:
        raise ValueError(f"Unknown sequence prefix: {prefix}")
    return spec


# ════════════════════════════════════════════════════════════════════════════
# ATOMIC COUNTERS
# ════════════════════════════════════════════════════════════════════════════

async def _legacy_max(spec: SequenceSpec, scope_key: str) -> int:
    """Greatest sequence already used by stored documents for this scope (numeric, not lexicographic)"""
    cursor = db[spec.collection].find(
        {spec.field: {"$regex": spec.legacy_regex(scope_key)}},
        {"_id": 0, spec.field: 1}
    )
    highest = 0
    async for doc in cursor:
        highest = max(highest, spec.parse(doc.get(spec.field), scope_key))
    return highest


async def _seed_counter(spec: SequenceSpec, scope_key: str):
    key = spec.key(scope_key)
    if await db.counters.find_one({"key": key}, {"_id": 1}):
        return

    start = await _legacy_max(spec, scope_key)
    try:
        # $max: plusieurs seeds concurrents convergent vers la même valeur
        await db.counters.update_one(
            {"key": key},
            {"$max": {"seq": start}, "$setOnInsert": {"created_at": now_iso()}},
            upsert=True
        )
    except DuplicateKeyError:
        await db.counters.update_one({"key": key}, {"$max": {"seq": start}})

    if start:
        logger.info(f"[SEQUENCE] Counter {key} seeded from existing data at {start}")


async def reserve_block(spec: SequenceSpec, scope_key: str, count: int = 1) -> int:
    """
    Reserve `count` consecutive numbers for (prefix, scope) in one atomic step.
    Returns the first number of the block.
    """
    if count < 1:
        raise ValueError("count must be >= 1")

    await _seed_counter(spec, scope_key)
    key = spec.key(scope_key)

    for _ in range(SEQUENCE_MAX_RETRIES):
        try:
            doc = await db.counters.find_one_and_update(
                {"key": key},
                {"$inc": {"seq": count}, "$set": {"updated_at": now_iso()}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
            return doc["seq"] - count + 1
        except DuplicateKeyError:
            # upsert concurrent sur un compteur supprimé entre-temps
            continue

    raise ConflictError(f"Could not allocate a sequence number for {key}")


async def next_code(prefix: str, scope_key: str = "") -> str:
    """Next unique code for (prefix, scope)"""
    spec = get_spec(prefix)
    seq = await reserve_block(spec, scope_key, 1)
    return spec.format(scope_key, seq)


# ════════════════════════════════════════════════════════════════════════════
# SCOPE KEYS
# ════════════════════════════════════════════════════════════════════════════

def strip_tones(text: str) -> str:
    """Supprime les accents vietnamiens (NFD + marques combinantes, đ -> d)"""
    text = (text or "").replace("đ", "d").replace("Đ", "D")
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def derive_short_name(full_name: str) -> str:
    """
    Short name used when the customer has none: last word + initials of the
    other words, without tones, lower case.
    "Nguyễn Văn A" -> "anv"
    """
    parts = strip_tones(full_name).lower().split()
    if not parts:
        return ""
    last = parts[-1]
    initials = "".join(p[0] for p in parts[:-1])
    return last + initials


def short_name_part(short_name: Optional[str], full_name: str = "") -> str:
    """Scope key for customer codes: alphanumeric, upper case, 10 chars max"""
    source = (short_name or "").strip() or derive_short_name(full_name)
    part = re.sub(r"[^A-Za-z0-9]", "", strip_tones(source)).upper()[:10]
    return part or "UNKNOWN"


def day_scope(day: Optional[datetime] = None) -> str:
    return (day or today_utc()).strftime("%Y%m%d")


def month_scope(day: Optional[datetime] = None) -> str:
    return (day or today_utc()).strftime("%m%y")


def survey_scope(short_part: str, day: Optional[datetime] = None) -> str:
    return f"{short_part}-{(day or today_utc()).strftime('%y%m%d')}"


# ════════════════════════════════════════════════════════════════════════════
# ENTITY GENERATORS
# ════════════════════════════════════════════════════════════════════════════

async def next_customer_id(short_part: str) -> str:
    return await next_code("KH", short_part)


async def next_opportunity_no(day: Optional[datetime] = None) -> str:
    return await next_code("OPP", day_scope(day))


async def next_quotation_no() -> str:
    return await next_code("BG")


async def next_care_id(day: Optional[datetime] = None) -> str:
    return await next_code("CSKH", month_scope(day))


async def next_survey_no(short_part: str, day: Optional[datetime] = None) -> str:
    return await next_code("KS", survey_scope(short_part, day))


async def next_package_code() -> str:
    return await next_code("PKG")


async def next_service_code() -> str:
    return await next_code("DV")


# ════════════════════════════════════════════════════════════════════════════
# INSERT WITH RETRY
# ════════════════════════════════════════════════════════════════════════════

def _conflict_on(error: DuplicateKeyError, field: str) -> bool:
    key_pattern = (error.details or {}).get("keyPattern") or {}
    return not key_pattern or field in key_pattern


async def insert_with_generated_code(
    collection: str,
    doc: dict,
    field: str,
    generate: Callable[[], Awaitable[str]]
) -> dict:
    """
    Insert `doc`, assigning doc[field] from `generate` when absent.

    A caller-supplied code that already exists is a ConflictError straight
    away. A generated code that collides (counter reset, legacy data) is
    regenerated up to SEQUENCE_MAX_RETRIES times.
    """
    supplied = bool(doc.get(field))

    for attempt in range(1, SEQUENCE_MAX_RETRIES + 1):
        if not supplied:
            doc[field] = await generate()
        try:
            await db[collection].insert_one(doc)
            doc.pop("_id", None)
            return doc
        except DuplicateKeyError as e:
            doc.pop("_id", None)
            if supplied or not _conflict_on(e, field):
                raise ConflictError(f"{field} '{doc.get(field)}' already exists")
            logger.warning(
                f"[SEQUENCE] Duplicate {field}={doc[field]} on {collection} "
                f"(attempt {attempt}/{SEQUENCE_MAX_RETRIES}), regenerating"
            )

    raise ConflictError(f"Could not generate a unique {field}, please retry")


# ════════════════════════════════════════════════════════════════════════════
# BATCH IMPORT CACHE
# ════════════════════════════════════════════════════════════════════════════

class SequenceBatch:
    """
    Sequence cache for ONE import call.

    reserve() takes a whole block per scope key in a single round trip;
    next() then hands codes out from memory. Blocks come from the same
    atomic counters, so concurrent single creations never collide with
    the batch. Never keep an instance beyond the import it was built for.
    """

    def __init__(self, prefix: str):
        self.spec = get_spec(prefix)
        self._next: Dict[str, int] = {}
        self._last: Dict[str, int] = {}
        self.round_trips = 0

    async def reserve(self, scope_key: str, count: int):
        first = await reserve_block(self.spec, scope_key, count)
        self.round_trips += 1
        self._next[scope_key] = first
        self._last[scope_key] = first + count - 1

    async def next(self, scope_key: str) -> str:
        seq = self._next.get(scope_key)
        if seq is None or seq > self._last[scope_key]:
            await self.reserve(scope_key, 1)
            seq = self._next[scope_key]
        self._next[scope_key] = seq + 1
        return self.spec.format(scope_key, seq)
