"""
DH CRM - Test fixtures

MongoDB remplacé par mongomock-motor AVANT l'import des routes/services:
tous les modules font `from config import db`.
Run: cd backend && pytest tests/ -v
"""

import uuid

import httpx
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

import config

config.client = AsyncMongoMockClient()
config.db = config.client[config.DB_NAME]

from config import db, hash_password, now_iso  # noqa: E402
from routes.auth import issue_token  # noqa: E402
from server import app, ensure_indexes  # noqa: E402

PASSWORD = "DhTest2026!"


@pytest_asyncio.fixture(autouse=True)
async def clean_db():
    for name in await db.list_collection_names():
        await db[name].drop()
    await ensure_indexes()
    yield


async def make_user(username: str = "sales01", role: str = "sales") -> dict:
    user = {
        "id": str(uuid.uuid4()),
        "username": username,
        "password": hash_password(PASSWORD),
        "fullName": username.title(),
        "role": role,
        "isActive": True,
        "createdAt": now_iso(),
    }
    await db.users.insert_one(user)
    user.pop("_id", None)
    return user


@pytest_asyncio.fixture
async def sales_user():
    return await make_user("sales01", "sales")


@pytest_asyncio.fixture
async def api(sales_user):
    """Client HTTP authentifié (Bearer) sur l'app ASGI"""
    token = await issue_token(sales_user)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"}
    ) as c:
        yield c


@pytest_asyncio.fixture
async def anon():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def customer_payload():
    return {"fullName": "Nguyễn Văn A", "phone": "0901234567", "address": "Hà Nội"}
