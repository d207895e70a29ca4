"""
DH CRM - Routes Auth
Login / Logout / Session / gestion des utilisateurs.

issue_token / verify_token forment le collaborateur d'authentification:
le reste de l'application ne voit que l'utilisateur résolu (username = createdBy).
"""

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timezone, timedelta
from typing import Optional
import logging
import uuid

from pymongo.errors import DuplicateKeyError

from models.auth import UserLogin, UserCreate, UserUpdate
from config import db, hash_password, generate_token, now_iso, SESSION_TTL_DAYS
from services.event_logger import log_event

logger = logging.getLogger("auth")

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== TOKENS ====================

async def issue_token(user: dict) -> str:
    """Crée une session et renvoie son token"""
    token = generate_token()
    expires_at = (datetime.now(timezone.utc) + timedelta(days=SESSION_TTL_DAYS)).isoformat()

    await db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "created_at": now_iso(),
        "expires_at": expires_at
    })
    return token


async def verify_token(token: str) -> Optional[dict]:
    """Token -> utilisateur actif (sans mot de passe), ou None"""
    if not token:
        return None

    session = await db.sessions.find_one({
        "token": token,
        "expires_at": {"$gt": now_iso()}
    })
    if not session:
        return None

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )
    if not user or not user.get("isActive", True):
        return None
    return user


# ==================== DEPENDENCIES ====================

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Récupère l'utilisateur connecté depuis le token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await verify_token(credentials.credentials)
    if not user:
        raise HTTPException(status_code=401, detail="Session expired or invalid")

    return user


async def require_admin(user: dict = Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# ==================== LOGIN / LOGOUT ====================

@router.post("/login")
async def login(data: UserLogin):
    """Connexion utilisateur."""
    user = await db.users.find_one(
        {"username": data.username.lower().strip()},
        {"_id": 0}
    )

    if not user or user.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")

    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    token = await issue_token(user)

    await log_event(action="login", entity_type="user", entity_id=user["id"], user=user["username"])

    return {
        "token": token,
        "user": {
            "id": user["id"],
            "username": user["username"],
            "fullName": user.get("fullName", ""),
            "role": user.get("role", "sales"),
        }
    }


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return user


# ==================== USERS (admin) ====================

@router.get("/users")
async def list_users(user: dict = Depends(require_admin)):
    users = await db.users.find({}, {"_id": 0, "password": 0}).to_list(200)
    return {"users": users, "count": len(users)}


@router.post("/users")
async def create_user(data: UserCreate, user: dict = Depends(require_admin)):
    """Créer un utilisateur (admin)."""
    new_user = {
        "id": str(uuid.uuid4()),
        "username": data.username,
        "password": hash_password(data.password),
        "fullName": data.fullName,
        "role": data.role,
        "isActive": True,
        "createdAt": now_iso(),
        "createdBy": user["username"]
    }

    try:
        await db.users.insert_one(new_user)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Username already exists")

    await log_event(
        action="create_user",
        entity_type="user",
        entity_id=new_user["id"],
        user=user["username"],
        details={"username": data.username, "role": data.role}
    )
    logger.info(f"[AUTH] User {data.username} created by {user['username']}")

    new_user.pop("password", None)
    new_user.pop("_id", None)
    return {"success": True, "user": new_user}


@router.put("/users/{user_id}")
async def update_user(user_id: str, data: UserUpdate, user: dict = Depends(require_admin)):
    target = await db.users.find_one({"id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    if user_id == user["id"] and data.isActive is False:
        raise HTTPException(status_code=400, detail="You cannot disable your own account")

    update_data = {k: v for k, v in data.model_dump().items() if v is not None}
    update_data["updatedAt"] = now_iso()

    await db.users.update_one({"id": user_id}, {"$set": update_data})
    if data.isActive is False:
        await db.sessions.delete_many({"user_id": user_id})

    updated = await db.users.find_one({"id": user_id}, {"_id": 0, "password": 0})
    return {"success": True, "user": updated}
