"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import logging
import secrets
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger("config")

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'dh_crm')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

logger.info(f"[CONFIG] Using database: {DB_NAME}")

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

SESSION_TTL_DAYS = int(os.environ.get('SESSION_TTL_DAYS', '7'))

# Blob storage (uploads)
MEDIA_DIR = Path(os.environ.get('MEDIA_DIR', str(ROOT_DIR / 'static' / 'media')))
MEDIA_BASE_URL = os.environ.get('MEDIA_BASE_URL', '/api/media/file').rstrip('/')
MAX_UPLOAD_MB = int(os.environ.get('MAX_UPLOAD_MB', '10'))

# Retries when a generated code collides with the unique index
SEQUENCE_MAX_RETRIES = int(os.environ.get('SEQUENCE_MAX_RETRIES', '3'))


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()

def today_utc() -> datetime:
    """Date courante (UTC), utilisée comme scope des séquences journalières"""
    return datetime.now(timezone.utc)
