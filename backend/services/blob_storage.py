"""
DH CRM - Blob Storage

Stocke les fichiers uploadés (images de CSKH, pièces jointes) sur disque
sous MEDIA_DIR/<folder>/ et renvoie {url, format, name}.
Les enregistrements métier ne gardent que l'URL, jamais les octets.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from config import db, now_iso, MEDIA_DIR, MEDIA_BASE_URL, MAX_UPLOAD_MB
from services.errors import CollaboratorError, NotFoundError, ValidationError

logger = logging.getLogger("blob_storage")

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

ALLOWED_EXTENSIONS = set(MIME_TYPES)
MAX_FILE_SIZE = MAX_UPLOAD_MB * 1024 * 1024


def _safe_folder(folder: Optional[str]) -> str:
    cleaned = "".join(c for c in (folder or "misc") if c.isalnum() or c in "-_")
    return cleaned or "misc"


async def upload(filename: str, content: bytes, folder: str = "misc", uploaded_by: Optional[str] = None) -> dict:
    """
    upload(file, folder) -> {url, format, name}

    Raises:
        ValidationError: extension non autorisée, fichier vide ou trop volumineux
        CollaboratorError: écriture disque impossible
    """
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"Extension not allowed. Valid extensions: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if not content:
        raise ValidationError("Empty file")
    if len(content) > MAX_FILE_SIZE:
        raise ValidationError(f"File too large. Maximum: {MAX_UPLOAD_MB} MB")

    media_id = str(uuid.uuid4())
    folder = _safe_folder(folder)
    stored_name = f"{media_id}{ext}"
    target_dir = MEDIA_DIR / folder

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with open(target_dir / stored_name, "wb") as f:
            f.write(content)
    except OSError as e:
        logger.error(f"[BLOB] Could not write {folder}/{stored_name}: {e}")
        raise CollaboratorError(cause=e)

    media_doc = {
        "id": media_id,
        "name": filename,
        "folder": folder,
        "filename": stored_name,
        "format": ext.lstrip("."),
        "mime_type": MIME_TYPES[ext],
        "size": len(content),
        "uploaded_by": uploaded_by,
        "created_at": now_iso()
    }
    await db.media.insert_one(media_doc)

    logger.info(f"[BLOB] Stored {filename} as {folder}/{stored_name} ({len(content)} bytes)")

    return {"url": f"{MEDIA_BASE_URL}/{media_id}", "format": media_doc["format"], "name": filename}


async def resolve(media_id: str) -> dict:
    """Document media + chemin disque, pour servir le fichier"""
    media = await db.media.find_one({"id": media_id}, {"_id": 0})
    if not media:
        raise NotFoundError("Media not found")

    path = MEDIA_DIR / media.get("folder", "misc") / media["filename"]
    if not path.exists():
        raise NotFoundError("File not found")

    media["path"] = path
    return media
