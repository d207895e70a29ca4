"""
Routes pour les Médias (images et pièces jointes des plans CSKH)
- Upload via le blob storage, lecture du fichier
"""

from fastapi import APIRouter, Depends, UploadFile, File, Form
from fastapi.responses import FileResponse

from routes.auth import get_current_user
from services import blob_storage

router = APIRouter(prefix="/media", tags=["Media"])


@router.post("")
async def upload_media(
    file: UploadFile = File(...),
    folder: str = Form("misc"),
    user: dict = Depends(get_current_user)
):
    """
    Upload un fichier
    Retourne {url, format, name} à stocker dans le document métier
    """
    content = await file.read()
    stored = await blob_storage.upload(file.filename, content, folder, uploaded_by=user["username"])
    return {"success": True, "file": stored}


@router.get("/file/{media_id}")
async def get_media_file(media_id: str):
    """Récupère le fichier média"""
    media = await blob_storage.resolve(media_id)
    return FileResponse(
        media["path"],
        media_type=media.get("mime_type"),
        filename=media.get("name")
    )
