from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..config import Settings
from ..database import get_db
from ..dependencies import get_app_settings
from ..models import User
from ..schemas import FavoriteRequest
from ..services import favorite_service
from ..services.verification_service import store_verification_document

router = APIRouter(tags=["favorites"])


@router.get("/favorites")
def list_favorites(
    type: str | None = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"success": True, "favorites": favorite_service.list_favorites(db, user, type)}


@router.post("/favorites")
def add_favorite(
    payload: FavoriteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    added = favorite_service.add_favorite(db, user, payload.item_id, payload.type)
    verb = "added to" if added else "already in"
    return {"success": True, "message": f"{payload.type} {verb} favorites"}


@router.delete("/favorites")
def remove_favorite(
    item_id: str | None = Query(default=None, alias="itemId"),
    type: str | None = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    removed = favorite_service.remove_favorite(db, user, item_id, type)
    verb = "removed from" if removed else "was not in"
    return {"success": True, "message": f"{type} {verb} favorites"}


@router.post("/veteran-verification/upload")
def upload_verification_document(
    document: UploadFile | None = File(default=None),
    document_type: str | None = Form(default=None, alias="documentType"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    content = document.file.read(settings.max_upload_bytes + 1) if document is not None else b""
    stored = store_verification_document(
        db,
        user,
        upload_dir=settings.upload_dir,
        document_type=document_type,
        filename=document.filename if document is not None else None,
        content_type=document.content_type if document is not None else None,
        content=content,
        max_bytes=settings.max_upload_bytes,
    )
    return {
        "success": True,
        "message": "Document uploaded successfully",
        "document": {
            "id": str(stored.id),
            "documentType": stored.document_type,
            "uploadedAt": stored.uploaded_at.isoformat() if stored.uploaded_at else None,
        },
        "verificationStatus": user.veteran_verification_status,
    }
