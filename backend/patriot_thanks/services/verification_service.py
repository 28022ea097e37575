from __future__ import annotations

import logging
import re
import time
from pathlib import Path

from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import User, VerificationDocument

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("application/pdf", "image/jpeg", "image/png")
VERIFICATION_SUBDIR = "veteran-verification"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name) or "document"


def document_filename(user_id: object, document_type: str, original_name: str, timestamp_ms: int) -> str:
    return f"{user_id}_{sanitize_filename(document_type)}_{timestamp_ms}_{sanitize_filename(original_name)}"


def store_verification_document(
    db: Session,
    user: User,
    *,
    upload_dir: str | Path,
    document_type: str | None,
    filename: str | None,
    content_type: str | None,
    content: bytes,
    max_bytes: int,
) -> VerificationDocument:
    if not filename or not content:
        raise ValidationError("No file uploaded")
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError("Invalid file type. Only PDF, JPG, and PNG are allowed.")
    if len(content) > max_bytes:
        raise ValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")
    document_type = (document_type or "").strip() or "other"

    target_dir = Path(upload_dir) / VERIFICATION_SUBDIR
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / document_filename(user.id, document_type, filename, int(time.time() * 1000))
    path.write_bytes(content)

    document = VerificationDocument(
        user_id=user.id,
        document_type=document_type,
        original_filename=filename,
        path=str(path),
        content_type=content_type,
        size_bytes=len(content),
    )
    db.add(document)
    if user.veteran_verification_status != "verified":
        user.veteran_verification_status = "pending"
    db.commit()
    logger.info("Stored %s verification document for user %s at %s", document_type, user.id, path)
    return document
