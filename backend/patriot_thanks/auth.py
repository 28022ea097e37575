from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import Settings
from .database import get_db
from .dependencies import get_app_settings
from .models import User
from .timeutils import utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(user: User, settings: Settings, expires_delta: timedelta | None = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims: dict[str, Any] = {"sub": str(user.id), "email": user.email, "level": user.level, "exp": expire}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> uuid.UUID | None:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return uuid.UUID(str(payload["sub"]))
    except (JWTError, KeyError, ValueError):
        return None


def _user_from_token(token: str | None, db: Session, settings: Settings) -> User | None:
    if not token:
        return None
    user_id = decode_access_token(token, settings)
    if user_id is None:
        return None
    return db.get(User, user_id)


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    user = _user_from_token(token, db, settings)
    if user is None:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user


def get_optional_user(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User | None:
    return _user_from_token(token, db, settings)


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.has_admin_access:
        logger.warning("Admin access denied for user %s", current_user.id)
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user
