import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..config import Settings
from ..database import get_db
from ..dependencies import get_app_settings, get_email_sender, get_rate_limiter
from ..models import User
from ..rate_limit import InMemoryRateLimiter, client_ip
from ..schemas import (
    AdminCodeRequest,
    LoginRequest,
    RegisterRequest,
    ResendVerificationRequest,
    TokenRequest,
    UpdateEmailRequest,
)
from ..services import account_service
from ..services.email_service import EmailSender

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=201)
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    email: EmailSender = Depends(get_email_sender),
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
) -> dict:
    ip = client_ip(request)
    verdict = limiter.is_allowed(
        f"register:{ip}", settings.registration_rate_limit, settings.registration_rate_window_seconds
    )
    if not verdict.allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Too many registration attempts. Please try again in {verdict.retry_after_minutes} minutes.",
        )

    data = payload.to_wire()
    if account_service.is_bot_submission(data):
        logger.warning("Bot registration attempt from %s", ip)
        return account_service.decoy_registration(data)
    return account_service.register(db, email, settings, data)


@router.post("/login")
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    return account_service.login(db, settings, payload.to_wire())


@router.post("/verify-email")
def verify_email(payload: TokenRequest, db: Session = Depends(get_db)) -> dict:
    user = account_service.verify_email(db, payload.token)
    return {
        "message": "Email verified successfully! You now have access to all Patriot Thanks features.",
        "user": account_service.user_payload(user),
    }


@router.post("/resend-verification")
def resend_verification(
    payload: ResendVerificationRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    email: EmailSender = Depends(get_email_sender),
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
) -> dict:
    if not payload.email or not payload.email.strip():
        raise HTTPException(status_code=400, detail="Email is required")
    address = payload.email.strip().lower()

    verdict = limiter.is_allowed(
        f"resend:{address}",
        settings.resend_verification_rate_limit,
        settings.resend_verification_rate_window_seconds,
    )
    if not verdict.allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Too many verification emails sent. Please wait {verdict.retry_after_minutes} minutes "
            "before trying again.",
        )
    return account_service.resend_verification(db, email, settings, address)


@router.post("/update-email")
def update_email(
    payload: UpdateEmailRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    email: EmailSender = Depends(get_email_sender),
) -> dict:
    return account_service.request_email_change(db, email, settings, user, payload.to_wire())


@router.post("/verify-new-email")
def verify_new_email(payload: TokenRequest, db: Session = Depends(get_db)) -> dict:
    user = account_service.confirm_email_change(db, payload.token)
    return {"message": "Email verified and updated successfully!", "email": user.email}


@router.post("/verify-admin")
def verify_admin(
    payload: AdminCodeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return account_service.verify_admin_code(db, user, payload.code)


@router.get("/me")
def me(user: User = Depends(get_current_user)) -> dict:
    return {"user": account_service.user_payload(user)}
