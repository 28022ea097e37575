from __future__ import annotations

import logging
import secrets
import time
from datetime import timedelta
from typing import Any

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..auth import create_access_token, hash_password, verify_password
from ..catalog import MILITARY_BRANCH_REQUIRED
from ..config import Settings
from ..errors import AuthenticationError, ConflictError, ValidationError
from ..models import AdminCode, User
from ..timeutils import is_expired, utcnow
from .email_service import (
    EmailDeliveryError,
    EmailSender,
    email_change_email,
    resend_verification_email,
    verification_link,
    welcome_verification_email,
)

logger = logging.getLogger(__name__)

TERMS_VERSION = "November 2024"
VERIFICATION_TOKEN_TTL = timedelta(days=7)
EMAIL_CHANGE_TOKEN_TTL = timedelta(hours=1)
MIN_FORM_SECONDS = 3.0
REGISTERED_MESSAGE = "Account created successfully! Please check your email to verify your account."
GENERIC_RESEND_MESSAGE = "If this email is registered, a verification link has been sent."


def generate_verification_token() -> str:
    return str(100000 + secrets.randbelow(900000))


def normalize_email(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Please provide a valid email address")
    try:
        return validate_email(value.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise ValidationError("Please provide a valid email address") from None


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(func.lower(User.email) == email.lower())).scalar_one_or_none()


def user_payload(user: User) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "_id": str(user.id),
        "fname": user.fname,
        "lname": user.lname,
        "email": user.email,
        "address1": user.address1,
        "address2": user.address2,
        "city": user.city,
        "state": user.state,
        "zip": user.zip,
        "serviceType": user.service_type,
        "status": user.status,
        "militaryBranch": user.military_branch,
        "level": user.level,
        "isAdmin": user.has_admin_access,
        "isVerified": user.is_verified,
        "pendingEmail": user.pending_email,
        "veteranVerificationStatus": user.veteran_verification_status,
        "termsAccepted": user.terms_accepted,
        "termsVersion": user.terms_version,
    }


def is_bot_submission(data: dict[str, Any], now: float | None = None) -> bool:
    """Honeypot field filled in, or the form came back faster than a person types."""
    honeypot = data.get("_hp_website")
    if isinstance(honeypot, str) and honeypot.strip():
        return True
    started = data.get("_hp_timestamp")
    if started in (None, ""):
        return False
    try:
        started_ms = int(started)
    except (TypeError, ValueError):
        return False
    elapsed = (now if now is not None else time.time()) - started_ms / 1000
    return elapsed < MIN_FORM_SECONDS


def decoy_registration(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "message": REGISTERED_MESSAGE,
        "user": {
            "id": "fake",
            "email": data.get("email"),
            "fname": data.get("fname"),
            "lname": data.get("lname"),
            "isVerified": False,
        },
    }


def register(db: Session, email: EmailSender, settings: Settings, data: dict[str, Any]) -> dict[str, Any]:
    fname = (data.get("fname") or "").strip()
    lname = (data.get("lname") or "").strip()
    password = data.get("password") or ""
    if not fname or not lname or not data.get("email") or not password:
        raise ValidationError("Missing required fields")
    address = normalize_email(data["email"])
    if not data.get("termsAccepted"):
        raise ValidationError("Terms and conditions must be accepted")

    service_type = (data.get("serviceType") or "").strip().upper() or None
    branch = (data.get("militaryBranch") or "").strip()
    requires_branch = service_type in MILITARY_BRANCH_REQUIRED
    if requires_branch and not branch:
        raise ValidationError("Military branch is required for this service type")

    if find_user_by_email(db, address) is not None:
        raise ConflictError("User with this email already exists")

    token = generate_verification_token()
    now = utcnow()
    user = User(
        fname=fname,
        lname=lname,
        email=address,
        password_hash=hash_password(password),
        address1=data.get("address1") or None,
        address2=data.get("address2") or None,
        city=data.get("city") or None,
        state=(data.get("state") or "").strip().upper() or None,
        zip=data.get("zip") or None,
        service_type=service_type,
        status=service_type,
        military_branch=branch if requires_branch else None,
        level="Free",
        is_admin=False,
        terms_accepted=True,
        terms_accepted_date=now,
        terms_version=TERMS_VERSION,
        is_verified=False,
        verification_token=token,
        verification_token_expires=now + VERIFICATION_TOKEN_TTL,
        veteran_verification_status="pending" if service_type == "VBO" else "unverified",
    )
    db.add(user)
    db.commit()
    logger.info("Registered user %s (%s)", user.id, service_type or "no service type")

    link = verification_link(settings.public_base_url, "/auth/verify-email", token, address)
    try:
        email.send(welcome_verification_email(address, fname, link, token))
    except EmailDeliveryError:
        logger.exception("Welcome email failed for user %s", user.id)

    payload: dict[str, Any] = {
        "message": REGISTERED_MESSAGE,
        "user": {
            "id": str(user.id),
            "email": user.email,
            "fname": user.fname,
            "lname": user.lname,
            "isVerified": user.is_verified,
        },
    }
    if settings.is_development:
        payload["debug"] = {"verificationToken": token, "verificationLink": link, "expiresIn": "7 days"}
    return payload


def login(db: Session, settings: Settings, data: dict[str, Any]) -> dict[str, Any]:
    raw_email = data.get("email")
    password = data.get("password") or ""
    if not raw_email or not password:
        raise ValidationError("Email and password are required")
    user = find_user_by_email(db, str(raw_email).strip())
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", raw_email)
        raise AuthenticationError("Invalid email or password")
    return {
        "access_token": create_access_token(user, settings),
        "token_type": "bearer",
        "user": user_payload(user),
    }


def verify_email(db: Session, token: Any) -> User:
    if not token:
        raise ValidationError("Verification token is required")
    user = db.execute(select(User).where(User.verification_token == str(token).strip())).scalars().first()
    if user is None:
        raise ValidationError("Invalid verification token", error="INVALID_TOKEN")
    if user.is_verified:
        raise ValidationError("Email is already verified", error="ALREADY_VERIFIED")
    if user.verification_token_expires is not None and is_expired(user.verification_token_expires):
        raise ValidationError(
            "Verification token has expired. Please request a new one.",
            error="TOKEN_EXPIRED",
        )

    user.is_verified = True
    user.verification_token = None
    user.verification_token_expires = None
    user.email_verified_at = utcnow()
    db.commit()
    logger.info("Email verified for user %s", user.id)
    return user


def resend_verification(db: Session, email: EmailSender, settings: Settings, address: str) -> dict[str, Any]:
    user = find_user_by_email(db, address)
    if user is None:
        return {"message": GENERIC_RESEND_MESSAGE}
    if user.is_verified:
        return {"message": "This email is already verified."}

    token = generate_verification_token()
    user.verification_token = token
    user.verification_token_expires = utcnow() + VERIFICATION_TOKEN_TTL
    db.commit()

    link = verification_link(settings.public_base_url, "/auth/verify-email", token, user.email)
    email.send(resend_verification_email(user.email, user.fname, link, token))
    payload: dict[str, Any] = {"message": "Verification email sent successfully."}
    if settings.is_development:
        payload["debug"] = {"verificationToken": token, "verificationLink": link}
    return payload


def request_email_change(
    db: Session, email: EmailSender, settings: Settings, user: User, data: dict[str, Any]
) -> dict[str, Any]:
    new_email = normalize_email(data.get("newEmail"))
    password = data.get("password") or ""
    if not password:
        raise ValidationError("Password is required to update email")
    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Incorrect password")
    existing = find_user_by_email(db, new_email)
    if existing is not None and existing.id != user.id:
        raise ConflictError("This email address is already in use")

    token = generate_verification_token()
    user.pending_email = new_email
    user.pending_email_token = token
    user.pending_email_expires = utcnow() + EMAIL_CHANGE_TOKEN_TTL
    db.commit()

    link = verification_link(settings.public_base_url, "/auth/verify-new-email", token, new_email)
    try:
        email.send(email_change_email(new_email, user.fname, link, token))
    except EmailDeliveryError:
        logger.exception("Email change confirmation failed for user %s", user.id)
        user.pending_email = None
        user.pending_email_token = None
        user.pending_email_expires = None
        db.commit()
        raise EmailDeliveryError("Failed to send verification email. Please try again.") from None

    return {
        "message": "Verification email sent to your new email address. Please check your inbox.",
        "pendingEmail": new_email,
    }


def confirm_email_change(db: Session, token: Any) -> User:
    if not token:
        raise ValidationError("Verification token is required")
    user = db.execute(select(User).where(User.pending_email_token == str(token).strip())).scalars().first()
    if user is None or not user.pending_email or is_expired(user.pending_email_expires):
        raise ValidationError("Invalid or expired verification token")

    old_email = user.email
    user.email = user.pending_email
    user.is_verified = True
    user.email_verified_at = utcnow()
    user.pending_email = None
    user.pending_email_token = None
    user.pending_email_expires = None
    db.commit()
    logger.info("User %s changed email from %s to %s", user.id, old_email, user.email)
    return user


def verify_admin_code(db: Session, user: User, code: Any) -> dict[str, Any]:
    if not code:
        raise ValidationError("Access code is required")
    admin_code = db.execute(select(AdminCode).where(AdminCode.code == str(code).strip())).scalar_one_or_none()
    if admin_code is None:
        raise AuthenticationError("Invalid admin access code")
    if admin_code.expiration is not None and is_expired(admin_code.expiration):
        raise AuthenticationError("Admin access code has expired")

    user.level = "Admin"
    user.is_admin = True
    db.commit()
    logger.info("User %s promoted to Admin", user.id)
    return {
        "message": "Admin access verified successfully",
        "description": admin_code.description,
        "level": user.level,
    }
