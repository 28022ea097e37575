from __future__ import annotations

import logging
import math
import uuid
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..catalog import BUSINESS_TYPE_LABELS, VETERAN_VERIFICATION_STATUSES, business_type_label
from ..errors import NotFoundError, ValidationError
from ..models import Business, User
from ..timeutils import as_utc, utcnow
from .query_builder import ACTIVE_STATUS

logger = logging.getLogger(__name__)

INACTIVE_STATUS = "inactive"
_UPDATABLE_FIELDS: tuple[str, ...] = (
    "name",
    "address1",
    "address2",
    "city",
    "state",
    "zip",
    "phone",
    "category",
    "google_place_id",
    "lat",
    "lng",
    "status",
    "is_veteran_owned",
    "veteran_verification_status",
    "is_featured",
    "featured_until",
    "is_priority",
    "priority_score",
)


def parse_uuid(value: Any, label: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}") from None


def is_featured_veteran_owned(business: Business) -> bool:
    if not business.is_veteran_owned or not business.is_featured:
        return False
    if business.featured_until is None:
        return True
    return as_utc(business.featured_until) >= utcnow()


def business_payload(business: Business) -> dict[str, Any]:
    return {
        "_id": str(business.id),
        "id": str(business.id),
        "bname": business.name,
        "name": business.name,
        "address1": business.address1,
        "address2": business.address2,
        "city": business.city,
        "state": business.state,
        "zip": business.zip,
        "phone": business.phone,
        "type": business.category,
        "category": business.category,
        "typeLabel": business_type_label(business.category),
        "placeId": business.google_place_id,
        "lat": business.lat,
        "lng": business.lng,
        "status": business.status,
        "chain_id": str(business.chain_id) if business.chain_id else None,
        "chain_name": business.chain_name,
        "is_chain_location": business.is_chain_location,
        "universal_incentives": business.universal_incentives,
        "veteranOwned": {
            "isVeteranOwned": business.is_veteran_owned,
            "verificationStatus": business.veteran_verification_status,
            "priority": {
                "isFeatured": is_featured_veteran_owned(business),
                "isPriority": business.is_priority,
                "priorityScore": business.priority_score,
                "featuredUntil": business.featured_until.isoformat() if business.featured_until else None,
            },
        },
    }


def validate_business_data(data: dict[str, Any], *, is_update: bool = False) -> list[str]:
    errors: list[str] = []
    if not is_update:
        if not (data.get("name") or data.get("bname")):
            errors.append("Business name is required")
        if not (data.get("category") or data.get("type")):
            errors.append("Business type is required")

    if not data.get("is_chain") and not is_update:
        for field_name, label in (("address1", "Address"), ("city", "City"), ("state", "State"), ("zip", "ZIP code")):
            if not data.get(field_name):
                errors.append(f"{label} is required for non-chain businesses")

    category = data.get("category") or data.get("type")
    if category and str(category).upper() not in BUSINESS_TYPE_LABELS:
        errors.append(f"Unknown business type: {category}")

    status = data.get("veteran_verification_status")
    if status and status not in VETERAN_VERIFICATION_STATUSES:
        errors.append(f"Unknown verification status: {status}")

    lat = data.get("lat")
    lng = data.get("lng")
    if (lat is None) != (lng is None):
        errors.append("Both lat and lng are required for a location")
    elif lat is not None and not (-90 <= float(lat) <= 90 and -180 <= float(lng) <= 180):
        errors.append("Coordinates are out of range")
    return errors


def _normalized(data: dict[str, Any]) -> dict[str, Any]:
    values = dict(data)
    if "bname" in values and "name" not in values:
        values["name"] = values.pop("bname")
    if "type" in values and "category" not in values:
        values["category"] = values.pop("type")
    for key in ("name", "address1", "address2", "city", "zip", "phone"):
        if isinstance(values.get(key), str):
            values[key] = values[key].strip()
    if isinstance(values.get("state"), str):
        values["state"] = values["state"].strip().upper()
    if isinstance(values.get("category"), str):
        values["category"] = values["category"].strip().upper()
    return values


def list_businesses(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    city: str | None = None,
    state: str | None = None,
    category: str | None = None,
    search: str | None = None,
) -> dict[str, Any]:
    stmt = select(Business).where(Business.status == ACTIVE_STATUS)
    if city:
        stmt = stmt.where(Business.city.icontains(city.strip(), autoescape=True))
    if state:
        stmt = stmt.where(func.upper(Business.state) == state.strip().upper())
    if category:
        stmt = stmt.where(Business.category == category.strip().upper())
    if search:
        term = search.strip()
        stmt = stmt.where(
            or_(
                Business.name.icontains(term, autoescape=True),
                Business.address1.icontains(term, autoescape=True),
                Business.chain_name.icontains(term, autoescape=True),
            )
        )

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(Business.name.asc()).offset((page - 1) * limit).limit(limit)).scalars().all()
    return {
        "businesses": [business_payload(row) for row in rows],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0},
    }


def get_business(db: Session, business_id: Any) -> Business:
    business = db.get(Business, parse_uuid(business_id, "business id"))
    if business is None:
        raise NotFoundError("Business not found")
    return business


def create_business(db: Session, data: dict[str, Any], user: User) -> Business:
    values = _normalized(data)
    errors = validate_business_data(values)
    if errors:
        raise ValidationError(errors[0], details={"errors": errors})

    business = Business(
        name=values["name"],
        address1=values.get("address1") or None,
        address2=values.get("address2") or None,
        city=values.get("city") or None,
        state=values.get("state") or None,
        zip=values.get("zip") or None,
        phone=values.get("phone") or None,
        category=values.get("category") or "OTHER",
        google_place_id=values.get("google_place_id"),
        lat=values.get("lat"),
        lng=values.get("lng"),
        status=ACTIVE_STATUS,
        is_veteran_owned=bool(values.get("is_veteran_owned", False)),
        veteran_verification_status=values.get("veteran_verification_status") or "self_attested",
        created_by=user.id,
        updated_by=user.id,
    )
    db.add(business)
    db.commit()
    logger.info("Business %s created by %s", business.id, user.id)
    return business


def update_business(db: Session, business_id: Any, data: dict[str, Any], user: User) -> Business:
    business = get_business(db, business_id)
    values = _normalized(data)
    errors = validate_business_data(values, is_update=True)
    if errors:
        raise ValidationError(errors[0], details={"errors": errors})

    for key in _UPDATABLE_FIELDS:
        if key in values:
            setattr(business, key, values[key])
    business.updated_by = user.id
    db.commit()
    return business


def deactivate_business(db: Session, business_id: Any, user: User) -> Business:
    business = get_business(db, business_id)
    business.status = INACTIVE_STATUS
    business.updated_by = user.id
    db.commit()
    logger.info("Business %s deactivated by %s", business.id, user.id)
    return business
