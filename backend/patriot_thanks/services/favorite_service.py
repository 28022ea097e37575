from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import Business, Incentive, User
from .business_service import business_payload, parse_uuid
from .incentive_service import incentive_payload

logger = logging.getLogger(__name__)

FAVORITE_KINDS = ("business", "incentive")
LISTING_KINDS = ("businesses", "incentives", "all")


def _attribute(kind: str) -> str:
    if kind not in FAVORITE_KINDS:
        raise ValidationError('Invalid type. Must be "business" or "incentive"')
    return "favorite_business_ids" if kind == "business" else "favorite_incentive_ids"


def list_favorites(db: Session, user: User, kind: str | None = None) -> dict[str, Any]:
    kind = kind or "all"
    if kind not in LISTING_KINDS:
        raise ValidationError("Type must be businesses, incentives, or all")
    result: dict[str, Any] = {}

    if kind in ("businesses", "all"):
        ids = [parse_uuid(value) for value in user.favorite_business_ids or []]
        rows = db.execute(select(Business).where(Business.id.in_(ids))).scalars().all() if ids else []
        result["businesses"] = [business_payload(row) for row in rows]

    if kind in ("incentives", "all"):
        ids = [parse_uuid(value) for value in user.favorite_incentive_ids or []]
        rows = (
            db.execute(
                select(Incentive, Business)
                .join(Business, Business.id == Incentive.business_id, isouter=True)
                .where(Incentive.id.in_(ids))
            ).all()
            if ids
            else []
        )
        result["incentives"] = [incentive_payload(incentive, business) for incentive, business in rows]

    return result


def add_favorite(db: Session, user: User, item_id: Any, kind: Any) -> bool:
    """Returns False when the item was already a favorite."""
    if not item_id or not kind:
        raise ValidationError("Item ID and type are required")
    attribute = _attribute(str(kind))
    key = str(parse_uuid(item_id, "item id"))
    current = list(getattr(user, attribute) or [])
    if key in current:
        return False
    setattr(user, attribute, [*current, key])
    db.commit()
    logger.info("User %s added %s %s to favorites", user.id, kind, key)
    return True


def remove_favorite(db: Session, user: User, item_id: Any, kind: Any) -> bool:
    if not item_id or not kind:
        raise ValidationError("Item ID and type are required")
    attribute = _attribute(str(kind))
    key = str(parse_uuid(item_id, "item id"))
    current = list(getattr(user, attribute) or [])
    if key not in current:
        return False
    setattr(user, attribute, [value for value in current if value != key])
    db.commit()
    return True
