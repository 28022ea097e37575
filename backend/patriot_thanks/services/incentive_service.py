from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..catalog import DISCOUNT_TYPES, INCENTIVE_CATEGORIES, normalize_categories
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Business, Chain, ChainIncentive, Incentive, User
from .business_service import parse_uuid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncentiveOffer:
    id: str
    business_id: str
    eligible_categories: tuple[str, ...]
    amount: float
    discount_type: str
    information: str | None
    other_description: str | None
    is_chain_wide: bool
    chain_id: str | None = None
    type: str | None = None

    def applies_to(self, service_type: str) -> bool:
        return service_type.upper() in self.eligible_categories

    def to_payload(self) -> dict[str, Any]:
        return {
            "_id": self.id,
            "id": self.id,
            "business_id": self.business_id,
            "eligible_categories": list(self.eligible_categories),
            "type": self.type,
            "amount": self.amount,
            "discount_type": self.discount_type,
            "information": self.information,
            "other_description": self.other_description,
            "is_available": True,
            "is_chain_wide": self.is_chain_wide,
            "chain_id": self.chain_id,
        }


@dataclass(frozen=True)
class OwnedIncentives:
    offers: tuple[IncentiveOffer, ...] = ()
    kind: Literal["owned"] = field(default="owned", init=False)


@dataclass(frozen=True)
class InheritedIncentives:
    chain_id: str
    offers: tuple[IncentiveOffer, ...] = ()
    kind: Literal["inherited"] = field(default="inherited", init=False)


ResolvedIncentives = Union[OwnedIncentives, InheritedIncentives]

EMPTY_RESOLUTION = OwnedIncentives()


def incentive_categories(record: Incentive | ChainIncentive) -> tuple[str, ...]:
    if record.eligible_categories:
        return tuple(str(code).upper() for code in record.eligible_categories)
    if record.type:
        return (record.type.upper(),)
    return ()


def offer_from_incentive(incentive: Incentive) -> IncentiveOffer:
    return IncentiveOffer(
        id=str(incentive.id),
        business_id=str(incentive.business_id),
        eligible_categories=incentive_categories(incentive),
        amount=incentive.amount,
        discount_type=incentive.discount_type,
        information=incentive.information,
        other_description=incentive.other_description,
        is_chain_wide=False,
        type=incentive.type,
    )


def offer_from_chain_incentive(incentive: ChainIncentive, business_id: uuid.UUID | str) -> IncentiveOffer:
    return IncentiveOffer(
        id=str(incentive.id),
        business_id=str(business_id),
        eligible_categories=incentive_categories(incentive),
        amount=incentive.amount,
        discount_type=incentive.discount_type,
        information=incentive.information or incentive.description,
        other_description=incentive.other_description,
        is_chain_wide=True,
        chain_id=str(incentive.chain_id),
        type=incentive.type,
    )


def inherits_from_chain(business: Business) -> bool:
    return business.chain_id is not None and business.universal_incentives is True


def _inherited(chain: Chain, business_id: uuid.UUID) -> InheritedIncentives:
    offers = tuple(
        offer_from_chain_incentive(incentive, business_id) for incentive in chain.incentives if incentive.is_active
    )
    return InheritedIncentives(chain_id=str(chain.id), offers=offers)


def _owned(incentives: Iterable[Incentive]) -> OwnedIncentives:
    return OwnedIncentives(offers=tuple(offer_from_incentive(item) for item in incentives if item.is_available))


def resolve_incentives(db: Session, business_id: uuid.UUID | str) -> ResolvedIncentives:
    """Return the offers that currently apply to one business.

    A chain location with inheritance enabled gets its chain's active
    incentives and nothing else; every other business gets its own
    available incentives. Lookup failures resolve to no offers.
    """
    try:
        key = business_id if isinstance(business_id, uuid.UUID) else uuid.UUID(str(business_id))
        business = db.get(Business, key)
        if business is None:
            logger.warning("Incentive resolution: business %s not found", business_id)
            return EMPTY_RESOLUTION

        if inherits_from_chain(business):
            chain = db.get(Chain, business.chain_id, options=[selectinload(Chain.incentives)])
            if chain is None:
                logger.warning("Incentive resolution: chain %s for business %s not found", business.chain_id, key)
                return EMPTY_RESOLUTION
            return _inherited(chain, business.id)

        rows = db.execute(
            select(Incentive).where(Incentive.business_id == business.id, Incentive.is_available.is_(True))
        ).scalars()
        return _owned(rows)
    except (SQLAlchemyError, ValueError):
        logger.exception("Incentive resolution failed for business %s", business_id)
        return EMPTY_RESOLUTION


def resolve_incentives_for_businesses(db: Session, businesses: list[Business]) -> dict[str, ResolvedIncentives]:
    """Batch form of :func:`resolve_incentives` for search results."""
    resolved: dict[str, ResolvedIncentives] = {str(business.id): EMPTY_RESOLUTION for business in businesses}
    if not businesses:
        return resolved

    inheriting = [business for business in businesses if inherits_from_chain(business)]
    owning = [business for business in businesses if not inherits_from_chain(business)]

    try:
        if inheriting:
            chain_ids = {business.chain_id for business in inheriting}
            chains = {
                chain.id: chain
                for chain in db.execute(
                    select(Chain).where(Chain.id.in_(chain_ids)).options(selectinload(Chain.incentives))
                ).scalars()
            }
            for business in inheriting:
                chain = chains.get(business.chain_id)
                if chain is None:
                    logger.warning(
                        "Incentive resolution: chain %s for business %s not found", business.chain_id, business.id
                    )
                    continue
                resolved[str(business.id)] = _inherited(chain, business.id)

        if owning:
            grouped: dict[uuid.UUID, list[Incentive]] = {}
            rows = db.execute(
                select(Incentive).where(
                    Incentive.business_id.in_([business.id for business in owning]),
                    Incentive.is_available.is_(True),
                )
            ).scalars()
            for row in rows:
                grouped.setdefault(row.business_id, []).append(row)
            for business in owning:
                resolved[str(business.id)] = _owned(grouped.get(business.id, []))
    except SQLAlchemyError:
        logger.exception("Batch incentive resolution failed for %s businesses", len(businesses))
        return {str(business.id): EMPTY_RESOLUTION for business in businesses}

    return resolved


def inherited_category_overlap(db: Session, business: Business, categories: Iterable[str]) -> list[str]:
    """Categories an owned incentive would duplicate from the business's chain."""
    if not inherits_from_chain(business):
        return []
    chain = db.get(Chain, business.chain_id, options=[selectinload(Chain.incentives)])
    if chain is None:
        return []
    chain_categories: set[str] = set()
    for incentive in chain.incentives:
        if incentive.is_active:
            chain_categories.update(incentive_categories(incentive))
    requested = {code.upper() for code in categories}
    return sorted(requested & chain_categories)


def incentive_payload(incentive: Incentive, business: Business | None = None) -> dict[str, Any]:
    payload = offer_from_incentive(incentive).to_payload()
    payload["is_available"] = incentive.is_available
    payload["created_at"] = incentive.created_at.isoformat() if incentive.created_at else None
    if business is not None:
        payload["business"] = {"bname": business.name, "city": business.city, "state": business.state}
    return payload


def _categories_from(data: dict[str, Any]) -> list[str] | None:
    raw = data.get("eligible_categories")
    if raw is None and data.get("type"):
        raw = [data["type"]]
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ValidationError("eligible_categories must be a list")
    categories = normalize_categories(raw, INCENTIVE_CATEGORIES)
    if not categories or len(categories) != len(raw):
        raise ValidationError(f"Eligible categories must be drawn from {', '.join(INCENTIVE_CATEGORIES)}")
    return categories


def _amount_from(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number") from None
    if amount < 0:
        raise ValidationError("Amount cannot be negative")
    return amount


def list_incentives(
    db: Session,
    *,
    business_id: str | None = None,
    category: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    stmt = select(Incentive, Business).join(Business, Business.id == Incentive.business_id, isouter=True)
    stmt = stmt.where(Incentive.is_available.is_(True))
    if business_id:
        stmt = stmt.where(Incentive.business_id == parse_uuid(business_id, "business id"))
    rows = db.execute(stmt.order_by(Incentive.created_at.desc())).all()
    if category:
        code = category.strip().upper()
        rows = [row for row in rows if code in incentive_categories(row[0])]

    total = len(rows)
    window = rows[(page - 1) * limit : page * limit]
    return {
        "incentives": [incentive_payload(incentive, business) for incentive, business in window],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0},
    }


def get_incentive(db: Session, incentive_id: Any) -> Incentive:
    incentive = db.get(Incentive, parse_uuid(incentive_id, "incentive id"))
    if incentive is None:
        raise NotFoundError("Incentive not found")
    return incentive


def create_incentive(db: Session, data: dict[str, Any], user: User) -> Incentive:
    categories = _categories_from(data)
    if not data.get("business_id") or categories is None or data.get("amount") is None or not data.get("information"):
        raise ValidationError("Business ID, eligible categories, amount, and information are required")

    business = db.get(Business, parse_uuid(data["business_id"], "business id"))
    if business is None:
        raise NotFoundError("Business not found")

    overlap = inherited_category_overlap(db, business, categories)
    if overlap:
        raise ConflictError(
            f"Business inherits chain incentives for {', '.join(overlap)}",
            details={"overlapping_categories": overlap},
        )

    incentive = Incentive(
        business_id=business.id,
        eligible_categories=categories,
        type=categories[0],
        amount=_amount_from(data["amount"]),
        discount_type=data.get("discount_type") or "percentage",
        information=str(data["information"]).strip(),
        other_description=(data.get("other_description") or None) if "OT" in categories else None,
        is_available=bool(data.get("is_available", True)),
        created_by=user.id,
        updated_by=user.id,
    )
    if incentive.discount_type not in DISCOUNT_TYPES:
        raise ValidationError("Discount type must be percentage or dollar")
    db.add(incentive)
    db.commit()
    logger.info("Incentive %s created for business %s by %s", incentive.id, business.id, user.id)
    return incentive


def update_incentive(db: Session, incentive_id: Any, data: dict[str, Any], user: User) -> Incentive:
    incentive = get_incentive(db, incentive_id)
    categories = _categories_from(data)
    if categories is not None:
        business = db.get(Business, incentive.business_id)
        overlap = inherited_category_overlap(db, business, categories) if business is not None else []
        if overlap:
            raise ConflictError(
                f"Business inherits chain incentives for {', '.join(overlap)}",
                details={"overlapping_categories": overlap},
            )
        incentive.eligible_categories = categories
        incentive.type = categories[0]
    if data.get("amount") is not None:
        incentive.amount = _amount_from(data["amount"])
    if data.get("discount_type") is not None:
        if data["discount_type"] not in DISCOUNT_TYPES:
            raise ValidationError("Discount type must be percentage or dollar")
        incentive.discount_type = data["discount_type"]
    for key in ("information", "other_description"):
        if data.get(key) is not None:
            setattr(incentive, key, data[key])
    if data.get("is_available") is not None:
        incentive.is_available = bool(data["is_available"])
    incentive.updated_by = user.id
    db.commit()
    return incentive


def disable_incentive(db: Session, incentive_id: Any, user: User) -> Incentive:
    incentive = get_incentive(db, incentive_id)
    incentive.is_available = False
    incentive.updated_by = user.id
    db.commit()
    logger.info("Incentive %s disabled by %s", incentive.id, user.id)
    return incentive
