from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session, selectinload

from ..catalog import CHAIN_INCENTIVE_CATEGORIES, DISCOUNT_TYPES, normalize_categories
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Business, Chain, ChainIncentive, Incentive, User
from ..timeutils import utcnow
from .business_service import business_payload, parse_uuid
from .incentive_service import incentive_categories

logger = logging.getLogger(__name__)

DELETED_STATUS = "deleted"


def _inheritance_status(value: bool | None) -> str:
    if value is True:
        return "enabled"
    if value is False:
        return "disabled"
    return "undefined"


def _membership_counts(db: Session, chain_ids: list[uuid.UUID]) -> dict[uuid.UUID, tuple[int, int]]:
    if not chain_ids:
        return {}
    rows = db.execute(
        select(
            Business.chain_id,
            func.count(Business.id),
            func.sum(case((Business.universal_incentives.is_(True), 1), else_=0)),
        )
        .where(Business.chain_id.in_(chain_ids))
        .group_by(Business.chain_id)
    ).all()
    return {chain_id: (int(total or 0), int(enabled or 0)) for chain_id, total, enabled in rows}


def chain_incentive_payload(incentive: ChainIncentive) -> dict[str, Any]:
    return {
        "_id": str(incentive.id),
        "id": str(incentive.id),
        "eligible_categories": list(incentive_categories(incentive)),
        "type": incentive.type,
        "amount": incentive.amount,
        "discount_type": incentive.discount_type,
        "description": incentive.description,
        "other_description": incentive.other_description,
        "information": incentive.information,
        "is_active": incentive.is_active,
        "created_at": incentive.created_at.isoformat() if incentive.created_at else None,
        "created_by": str(incentive.created_by) if incentive.created_by else None,
    }


def chain_payload(chain: Chain, counts: tuple[int, int] | None = None, *, active_only: bool = False) -> dict[str, Any]:
    incentives = [item for item in chain.incentives if item.is_active or not active_only]
    payload: dict[str, Any] = {
        "_id": str(chain.id),
        "id": str(chain.id),
        "chain_name": chain.name,
        "business_type": chain.business_type,
        "universal_incentives": chain.universal_incentives,
        "status": chain.status,
        "corporate_info": chain.corporate_info or {},
        "incentives": [chain_incentive_payload(item) for item in incentives],
        "incentive_count": len(chain.incentives),
        "active_incentive_count": sum(1 for item in chain.incentives if item.is_active),
        "created_at": chain.created_at.isoformat() if chain.created_at else None,
        "updated_at": chain.updated_at.isoformat() if chain.updated_at else None,
    }
    if counts is not None:
        payload["location_count"], payload["enabled_locations"] = counts
    return payload


def _get_chain(db: Session, chain_id: Any) -> Chain:
    if not chain_id:
        raise ValidationError("Chain ID is required")
    chain = db.get(Chain, parse_uuid(chain_id, "chain id"), options=[selectinload(Chain.incentives)])
    if chain is None or chain.status == DELETED_STATUS:
        raise NotFoundError("Chain not found")
    return chain


def _get_business(db: Session, business_id: Any) -> Business:
    if not business_id:
        raise ValidationError("Business ID is required")
    business = db.get(Business, parse_uuid(business_id, "business id"))
    if business is None:
        raise NotFoundError("Business not found")
    return business


def _name_taken(db: Session, name: str, exclude_id: uuid.UUID | None = None) -> bool:
    stmt = select(Chain.id).where(func.lower(Chain.name) == name.lower(), Chain.status != DELETED_STATUS)
    if exclude_id is not None:
        stmt = stmt.where(Chain.id != exclude_id)
    return db.execute(stmt.limit(1)).first() is not None


def _incentive_categories_from(data: dict[str, Any], *, required: bool) -> list[str] | None:
    raw = data.get("eligible_categories")
    if raw is None and data.get("type"):
        raw = [data["type"]]
    if raw is None:
        if required:
            raise ValidationError("Chain ID, eligible categories, and amount are required")
        return None
    if not isinstance(raw, list):
        raise ValidationError("eligible_categories must be a list")
    categories = normalize_categories(raw, CHAIN_INCENTIVE_CATEGORIES)
    if len(categories) != len(raw) or not categories:
        raise ValidationError(f"Eligible categories must be drawn from {', '.join(CHAIN_INCENTIVE_CATEGORIES)}")
    return categories


def _parse_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number") from None
    if not 0 <= amount <= 100:
        raise ValidationError("Amount must be between 0 and 100")
    return amount


def _parse_discount_type(value: Any) -> str:
    discount_type = value or "percentage"
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError("Discount type must be percentage or dollar")
    return discount_type


# Basic operations


def list_chains(db: Session) -> dict[str, Any]:
    chains = (
        db.execute(
            select(Chain)
            .where(Chain.status != DELETED_STATUS)
            .options(selectinload(Chain.incentives))
            .order_by(Chain.name.asc())
        )
        .scalars()
        .all()
    )
    counts = _membership_counts(db, [chain.id for chain in chains])
    payloads = [chain_payload(chain, counts.get(chain.id, (0, 0))) for chain in chains]
    return {
        "success": True,
        "chains": payloads,
        "summary": {
            "total_chains": len(payloads),
            "total_locations": sum(item["location_count"] for item in payloads),
            "total_enabled_locations": sum(item["enabled_locations"] for item in payloads),
        },
    }


def get_chain(db: Session, chain_id: Any) -> dict[str, Any]:
    chain = _get_chain(db, chain_id)
    counts = _membership_counts(db, [chain.id]).get(chain.id, (0, 0))
    return {"success": True, "chain": chain_payload(chain, counts, active_only=True)}


def create_chain(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    name = (data.get("chain_name") or "").strip()
    business_type = (data.get("business_type") or "").strip()
    if not name or not business_type:
        raise ValidationError("Chain name and business type are required")
    if _name_taken(db, name):
        raise ConflictError("Chain with this name already exists")

    chain = Chain(
        name=name,
        business_type=business_type.upper(),
        universal_incentives=bool(data.get("universal_incentives", False)),
        corporate_info=data.get("corporate_info") or {},
        status="active",
        created_by=admin.id,
        updated_by=admin.id,
    )
    db.add(chain)
    db.commit()
    logger.info("Chain %s (%s) created by %s", chain.name, chain.id, admin.id)
    return {"success": True, "message": "Chain created successfully", "chain": chain_payload(chain, (0, 0))}


def update_chain(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    chain = _get_chain(db, data.get("_id") or data.get("id") or data.get("chain_id"))

    if data.get("chain_name") is not None:
        name = str(data["chain_name"]).strip()
        if not name:
            raise ValidationError("Chain name cannot be empty")
        if _name_taken(db, name, exclude_id=chain.id):
            raise ConflictError("Chain with this name already exists")
        chain.name = name
    if data.get("business_type") is not None:
        chain.business_type = str(data["business_type"]).upper()
    flag_changed = data.get("universal_incentives") is not None
    if flag_changed:
        chain.universal_incentives = bool(data["universal_incentives"])
    if data.get("corporate_info") is not None:
        chain.corporate_info = data["corporate_info"]
    if data.get("status") is not None:
        chain.status = data["status"]
    chain.updated_by = admin.id
    db.commit()

    if flag_changed:
        logger.info(
            "Chain %s universal_incentives set to %s; locations need sync", chain.id, chain.universal_incentives
        )
    return {
        "success": True,
        "message": "Chain updated successfully",
        "chain": chain_payload(chain),
        "locations_require_sync": flag_changed,
    }


def delete_chain(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    chain = _get_chain(db, data.get("_id") or data.get("id") or data.get("chain_id"))
    result = db.execute(
        update(Business)
        .where(Business.chain_id == chain.id)
        .values(chain_id=None, chain_name=None, universal_incentives=None, is_chain_location=False, updated_at=utcnow())
    )
    db.delete(chain)
    db.commit()
    logger.info("Chain %s deleted by %s; %s locations detached", chain.id, admin.id, result.rowcount)
    return {"success": True, "message": "Chain deleted successfully", "locations_updated": result.rowcount}


# Incentive operations


def add_incentive(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    if not data.get("chain_id") or data.get("amount") is None:
        raise ValidationError("Chain ID, eligible categories, and amount are required")
    categories = _incentive_categories_from(data, required=True)
    amount = _parse_amount(data["amount"])
    discount_type = _parse_discount_type(data.get("discount_type"))
    chain = _get_chain(db, data["chain_id"])

    incentive = ChainIncentive(
        chain_id=chain.id,
        position=len(chain.incentives),
        eligible_categories=categories,
        type=data.get("type") or categories[0],
        amount=amount,
        discount_type=discount_type,
        description=data.get("description") or "",
        other_description=(data.get("other_description") or "") if "OT" in categories else "",
        information=data.get("information") or "",
        is_active=True,
        created_by=admin.id,
    )
    chain.incentives.append(incentive)
    chain.updated_by = admin.id
    db.commit()
    logger.info("Incentive %s added to chain %s: %s %s", incentive.id, chain.id, categories, amount)
    return {
        "success": True,
        "message": "Incentive added to chain successfully",
        "incentive": chain_incentive_payload(incentive),
    }


def _find_incentive(chain: Chain, incentive_id: Any) -> ChainIncentive:
    if not incentive_id:
        raise ValidationError("Chain ID and incentive ID are required")
    key = parse_uuid(incentive_id, "incentive id")
    for incentive in chain.incentives:
        if incentive.id == key:
            return incentive
    raise NotFoundError("Incentive not found")


def update_incentive(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    chain = _get_chain(db, data.get("chain_id"))
    incentive = _find_incentive(chain, data.get("incentive_id"))

    categories = _incentive_categories_from(data, required=False)
    if categories is not None:
        incentive.eligible_categories = categories
        incentive.type = data.get("type") or categories[0]
    if data.get("amount") is not None:
        incentive.amount = _parse_amount(data["amount"])
    if data.get("discount_type") is not None:
        incentive.discount_type = _parse_discount_type(data["discount_type"])
    for key in ("description", "other_description", "information"):
        if data.get(key) is not None:
            setattr(incentive, key, data[key])
    if data.get("is_active") is not None:
        incentive.is_active = bool(data["is_active"])
    incentive.updated_by = admin.id
    chain.updated_by = admin.id
    db.commit()
    return {
        "success": True,
        "message": "Chain incentive updated successfully",
        "incentive": chain_incentive_payload(incentive),
    }


def remove_incentive(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    chain = _get_chain(db, data.get("chain_id"))
    incentive = _find_incentive(chain, data.get("incentive_id"))
    chain.incentives.remove(incentive)
    chain.updated_by = admin.id
    db.commit()
    logger.info("Incentive %s removed from chain %s by %s", incentive.id, chain.id, admin.id)
    return {"success": True, "message": "Incentive removed from chain successfully"}


def get_incentives(db: Session, chain_id: Any) -> dict[str, Any]:
    chain = _get_chain(db, chain_id)
    active = [incentive for incentive in chain.incentives if incentive.is_active]
    return {
        "success": True,
        "chain_id": str(chain.id),
        "chain_name": chain.name,
        "incentives": [chain_incentive_payload(item) for item in active],
        "total_incentives": len(chain.incentives),
        "active_incentives": len(active),
    }


# Location operations


def add_location(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    if not data.get("chain_id") or not data.get("business_id"):
        raise ValidationError("Chain ID and business ID are required")
    chain = _get_chain(db, data["chain_id"])
    business = _get_business(db, data["business_id"])
    if business.chain_id is not None and business.chain_id != chain.id:
        raise ConflictError("Business is already part of another chain")

    business.chain_id = chain.id
    business.chain_name = chain.name
    business.universal_incentives = chain.universal_incentives
    business.is_chain_location = True
    business.updated_by = admin.id
    db.commit()
    logger.info(
        "Business %s added to chain %s (inherits=%s)", business.id, chain.id, chain.universal_incentives
    )
    return {
        "success": True,
        "message": "Location added to chain successfully",
        "business": business_payload(business),
    }


def remove_location(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    business = _get_business(db, data.get("business_id"))
    if business.chain_id is None:
        raise ValidationError("Business is not part of a chain")
    previous_chain = business.chain_id
    business.chain_id = None
    business.chain_name = None
    business.universal_incentives = None
    business.is_chain_location = False
    business.updated_by = admin.id
    db.commit()
    logger.info("Business %s removed from chain %s", business.id, previous_chain)
    return {
        "success": True,
        "message": "Location removed from chain successfully",
        "business": business_payload(business),
    }


def get_locations(db: Session, chain_id: Any) -> dict[str, Any]:
    chain = _get_chain(db, chain_id)
    locations = (
        db.execute(select(Business).where(Business.chain_id == chain.id).order_by(Business.name.asc())).scalars().all()
    )
    payloads = []
    for location in locations:
        payload = business_payload(location)
        payload["inheritance_status"] = _inheritance_status(location.universal_incentives)
        payloads.append(payload)
    return {
        "success": True,
        "chain_name": chain.name,
        "chain_universal_incentives": chain.universal_incentives,
        "locations": payloads,
        "total_locations": len(payloads),
    }


def _sync_members(db: Session, chain: Chain, universal_incentives: bool) -> tuple[int, int]:
    """Bring every member in line with the chain's settings.

    Returns (members synced, members whose stored values changed). Members
    already in line are left untouched, ``updated_at`` included.
    """
    members = db.execute(select(Business).where(Business.chain_id == chain.id)).scalars().all()
    changed = 0
    now = utcnow()
    for member in members:
        if (
            member.chain_name == chain.name
            and member.universal_incentives is universal_incentives
            and member.is_chain_location
        ):
            continue
        member.chain_name = chain.name
        member.universal_incentives = universal_incentives
        member.is_chain_location = True
        member.updated_at = now
        changed += 1
    db.flush()
    return len(members), changed


def sync_locations(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    chain = _get_chain(db, data.get("chain_id"))
    written, changed = _sync_members(db, chain, chain.universal_incentives)
    db.commit()

    total, enabled = _membership_counts(db, [chain.id]).get(chain.id, (0, 0))
    logger.info("Synced %s locations for chain %s (%s changed) by %s", written, chain.id, changed, admin.id)
    return {
        "success": True,
        "message": "Chain locations synced successfully",
        "chain_name": chain.name,
        "locations_updated": written,
        "synced_count": written,
        "changed_count": changed,
        "total_locations": total,
        "enabled_count": enabled,
    }


# Utility operations


def search_chains(db: Session, q: str | None, business_type: str | None) -> dict[str, Any]:
    if not q and not business_type:
        raise ValidationError("Search query or business type is required")
    stmt = select(Chain).where(Chain.status != DELETED_STATUS).options(selectinload(Chain.incentives))
    if q:
        stmt = stmt.where(Chain.name.icontains(q.strip(), autoescape=True))
    if business_type:
        stmt = stmt.where(Chain.business_type == business_type.strip().upper())
    chains = db.execute(stmt.order_by(Chain.name.asc())).scalars().all()
    counts = _membership_counts(db, [chain.id for chain in chains])
    return {
        "success": True,
        "chains": [chain_payload(chain, counts.get(chain.id, (0, 0))) for chain in chains],
        "total": len(chains),
    }


def match_confidence(chain_name: str, business_name: str) -> int:
    chain_lower = chain_name.lower().strip()
    business_lower = business_name.lower().strip()
    if not chain_lower or not business_lower:
        return 0
    if chain_lower == business_lower:
        return 100
    if chain_lower in business_lower:
        return 90
    if business_lower in chain_lower:
        return 85

    chain_words = chain_lower.split()
    business_words = business_lower.split()
    if chain_words[0] == business_words[0]:
        return 70
    common = [word for word in chain_words if word in business_words]
    if not common:
        return 0
    return round(len(common) / max(len(chain_words), len(business_words)) * 60)


def find_match(db: Session, business_name: str | None, business_type: str | None) -> dict[str, Any]:
    if not business_name or not business_name.strip():
        raise ValidationError("Business name is required")
    business_name = business_name.strip()

    stmt = select(Chain).where(Chain.status != DELETED_STATUS)
    if business_type:
        stmt = stmt.where(Chain.business_type == business_type.strip().upper())
    first_word = business_name.split()[0]
    stmt = stmt.where(Chain.name.icontains(first_word, autoescape=True))

    matches: list[dict[str, Any]] = []
    for chain in db.execute(stmt).scalars():
        confidence = match_confidence(chain.name, business_name)
        if confidence > 0:
            matches.append(
                {
                    "_id": str(chain.id),
                    "chain_name": chain.name,
                    "business_type": chain.business_type,
                    "universal_incentives": chain.universal_incentives,
                    "confidence": confidence,
                }
            )
    matches.sort(key=lambda item: (-item["confidence"], item["chain_name"].lower()))
    return {
        "success": True,
        "business_name": business_name,
        "business_type": business_type,
        "matches": matches,
        "best_match": matches[0] if matches else None,
    }


def bulk_update_universal_incentives(db: Session, data: dict[str, Any], admin: User) -> dict[str, Any]:
    chain_ids = data.get("chain_ids")
    if not isinstance(chain_ids, list) or not chain_ids:
        raise ValidationError("Chain IDs array is required")
    if data.get("universal_incentives") is None:
        raise ValidationError("Universal incentives setting is required")
    flag = bool(data["universal_incentives"])
    keys = [parse_uuid(chain_id, "chain id") for chain_id in chain_ids]

    chains = db.execute(select(Chain).where(Chain.id.in_(keys), Chain.status != DELETED_STATUS)).scalars().all()
    chains_updated = 0
    for chain in chains:
        if chain.universal_incentives is not flag:
            chains_updated += 1
        chain.universal_incentives = flag
        chain.updated_by = admin.id

    sync_results: list[dict[str, Any]] = []
    if data.get("sync_locations"):
        for chain in chains:
            written, _ = _sync_members(db, chain, flag)
            sync_results.append({"chain_id": str(chain.id), "locations_updated": written})
    db.commit()

    total_synced = sum(item["locations_updated"] for item in sync_results)
    logger.info("Bulk universal_incentives=%s on %s chains, %s locations synced", flag, len(chains), total_synced)
    return {
        "success": True,
        "message": "Bulk update completed successfully",
        "chains_updated": chains_updated,
        "locations_synced": bool(data.get("sync_locations")),
        "location_sync_results": sync_results,
        "total_locations_updated": total_synced,
    }


def summary(db: Session) -> dict[str, Any]:
    chains = (
        db.execute(select(Chain).where(Chain.status != DELETED_STATUS).options(selectinload(Chain.incentives)))
        .scalars()
        .all()
    )
    counts = _membership_counts(db, [chain.id for chain in chains])
    total_chains = len(chains)
    with_universal = sum(1 for chain in chains if chain.universal_incentives)
    total_locations = sum(total for total, _ in counts.values())
    enabled_locations = sum(enabled for _, enabled in counts.values())
    total_incentives = sum(len(chain.incentives) for chain in chains)

    total_businesses = db.execute(select(func.count(Business.id))).scalar_one()
    chain_businesses = db.execute(select(func.count(Business.id)).where(Business.chain_id.is_not(None))).scalar_one()
    standalone_incentives = db.execute(select(func.count(Incentive.id))).scalar_one()

    return {
        "success": True,
        "summary": {
            "chains": {
                "total": total_chains,
                "with_universal_incentives": with_universal,
                "without_universal_incentives": total_chains - with_universal,
            },
            "locations": {
                "total_chain_locations": total_locations,
                "enabled_locations": enabled_locations,
                "disabled_locations": total_locations - enabled_locations,
            },
            "businesses": {
                "total_all_businesses": total_businesses,
                "chain_locations": chain_businesses,
                "independent_businesses": total_businesses - chain_businesses,
            },
            "incentives": {
                "total_chain_incentives": total_incentives,
                "total_standalone_incentives": standalone_incentives,
                "average_per_chain": round(total_incentives / total_chains, 2) if total_chains else 0,
            },
            "business_types": sorted({chain.business_type for chain in chains if chain.business_type}),
        },
        "generated_at": utcnow().isoformat(),
    }
