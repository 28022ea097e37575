from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..database import get_db
from ..models import Chain, User
from ..services import business_service
from ..services.incentive_service import resolve_incentives

router = APIRouter(tags=["businesses"])


def _chain_details(db: Session, chain_id) -> dict[str, Any] | None:
    if chain_id is None:
        return None
    chain = db.get(Chain, chain_id)
    if chain is None:
        return None
    return {
        "_id": str(chain.id),
        "chain_name": chain.name,
        "business_type": chain.business_type,
        "universal_incentives": chain.universal_incentives,
    }


def _resolved_payload(db: Session, business_id) -> dict[str, Any]:
    resolution = resolve_incentives(db, business_id)
    return {
        "source": resolution.kind,
        "chain_id": getattr(resolution, "chain_id", None),
        "incentives": [offer.to_payload() for offer in resolution.offers],
    }


@router.get("/businesses")
def list_businesses(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    city: str | None = Query(default=None),
    state: str | None = Query(default=None),
    type: str | None = Query(default=None),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return business_service.list_businesses(
        db, page=page, limit=limit, city=city, state=state, category=type, search=search
    )


@router.post("/businesses", status_code=201)
def create_business(
    body: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    business = business_service.create_business(db, body, user)
    return {"message": "Business created successfully", "business": business_service.business_payload(business)}


@router.get("/businesses/{business_id}")
def get_business(business_id: str, db: Session = Depends(get_db)) -> dict:
    business = business_service.get_business(db, business_id)
    resolved = _resolved_payload(db, business.id)
    payload = business_service.business_payload(business)
    payload["chain"] = _chain_details(db, business.chain_id)
    payload["incentives"] = resolved["incentives"]
    payload["incentiveSource"] = resolved["source"]
    return {"business": payload}


@router.put("/businesses/{business_id}")
def update_business(
    business_id: str,
    body: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    business = business_service.update_business(db, business_id, body, user)
    return {"message": "Business updated successfully", "business": business_service.business_payload(business)}


@router.delete("/businesses/{business_id}")
def delete_business(
    business_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    business = business_service.deactivate_business(db, business_id, admin)
    return {"message": "Business deactivated successfully", "id": str(business.id), "status": business.status}


@router.get("/businesses/{business_id}/incentives")
def business_incentives(business_id: str, db: Session = Depends(get_db)) -> dict:
    business = business_service.get_business(db, business_id)
    return {"business_id": str(business.id), **_resolved_payload(db, business.id)}

