from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..database import get_db
from ..models import Business, User
from ..services import incentive_service

router = APIRouter(tags=["incentives"])


@router.get("/incentives")
def list_incentives(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    business_id: str | None = Query(default=None),
    type: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return incentive_service.list_incentives(db, business_id=business_id, category=type, page=page, limit=limit)


@router.post("/incentives", status_code=201)
def create_incentive(
    body: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    incentive = incentive_service.create_incentive(db, body, user)
    return {"message": "Incentive added successfully", "incentive": incentive_service.incentive_payload(incentive)}


@router.get("/incentives/{incentive_id}")
def get_incentive(incentive_id: str, db: Session = Depends(get_db)) -> dict:
    incentive = incentive_service.get_incentive(db, incentive_id)
    business = db.get(Business, incentive.business_id)
    return {"incentive": incentive_service.incentive_payload(incentive, business)}


@router.put("/incentives/{incentive_id}")
def update_incentive(
    incentive_id: str,
    body: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    incentive = incentive_service.update_incentive(db, incentive_id, body, user)
    return {"message": "Incentive updated successfully", "incentive": incentive_service.incentive_payload(incentive)}


@router.delete("/incentives/{incentive_id}")
def delete_incentive(
    incentive_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    incentive = incentive_service.disable_incentive(db, incentive_id, admin)
    return {"message": "Incentive disabled successfully", "id": str(incentive.id), "is_available": False}
