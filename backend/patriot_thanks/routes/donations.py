from datetime import date
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ..auth import get_optional_user
from ..database import get_db
from ..dependencies import get_email_sender, get_payment_gateway
from ..models import User
from ..services import donation_service
from ..services.email_service import EmailSender
from ..services.payment_service import PaymentGateway
from ..timeutils import utcnow

router = APIRouter(tags=["donations"])

GET_OPERATIONS: tuple[str, ...] = ("list", "stats", "export", "user-donations", "recognition")
POST_OPERATIONS: tuple[str, ...] = (
    "create-payment-intent",
    "create-paypal-order",
    "capture-paypal-order",
    "save-donation",
    "confirm",
    "cancel-recurring",
)


def _require_user(user: User | None) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Authorization required")
    return user


def _require_admin(user: User | None) -> User:
    user = _require_user(user)
    if not user.has_admin_access:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


@router.get("/donations")
def donations_get(
    operation: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: str | None = Query(default=None),
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
    min_amount: float | None = Query(default=None, alias="minAmount"),
    recurring: bool | None = Query(default=None),
    search: str | None = Query(default=None),
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    filters = donation_service.DonationFilters(
        status=status,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        recurring=recurring,
        search=search,
    )
    if operation == "list":
        _require_admin(user)
        return donation_service.list_donations(db, filters, page=page, limit=limit)
    if operation == "stats":
        return {"stats": donation_service.donation_stats(db)}
    if operation == "export":
        _require_admin(user)
        content = donation_service.export_donations_csv(db, filters)
        filename = f"donations-export-{utcnow().date().isoformat()}.csv"
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    if operation == "user-donations":
        current = _require_user(user)
        return {"donations": donation_service.user_donations(db, current)}
    if operation == "recognition":
        return {"donors": donation_service.recognition(db)}
    if operation is None:
        return {"message": "Donations API is available", "operations": [*GET_OPERATIONS, *POST_OPERATIONS]}
    raise HTTPException(status_code=400, detail="Invalid operation for GET request")


@router.post("/donations")
def donations_post(
    response: Response,
    operation: str | None = Query(default=None),
    body: dict[str, Any] = Body(default_factory=dict),
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
    payments: PaymentGateway = Depends(get_payment_gateway),
    email: EmailSender = Depends(get_email_sender),
) -> dict:
    if operation == "create-payment-intent":
        return donation_service.create_payment_intent(payments, body)
    if operation == "create-paypal-order":
        return donation_service.create_paypal_order(payments, body)
    if operation == "capture-paypal-order":
        return donation_service.capture_paypal_order(db, payments, email, body)
    if operation == "save-donation":
        donation = donation_service.save_donation(db, payments, email, body, user)
        response.status_code = 201
        return {
            "message": "Donation saved successfully",
            "donationId": str(donation.id),
            "status": donation.status,
            "donation": donation_service.donation_payload(donation),
        }
    if operation == "confirm":
        donation = donation_service.confirm_donation(db, payments, email, body)
        return {"message": "Donation confirmed successfully", "donationId": str(donation.id), "status": donation.status}
    if operation == "cancel-recurring":
        donation = donation_service.cancel_recurring(db, body, user)
        return {"message": "Recurring donation cancelled successfully", "donationId": str(donation.id)}
    raise HTTPException(status_code=400, detail="Invalid operation for POST request")
