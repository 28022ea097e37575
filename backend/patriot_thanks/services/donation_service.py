from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from ..errors import NotFoundError, PaymentError, ValidationError
from ..models import Donation, User
from ..timeutils import month_start, previous_month_start, utcnow
from .business_service import parse_uuid
from .email_service import EmailDeliveryError, EmailSender, donation_receipt_email
from .payment_service import PaymentGateway

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("card", "paypal")
PENDING = "pending"
COMPLETED = "completed"
CANCELLED = "cancelled"
EXPORT_LIMIT = 10_000
EXPORT_COLUMNS = (
    "ID",
    "Name",
    "Email",
    "Amount",
    "Status",
    "Payment Method",
    "Recurring",
    "Transaction ID",
    "Created Date",
    "Updated Date",
)


@dataclass
class DonationFilters:
    status: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    min_amount: float | None = None
    recurring: bool | None = None
    search: str | None = None

    def apply(self, stmt: Select) -> Select:
        if self.status:
            stmt = stmt.where(Donation.status == self.status)
        if self.start_date:
            stmt = stmt.where(Donation.created_at >= _day_start(self.start_date))
        if self.end_date:
            # end date is inclusive
            stmt = stmt.where(Donation.created_at < _day_start(self.end_date) + timedelta(days=1))
        if self.min_amount is not None:
            stmt = stmt.where(Donation.amount >= self.min_amount)
        if self.recurring is not None:
            stmt = stmt.where(Donation.recurring.is_(self.recurring))
        if self.search:
            term = self.search.strip()
            stmt = stmt.where(
                or_(Donation.name.icontains(term, autoescape=True), Donation.email.icontains(term, autoescape=True))
            )
        return stmt


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def donation_payload(donation: Donation) -> dict[str, Any]:
    return {
        "_id": str(donation.id),
        "id": str(donation.id),
        "amount": donation.amount,
        "name": donation.name,
        "email": donation.email,
        "anonymous": donation.anonymous,
        "recurring": donation.recurring,
        "message": donation.message,
        "paymentMethod": donation.payment_method,
        "paymentIntentId": donation.payment_intent_id,
        "paypalOrderId": donation.paypal_order_id,
        "transactionId": donation.transaction_id,
        "status": donation.status,
        "user_id": str(donation.user_id) if donation.user_id else None,
        "created_at": _isoformat(donation.created_at),
        "updated_at": _isoformat(donation.updated_at),
        "cancelled_at": _isoformat(donation.cancelled_at),
    }


def _positive_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Valid donation amount is required") from None
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError("Valid donation amount is required")
    return amount


def send_receipt(email: EmailSender, donation: Donation) -> bool:
    message = donation_receipt_email(
        donation.email, donation.name, donation.amount, donation.recurring, donation.transaction_id
    )
    try:
        email.send(message)
    except EmailDeliveryError:
        logger.exception("Receipt email failed for donation %s", donation.id)
        return False
    return True


def create_payment_intent(payments: PaymentGateway, data: dict[str, Any]) -> dict[str, Any]:
    amount = _positive_amount(data.get("amount"))
    intent = payments.stripe.create_payment_intent(
        amount, email=data.get("email"), recurring=bool(data.get("recurring"))
    )
    logger.info("Payment intent %s created for %.2f", intent.id, amount)
    return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id}


def create_paypal_order(payments: PaymentGateway, data: dict[str, Any]) -> dict[str, Any]:
    amount = _positive_amount(data.get("amount"))
    order_id = payments.paypal.create_order(amount)
    logger.info("PayPal order %s created for %.2f", order_id, amount)
    return {"orderId": order_id}


def capture_paypal_order(
    db: Session, payments: PaymentGateway, email: EmailSender, data: dict[str, Any]
) -> dict[str, Any]:
    order_id = data.get("orderId") or data.get("paypalOrderId")
    if not order_id:
        raise ValidationError("PayPal order ID is required")

    capture = payments.paypal.capture_order(str(order_id))
    if not capture.completed:
        raise PaymentError("PayPal capture was not completed", details={"status": capture.status})

    pending = (
        db.execute(
            select(Donation)
            .where(Donation.paypal_order_id == str(order_id), Donation.status == PENDING)
            .order_by(Donation.created_at, Donation.id)
        )
        .scalars()
        .all()
    )
    if len(pending) > 1:
        logger.warning("PayPal order %s has %s pending donations; completing the earliest", order_id, len(pending))
    donation = pending[0] if pending else None
    if donation is not None:
        donation.status = COMPLETED
        donation.transaction_id = capture.capture_id or capture.order_id
        db.commit()
        send_receipt(email, donation)

    return {
        "success": True,
        "orderId": capture.order_id,
        "captureId": capture.capture_id,
        "status": capture.status,
        "donationId": str(donation.id) if donation is not None else None,
    }


def _card_intent_succeeded(payments: PaymentGateway, intent_id: str) -> bool:
    try:
        return payments.stripe.retrieve_payment_intent(intent_id).status == "succeeded"
    except PaymentError:
        logger.warning("Could not confirm payment intent %s; saving donation as pending", intent_id)
        return False


def save_donation(
    db: Session,
    payments: PaymentGateway,
    email: EmailSender,
    data: dict[str, Any],
    user: User | None = None,
) -> Donation:
    amount = _positive_amount(data.get("amount"))
    name = (data.get("name") or "").strip()
    address = (data.get("email") or "").strip()
    if not name or not address:
        raise ValidationError("Name and email are required")
    try:
        address = validate_email(address, check_deliverability=False).normalized
    except EmailNotValidError:
        raise ValidationError("Invalid email address") from None
    method = data.get("paymentMethod")
    if method not in PAYMENT_METHODS:
        raise ValidationError("Payment method must be card or paypal")

    intent_id = data.get("paymentIntentId") or None
    status = PENDING
    if method == "card" and intent_id and _card_intent_succeeded(payments, intent_id):
        status = COMPLETED

    donation = Donation(
        amount=amount,
        name=name,
        email=address,
        anonymous=bool(data.get("anonymous", False)),
        recurring=bool(data.get("recurring", False)),
        message=data.get("message") or None,
        payment_method=method,
        payment_intent_id=intent_id,
        paypal_order_id=data.get("paypalOrderId") or None,
        transaction_id=intent_id if status == COMPLETED else None,
        status=status,
        user_id=user.id if user is not None else None,
    )
    db.add(donation)
    db.commit()
    logger.info("Donation %s saved (%s, %s)", donation.id, method, status)

    if status == COMPLETED:
        send_receipt(email, donation)
    return donation


def confirm_donation(
    db: Session, payments: PaymentGateway, email: EmailSender, data: dict[str, Any]
) -> Donation:
    donation_id = data.get("donationId")
    payment_id = data.get("paymentId")
    if not donation_id or not payment_id:
        raise ValidationError("Donation ID and payment ID are required")

    donation = db.execute(
        select(Donation).where(
            Donation.id == parse_uuid(donation_id, "donation id"),
            Donation.status == PENDING,
            or_(Donation.payment_intent_id == payment_id, Donation.paypal_order_id == payment_id),
        )
    ).scalar_one_or_none()
    if donation is None:
        raise NotFoundError("Donation not found or already processed")

    paypal_order_id = data.get("paypalOrderId")
    transaction_id = str(payment_id)
    if paypal_order_id:
        capture = payments.paypal.capture_order(str(paypal_order_id))
        if not capture.completed:
            raise PaymentError("PayPal capture was not completed", details={"status": capture.status})
        transaction_id = capture.capture_id or capture.order_id

    donation.status = COMPLETED
    donation.transaction_id = transaction_id
    db.commit()
    send_receipt(email, donation)
    return donation


def cancel_recurring(db: Session, data: dict[str, Any], user: User | None = None) -> Donation:
    donation_id = data.get("donationId")
    if not donation_id:
        raise ValidationError("Donation ID is required")
    stmt = select(Donation).where(
        Donation.id == parse_uuid(donation_id, "donation id"),
        Donation.recurring.is_(True),
        Donation.status == COMPLETED,
    )
    if user is not None and not user.has_admin_access:
        stmt = stmt.where(Donation.user_id == user.id)
    donation = db.execute(stmt).scalar_one_or_none()
    if donation is None:
        raise NotFoundError("Recurring donation not found")

    donation.status = CANCELLED
    donation.cancelled_at = utcnow()
    db.commit()
    logger.info("Recurring donation %s cancelled", donation.id)
    return donation


def list_donations(db: Session, filters: DonationFilters, *, page: int = 1, limit: int = 10) -> dict[str, Any]:
    stmt = filters.apply(select(Donation))
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(Donation.created_at.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return {
        "donations": [donation_payload(row) for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def _totals(db: Session, *conditions) -> tuple[int, float]:
    count, amount = db.execute(
        select(func.count(Donation.id), func.coalesce(func.sum(Donation.amount), 0.0)).where(
            Donation.status == COMPLETED, *conditions
        )
    ).one()
    return int(count), float(amount)


def _growth(current: float, previous: float) -> float:
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def donation_stats(db: Session, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    this_month = month_start(now)
    last_month = previous_month_start(now)

    total_count, total_amount = _totals(db)
    this_count, this_amount = _totals(db, Donation.created_at >= this_month)
    last_count, last_amount = _totals(db, Donation.created_at >= last_month, Donation.created_at < this_month)
    recurring_count, _ = _totals(db, Donation.recurring.is_(True))

    return {
        "total": {
            "donations": total_count,
            "amount": total_amount,
            "averageAmount": round(total_amount / total_count, 2) if total_count else 0,
        },
        "thisMonth": {"donations": this_count, "amount": this_amount},
        "lastMonth": {"donations": last_count, "amount": last_amount},
        "growth": {"donations": _growth(this_count, last_count), "amount": _growth(this_amount, last_amount)},
        "recurring": {
            "total": recurring_count,
            "percentage": round(recurring_count / total_count * 100) if total_count else 0,
        },
    }


def export_donations_csv(db: Session, filters: DonationFilters) -> str:
    rows = db.execute(
        filters.apply(select(Donation)).order_by(Donation.created_at.desc()).limit(EXPORT_LIMIT)
    ).scalars()
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for donation in rows:
        writer.writerow(
            [
                str(donation.id),
                donation.name or "",
                donation.email or "",
                donation.amount or 0,
                donation.status or "",
                donation.payment_method or "",
                "Yes" if donation.recurring else "No",
                donation.transaction_id or donation.payment_intent_id or donation.paypal_order_id or "",
                _isoformat(donation.created_at) or "",
                _isoformat(donation.updated_at) or "",
            ]
        )
    return buffer.getvalue()


def user_donations(db: Session, user: User) -> list[dict[str, Any]]:
    rows = db.execute(
        select(Donation)
        .where(or_(Donation.user_id == user.id, func.lower(Donation.email) == user.email.lower()))
        .order_by(Donation.created_at.desc())
    ).scalars()
    return [donation_payload(row) for row in rows]


def recognition(db: Session, limit: int = 100) -> list[dict[str, Any]]:
    rows = db.execute(
        select(Donation).where(Donation.status == COMPLETED).order_by(Donation.created_at.desc()).limit(limit)
    ).scalars()
    return [
        {
            "name": "Anonymous" if donation.anonymous else donation.name,
            "amount": donation.amount,
            "recurring": donation.recurring,
            "message": donation.message,
            "created_at": _isoformat(donation.created_at),
        }
        for donation in rows
    ]
