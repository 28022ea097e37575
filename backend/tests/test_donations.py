import csv
import io
from datetime import date, datetime, timezone

import pytest
from conftest import FakeStripe

from patriot_thanks.errors import NotFoundError, ValidationError
from patriot_thanks.models import Donation
from patriot_thanks.services import donation_service
from patriot_thanks.services.donation_service import DonationFilters


def _donation(session, **overrides):
    values = {
        "amount": 25.0,
        "name": "Alex Doe",
        "email": "alex@patriotthanks.org",
        "payment_method": "card",
        "status": "completed",
    }
    values.update(overrides)
    donation = Donation(**values)
    session.add(donation)
    session.commit()
    return donation


def test_save_card_donation_completes_only_when_intent_succeeded(db_session, payments, email_sender):
    data = {
        "amount": "50",
        "name": "Alex Doe",
        "email": "alex@patriotthanks.org",
        "paymentMethod": "card",
        "paymentIntentId": "pi_1",
    }
    completed = donation_service.save_donation(db_session, payments, email_sender, data)
    assert completed.status == "completed"
    assert completed.transaction_id == "pi_1"
    assert len(email_sender.sent) == 1

    payments.stripe = FakeStripe(status="processing")
    pending = donation_service.save_donation(db_session, payments, email_sender, data)
    assert pending.status == "pending"
    assert len(email_sender.sent) == 1


@pytest.mark.parametrize(
    "overrides",
    [{"amount": 0}, {"amount": "abc"}, {"name": ""}, {"email": "not-an-email"}, {"paymentMethod": "cash"}],
)
def test_save_donation_validation(db_session, payments, email_sender, overrides):
    data = {"amount": 10, "name": "Alex", "email": "alex@patriotthanks.org", "paymentMethod": "paypal"}
    data.update(overrides)
    with pytest.raises(ValidationError):
        donation_service.save_donation(db_session, payments, email_sender, data)


def test_confirm_pending_paypal_donation(db_session, payments, email_sender):
    donation = _donation(db_session, payment_method="paypal", status="pending", paypal_order_id="ORDER-1")

    confirmed = donation_service.confirm_donation(
        db_session,
        payments,
        email_sender,
        {"donationId": str(donation.id), "paymentId": "ORDER-1", "paypalOrderId": "ORDER-1"},
    )

    assert confirmed.status == "completed"
    assert confirmed.transaction_id == "CAPTURE-1"
    with pytest.raises(NotFoundError):
        donation_service.confirm_donation(
            db_session, payments, email_sender, {"donationId": str(donation.id), "paymentId": "ORDER-1"}
        )


def test_capture_completes_matching_pending_donation(db_session, payments, email_sender):
    donation = _donation(db_session, payment_method="paypal", status="pending", paypal_order_id="ORDER-9")

    result = donation_service.capture_paypal_order(db_session, payments, email_sender, {"orderId": "ORDER-9"})

    assert result["donationId"] == str(donation.id)
    assert donation.status == "completed"


def test_capture_completes_only_earliest_duplicate(db_session, payments, email_sender):
    first = _donation(
        db_session,
        payment_method="paypal",
        status="pending",
        paypal_order_id="ORDER-7",
        created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
    )
    duplicate = _donation(
        db_session,
        payment_method="paypal",
        status="pending",
        paypal_order_id="ORDER-7",
        created_at=datetime(2024, 3, 1, 0, 5, tzinfo=timezone.utc),
    )

    result = donation_service.capture_paypal_order(db_session, payments, email_sender, {"orderId": "ORDER-7"})

    assert result["donationId"] == str(first.id)
    assert first.status == "completed"
    assert duplicate.status == "pending"
    assert len(email_sender.sent) == 1


def test_stats_compare_calendar_months(db_session):
    now = datetime(2024, 3, 15, tzinfo=timezone.utc)
    _donation(db_session, amount=100, created_at=datetime(2024, 3, 2, tzinfo=timezone.utc), recurring=True)
    _donation(db_session, amount=50, created_at=datetime(2024, 2, 20, tzinfo=timezone.utc))
    _donation(db_session, amount=999, status="pending", created_at=datetime(2024, 3, 3, tzinfo=timezone.utc))

    stats = donation_service.donation_stats(db_session, now=now)

    assert stats["total"] == {"donations": 2, "amount": 150.0, "averageAmount": 75.0}
    assert stats["thisMonth"] == {"donations": 1, "amount": 100.0}
    assert stats["lastMonth"] == {"donations": 1, "amount": 50.0}
    assert stats["growth"] == {"donations": 0.0, "amount": 100.0}
    assert stats["recurring"] == {"total": 1, "percentage": 50}


def test_filters_treat_end_date_as_inclusive(db_session):
    _donation(db_session, created_at=datetime(2024, 3, 10, 23, 30, tzinfo=timezone.utc))
    _donation(db_session, created_at=datetime(2024, 3, 11, 0, 30, tzinfo=timezone.utc))

    listed = donation_service.list_donations(db_session, DonationFilters(end_date=date(2024, 3, 10)))

    assert listed["total"] == 1
    assert listed["totalPages"] == 1


def test_export_csv_quotes_every_field(db_session):
    _donation(db_session, name='Sam "Doc" Lee', transaction_id="txn_1")

    content = donation_service.export_donations_csv(db_session, DonationFilters())
    rows = list(csv.reader(io.StringIO(content)))

    assert rows[0] == list(donation_service.EXPORT_COLUMNS)
    assert rows[1][1] == 'Sam "Doc" Lee'
    assert rows[1][6] == "No"
    assert content.splitlines()[0].startswith('"ID","Name"')


def test_recognition_hides_anonymous_names(db_session):
    _donation(db_session, name="Jordan Smith", anonymous=True)
    _donation(db_session, name="Riley Park", status="pending")

    donors = donation_service.recognition(db_session)

    assert [donor["name"] for donor in donors] == ["Anonymous"]


def test_cancel_recurring_is_scoped_to_owner(db_session, member, admin):
    donation = _donation(db_session, recurring=True, user_id=admin.id)

    with pytest.raises(NotFoundError):
        donation_service.cancel_recurring(db_session, {"donationId": str(donation.id)}, member)

    cancelled = donation_service.cancel_recurring(db_session, {"donationId": str(donation.id)}, admin)
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_at is not None


def test_donation_routes(client, db_session, admin_headers, member_headers):
    intent = client.post("/api/donations", params={"operation": "create-payment-intent"}, json={"amount": 20})
    assert intent.json() == {"clientSecret": "secret_123", "paymentIntentId": "pi_1"}

    saved = client.post(
        "/api/donations",
        params={"operation": "save-donation"},
        json={
            "amount": 20,
            "name": "Alex",
            "email": "alex@patriotthanks.org",
            "paymentMethod": "card",
            "paymentIntentId": "pi_1",
            "anonymous": True,
        },
    )
    assert saved.status_code == 201
    assert saved.json()["status"] == "completed"

    assert client.get("/api/donations", params={"operation": "list"}).status_code == 401
    assert client.get("/api/donations", params={"operation": "list"}, headers=member_headers).status_code == 403
    listed = client.get("/api/donations", params={"operation": "list"}, headers=admin_headers)
    assert listed.json()["total"] == 1

    export = client.get("/api/donations", params={"operation": "export"}, headers=admin_headers)
    assert export.headers["content-type"].startswith("text/csv")
    assert "attachment; filename=\"donations-export-" in export.headers["content-disposition"]

    assert client.get("/api/donations", params={"operation": "recognition"}).json()["donors"][0]["name"] == "Anonymous"
    assert client.get("/api/donations", params={"operation": "bogus"}).status_code == 400
    assert client.post("/api/donations", params={"operation": "bogus"}, json={}).status_code == 400
