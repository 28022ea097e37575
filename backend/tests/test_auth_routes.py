import time
from datetime import timedelta

from conftest import make_user
from sqlalchemy import select

from patriot_thanks.models import AdminCode, User
from patriot_thanks.timeutils import utcnow


def _registration(**overrides):
    payload = {
        "fname": "Casey",
        "lname": "Jordan",
        "email": "Casey.Jordan@GMAIL.com",
        "password": "Str0ngPass!",
        "serviceType": "VT",
        "militaryBranch": "Army",
        "termsAccepted": True,
    }
    payload.update(overrides)
    return payload


def _stored_user(database, email):
    with database.session() as session:
        return session.execute(select(User).where(User.email == email)).scalar_one_or_none()


def test_register_then_verify_email(client, database, email_sender):
    response = client.post("/api/auth/register", json=_registration())

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "casey.jordan@gmail.com"
    assert body["user"]["isVerified"] is False
    assert "debug" not in body
    assert [message.to for message in email_sender.sent] == ["casey.jordan@gmail.com"]

    user = _stored_user(database, "casey.jordan@gmail.com")
    assert user.terms_version == "November 2024"
    assert user.military_branch == "Army"
    assert len(user.verification_token) == 6

    verified = client.post("/api/auth/verify-email", json={"token": user.verification_token})
    assert verified.status_code == 200
    assert verified.json()["user"]["isVerified"] is True

    again = client.post("/api/auth/verify-email", json={"token": "000000"})
    assert again.status_code == 400
    assert again.json()["error"] == "INVALID_TOKEN"


def test_register_rejects_duplicate_email_case_insensitively(client, member):
    response = client.post("/api/auth/register", json=_registration(email="MEMBER@patriotthanks.org"))

    assert response.status_code == 409
    assert response.json()["message"] == "User with this email already exists"


def test_register_requires_terms_and_branch(client):
    no_terms = client.post("/api/auth/register", json=_registration(termsAccepted=False))
    no_branch = client.post("/api/auth/register", json=_registration(militaryBranch=""))
    civilian = client.post("/api/auth/register", json=_registration(serviceType="OT", militaryBranch=""))

    assert no_terms.status_code == 400
    assert no_terms.json()["message"] == "Terms and conditions must be accepted"
    assert no_branch.status_code == 400
    assert civilian.status_code == 201


def test_honeypot_submission_gets_decoy_response(client, database, email_sender):
    response = client.post("/api/auth/register", json=_registration(_hp_website="http://spam.biz"))

    assert response.status_code == 201
    assert response.json()["user"]["id"] == "fake"
    assert _stored_user(database, "casey.jordan@gmail.com") is None
    assert email_sender.sent == []


def test_too_fast_submission_gets_decoy_response(client, database):
    started = int(time.time() * 1000)
    response = client.post("/api/auth/register", json=_registration(_hp_timestamp=started))

    assert response.json()["user"]["id"] == "fake"
    assert _stored_user(database, "casey.jordan@gmail.com") is None


def test_slow_submission_is_accepted(client, database):
    started = int((time.time() - 30) * 1000)
    response = client.post("/api/auth/register", json=_registration(_hp_timestamp=started))

    assert response.status_code == 201
    assert _stored_user(database, "casey.jordan@gmail.com") is not None


def test_registration_is_rate_limited_per_ip(client):
    headers = {"X-Forwarded-For": "203.0.113.9"}
    for _ in range(5):
        client.post("/api/auth/register", json={"fname": "x"}, headers=headers)

    blocked = client.post("/api/auth/register", json=_registration(), headers=headers)
    other_ip = client.post("/api/auth/register", json=_registration(), headers={"X-Forwarded-For": "198.51.100.7"})

    assert blocked.status_code == 429
    assert blocked.json()["message"].startswith("Too many registration attempts. Please try again in ")
    assert other_ip.status_code == 201


def test_expired_verification_token(client, db_session):
    make_user(
        db_session,
        "late@patriotthanks.org",
        verification_token="123456",
        verification_token_expires=utcnow() - timedelta(minutes=1),
    )

    response = client.post("/api/auth/verify-email", json={"token": "123456"})

    assert response.status_code == 400
    assert response.json()["error"] == "TOKEN_EXPIRED"


def test_resend_verification_is_generic_and_rate_limited(client, db_session, email_sender):
    make_user(db_session, "pending@patriotthanks.org")

    unknown = client.post("/api/auth/resend-verification", json={"email": "nobody@patriotthanks.org"})
    assert unknown.json()["message"] == "If this email is registered, a verification link has been sent."

    responses = [
        client.post("/api/auth/resend-verification", json={"email": "Pending@patriotthanks.org"}) for _ in range(4)
    ]
    assert [response.status_code for response in responses] == [200, 200, 200, 429]
    assert len(email_sender.sent) == 3


def test_resend_verification_requires_email(client):
    response = client.post("/api/auth/resend-verification", json={})
    assert response.status_code == 400
    assert response.json()["message"] == "Email is required"


def test_login_and_me(client, member):
    bad = client.post("/api/auth/login", json={"email": member.email, "password": "wrong"})
    assert bad.status_code == 401

    good = client.post("/api/auth/login", json={"email": "MEMBER@patriotthanks.org", "password": "Secret123!"})
    assert good.status_code == 200
    token = good.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["email"] == member.email


def test_me_requires_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_email_change_flow(client, database, member, member_headers):
    wrong = client.post(
        "/api/auth/update-email",
        json={"newEmail": "new.address@patriotthanks.org", "password": "nope"},
        headers=member_headers,
    )
    assert wrong.status_code == 401

    requested = client.post(
        "/api/auth/update-email",
        json={"newEmail": "new.address@patriotthanks.org", "password": "Secret123!"},
        headers=member_headers,
    )
    assert requested.status_code == 200
    token = _stored_user(database, member.email).pending_email_token

    confirmed = client.post("/api/auth/verify-new-email", json={"token": token})
    assert confirmed.status_code == 200
    assert confirmed.json()["email"] == "new.address@patriotthanks.org"
    assert _stored_user(database, "new.address@patriotthanks.org") is not None


def test_failed_change_email_clears_pending_change(client, database, member, member_headers, email_sender):
    email_sender.fail = True

    response = client.post(
        "/api/auth/update-email",
        json={"newEmail": "new.address@patriotthanks.org", "password": "Secret123!"},
        headers=member_headers,
    )

    assert response.status_code == 500
    assert _stored_user(database, member.email).pending_email is None


def test_admin_code_promotes_user(client, db_session, member_headers):
    db_session.add(AdminCode(code="PT-ADMIN-2024", description="Launch team"))
    db_session.add(AdminCode(code="OLD", expiration=utcnow() - timedelta(days=1)))
    db_session.commit()

    expired = client.post("/api/auth/verify-admin", json={"code": "OLD"}, headers=member_headers)
    assert expired.status_code == 401

    promoted = client.post("/api/auth/verify-admin", json={"code": "PT-ADMIN-2024"}, headers=member_headers)
    assert promoted.status_code == 200
    assert promoted.json()["level"] == "Admin"
