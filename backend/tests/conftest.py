import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from patriot_thanks.auth import create_access_token, hash_password
from patriot_thanks.config import Settings
from patriot_thanks.database import Database
from patriot_thanks.main import create_app
from patriot_thanks.models import Business, User
from patriot_thanks.rate_limit import InMemoryRateLimiter
from patriot_thanks.services.email_service import EmailDeliveryError
from patriot_thanks.services.payment_service import PaymentGateway, PaymentIntent, PayPalCapture
from patriot_thanks.services.search_service import SearchService


class RecordingEmailSender:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    def send(self, message):
        if self.fail:
            raise EmailDeliveryError("Email delivery failed")
        self.sent.append(message)
        return f"msg_{len(self.sent)}"


class StaticGeocoder:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def geocode(self, address):
        self.calls.append(address)
        return self.result


class FakeStripe:
    def __init__(self, status: str = "succeeded") -> None:
        self.status = status
        self.created = []

    def create_payment_intent(self, amount, *, email=None, recurring=False):
        self.created.append((amount, email, recurring))
        intent_id = f"pi_{len(self.created)}"
        return PaymentIntent(id=intent_id, client_secret="secret_123", status="requires_payment_method")

    def retrieve_payment_intent(self, intent_id):
        return PaymentIntent(id=intent_id, client_secret=None, status=self.status)

    def close(self):
        pass


class FakePayPal:
    def __init__(self, status: str = "COMPLETED") -> None:
        self.status = status

    def create_order(self, amount, description="Donation to Patriot Thanks"):
        return "ORDER-1"

    def capture_order(self, order_id):
        return PayPalCapture(order_id=order_id, status=self.status, capture_id="CAPTURE-1")

    def close(self):
        pass


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        database_url="sqlite://",
        jwt_secret="test-secret",
        telemetry_enabled=True,
        public_base_url="https://patriotthanks.org",
    )


@pytest.fixture
def database():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    db = Database("sqlite://", engine=engine)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def db_session(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def payments():
    return PaymentGateway(stripe=FakeStripe(), paypal=FakePayPal())


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter()


@pytest.fixture
def app(settings, database, email_sender, payments, rate_limiter):
    return create_app(
        settings,
        database,
        search_service=SearchService(None, None),
        email=email_sender,
        payments=payments,
        rate_limiter=rate_limiter,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def make_user(session, email="member@patriotthanks.org", *, admin=False, password="Secret123!", **overrides):
    user = User(
        fname=overrides.pop("fname", "Pat"),
        lname=overrides.pop("lname", "Riot"),
        email=email,
        password_hash=hash_password(password),
        level="Admin" if admin else "Free",
        is_admin=admin,
        terms_accepted=True,
        **overrides,
    )
    session.add(user)
    session.commit()
    return user


def make_business(session, name="Main Street Diner", **overrides):
    values = {
        "address1": "100 Main St",
        "city": "Omaha",
        "state": "NE",
        "zip": "68102",
        "category": "REST",
        "status": "active",
    }
    values.update(overrides)
    business = Business(name=name, **values)
    session.add(business)
    session.commit()
    return business


@pytest.fixture
def member(db_session):
    return make_user(db_session)


@pytest.fixture
def admin(db_session):
    return make_user(db_session, "admin@patriotthanks.org", admin=True)


@pytest.fixture
def member_headers(member, settings):
    return {"Authorization": f"Bearer {create_access_token(member, settings)}"}


@pytest.fixture
def admin_headers(admin, settings):
    return {"Authorization": f"Bearer {create_access_token(admin, settings)}"}
