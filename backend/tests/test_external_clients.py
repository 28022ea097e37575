import json
from urllib.parse import parse_qs

import httpx
import pytest

from patriot_thanks.errors import PaymentError
from patriot_thanks.services.distance_service import Coordinates
from patriot_thanks.services.email_service import (
    EmailDeliveryError,
    ResendEmailSender,
    verification_link,
    welcome_verification_email,
)
from patriot_thanks.services.geocoding_service import GoogleGeocoder, resolve_search_center
from patriot_thanks.services.payment_service import PayPalClient, StripeClient, dollars_to_cents, format_amount
from patriot_thanks.services.query_builder import BusinessSearchFields


def _client(handler, base_url=""):
    return httpx.Client(base_url=base_url, transport=httpx.MockTransport(handler))


def test_geocoder_reads_first_result():
    def handler(request):
        assert request.url.params["address"] == "68102"
        return httpx.Response(
            200, json={"status": "OK", "results": [{"geometry": {"location": {"lat": 41.26, "lng": -95.93}}}]}
        )

    geocoder = GoogleGeocoder("key", client=_client(handler))
    assert geocoder.geocode("68102") == Coordinates(41.26, -95.93)


def test_geocoder_returns_none_on_zero_results_and_errors():
    zero = GoogleGeocoder("key", client=_client(lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS"})))
    broken = GoogleGeocoder("key", client=_client(lambda request: httpx.Response(503)))
    unconfigured = GoogleGeocoder(None, client=_client(lambda request: pytest.fail("no request expected")))

    assert zero.geocode("00000") is None
    assert broken.geocode("68102") is None
    assert unconfigured.geocode("68102") is None


def test_explicit_coordinates_win_over_postal_code():
    class Exploding:
        def geocode(self, address):
            raise AssertionError("should not geocode")

    fields = BusinessSearchFields(address="68102", lat=40.0, lng=-96.0, radius_miles=5)
    center = resolve_search_center(fields, Exploding())

    assert (center.lat, center.lng, center.source) == (40.0, -96.0, "coordinates")


def test_street_address_is_not_geocoded():
    class Recording:
        def __init__(self):
            self.calls = []

        def geocode(self, address):
            self.calls.append(address)

    geocoder = Recording()
    assert resolve_search_center(BusinessSearchFields(address="12 Elm St"), geocoder) is None
    assert geocoder.calls == []


def test_resend_sender_posts_message():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    sender = ResendEmailSender("re_key", "Patriot Thanks <noreply@patriotthanks.com>", client=_client(handler))
    link = verification_link("https://patriotthanks.org/", "/auth/verify-email", "123456", "a+b@patriotthanks.org")
    message_id = sender.send(welcome_verification_email("a+b@patriotthanks.org", "<Sam>", link, "123456"))

    assert message_id == "email_123"
    assert seen["auth"] == "Bearer re_key"
    assert seen["body"]["to"] == ["a+b@patriotthanks.org"]
    assert "&lt;Sam&gt;" in seen["body"]["html"]
    assert link == "https://patriotthanks.org/auth/verify-email?token=123456&email=a%2Bb%40patriotthanks.org"


def test_resend_sender_failures_raise_delivery_error():
    failing = ResendEmailSender("re_key", "x@patriotthanks.com", client=_client(lambda request: httpx.Response(500)))
    unconfigured = ResendEmailSender(None, "x@patriotthanks.com", client=_client(lambda request: httpx.Response(200)))
    message = welcome_verification_email("a@patriotthanks.org", "Sam", "https://patriotthanks.org", "1")

    with pytest.raises(EmailDeliveryError):
        failing.send(message)
    with pytest.raises(EmailDeliveryError):
        unconfigured.send(message)


def test_amount_helpers():
    assert dollars_to_cents(19.99) == 1999
    assert dollars_to_cents(0.005) == 1
    assert format_amount(5) == "5.00"


def test_stripe_creates_intent_in_cents():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "pi_9", "client_secret": "cs_9", "status": "requires_payment_method"})

    stripe = StripeClient("sk_test", client=_client(handler, "https://api.stripe.com/v1"))
    intent = stripe.create_payment_intent(12.5, email="a@patriotthanks.org", recurring=True)

    assert (intent.id, intent.client_secret) == ("pi_9", "cs_9")
    assert seen["path"] == "/v1/payment_intents"
    assert seen["form"]["amount"] == ["1250"]
    assert seen["form"]["metadata[recurring]"] == ["true"]


def test_stripe_without_key_is_a_payment_error():
    with pytest.raises(PaymentError):
        StripeClient(None, client=_client(lambda request: httpx.Response(200))).create_payment_intent(5)


def test_paypal_authenticates_then_captures():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if request.url.path == "/v1/oauth2/token":
            assert request.headers["Authorization"].startswith("Basic ")
            return httpx.Response(200, json={"access_token": "tok"})
        assert request.headers["Authorization"] == "Bearer tok"
        return httpx.Response(
            201,
            json={
                "id": "ORDER-7",
                "status": "COMPLETED",
                "purchase_units": [{"payments": {"captures": [{"id": "CAP-7"}]}}],
            },
        )

    base_url = "https://api-m.sandbox.paypal.com"
    paypal = PayPalClient("id", "secret", base_url, client=_client(handler, base_url))
    capture = paypal.capture_order("ORDER-7")

    assert capture.completed
    assert capture.capture_id == "CAP-7"
    assert calls == ["/v1/oauth2/token", "/v2/checkout/orders/ORDER-7/capture"]
