"""Thin clients for the card (Stripe) and wallet (PayPal) processors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from ..errors import PaymentError

logger = logging.getLogger(__name__)

STRIPE_API_BASE_URL = "https://api.stripe.com/v1"


def dollars_to_cents(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(amount: float) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str | None
    status: str


@dataclass(frozen=True)
class PayPalCapture:
    order_id: str
    status: str
    capture_id: str | None

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


def _json(response: httpx.Response) -> dict[str, Any]:
    payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError("Unexpected payment processor payload")
    return payload


class StripeClient:
    def __init__(self, secret_key: str | None, *, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self.secret_key = secret_key
        self._client = client or httpx.Client(base_url=STRIPE_API_BASE_URL, timeout=timeout)

    def _request(self, method: str, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.secret_key:
            raise PaymentError("Card payments are not configured")
        try:
            response = self._client.request(
                method,
                path,
                data=data,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
            response.raise_for_status()
            return _json(response)
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Stripe %s %s failed", method, path)
            raise PaymentError("Card processor request failed", error=str(exc)) from exc

    def create_payment_intent(
        self, amount: float, *, email: str | None = None, recurring: bool = False
    ) -> PaymentIntent:
        data: dict[str, Any] = {
            "amount": dollars_to_cents(amount),
            "currency": "usd",
            "automatic_payment_methods[enabled]": "true",
            "metadata[recurring]": "true" if recurring else "false",
        }
        if email:
            data["receipt_email"] = email
        payload = self._request("POST", "/payment_intents", data)
        return PaymentIntent(
            id=payload["id"], client_secret=payload.get("client_secret"), status=payload.get("status", "")
        )

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        payload = self._request("GET", f"/payment_intents/{intent_id}")
        return PaymentIntent(id=payload["id"], client_secret=None, status=payload.get("status", ""))

    def close(self) -> None:
        self._client.close()


class PayPalClient:
    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        base_url: str,
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise PaymentError("PayPal payments are not configured")
        try:
            response = self._client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
            response.raise_for_status()
            return str(_json(response)["access_token"])
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.exception("PayPal authentication failed")
            raise PaymentError("PayPal authentication failed", error=str(exc)) from exc

    def _post(self, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        token = self._access_token()
        try:
            response = self._client.post(path, json=body or {}, headers={"Authorization": f"Bearer {token}"})
            response.raise_for_status()
            return _json(response)
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("PayPal request %s failed", path)
            raise PaymentError("PayPal request failed", error=str(exc)) from exc

    def create_order(self, amount: float, description: str = "Donation to Patriot Thanks") -> str:
        payload = self._post(
            "/v2/checkout/orders",
            {
                "intent": "CAPTURE",
                "purchase_units": [
                    {"amount": {"currency_code": "USD", "value": format_amount(amount)}, "description": description}
                ],
            },
        )
        order_id = payload.get("id")
        if not order_id:
            raise PaymentError("PayPal did not return an order id")
        return str(order_id)

    def capture_order(self, order_id: str) -> PayPalCapture:
        payload = self._post(f"/v2/checkout/orders/{order_id}/capture")
        capture_id = None
        for unit in payload.get("purchase_units") or []:
            captures = ((unit or {}).get("payments") or {}).get("captures") or []
            if captures:
                capture_id = captures[0].get("id")
                break
        return PayPalCapture(order_id=order_id, status=str(payload.get("status", "")), capture_id=capture_id)

    def close(self) -> None:
        self._client.close()


@dataclass
class PaymentGateway:
    stripe: StripeClient
    paypal: PayPalClient

    def close(self) -> None:
        self.stripe.close()
        self.paypal.close()
