from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from ..errors import UpstreamError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailDeliveryError(UpstreamError):
    pass


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


class EmailSender(Protocol):
    def send(self, message: EmailMessage) -> str | None: ...


class ResendEmailSender:
    """Delivers mail through the Resend REST API."""

    def __init__(
        self,
        api_key: str | None,
        sender: str,
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, message: EmailMessage) -> str | None:
        if not self.api_key:
            raise EmailDeliveryError("Email delivery is not configured")
        body = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        try:
            response = self._client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=body,
            )
            response.raise_for_status()
            payload: Any = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EmailDeliveryError("Failed to send email", error=str(exc)) from exc

        message_id = payload.get("id") if isinstance(payload, dict) else None
        logger.info("Email %r sent to %s (id=%s)", message.subject, message.to, message_id)
        return message_id

    def close(self) -> None:
        self._client.close()


def verification_link(base_url: str, path: str, token: str, email: str) -> str:
    return f"{base_url.rstrip('/')}{path}?token={token}&email={quote(email)}"


def _wrap_html(title: str, paragraphs: list[str]) -> str:
    body = "".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1>{body}"
        "<p>Thank you for your service,<br>The Patriot Thanks Team</p></body></html>"
    )


def welcome_verification_email(to: str, first_name: str, link: str, token: str) -> EmailMessage:
    name = html.escape(first_name)
    return EmailMessage(
        to=to,
        subject="Welcome to Patriot Thanks - Verify Your Email",
        html=_wrap_html(
            "Welcome to Patriot Thanks",
            [
                f"Hi {name}, thanks for joining Patriot Thanks.",
                f'Please verify your email address: <a href="{html.escape(link)}">Verify Email</a>',
                f"Or enter this verification code: <strong>{token}</strong>",
                "This code expires in 7 days.",
            ],
        ),
        text=(
            f"Hi {first_name},\n\nThanks for joining Patriot Thanks.\n\n"
            f"Verify your email: {link}\nVerification code: {token}\n\nThis code expires in 7 days.\n"
        ),
    )


def resend_verification_email(to: str, first_name: str, link: str, token: str) -> EmailMessage:
    name = html.escape(first_name)
    return EmailMessage(
        to=to,
        subject="Verify Your Patriot Thanks Email",
        html=_wrap_html(
            "Verify Your Email",
            [
                f"Hi {name}, here is your new verification link.",
                f'<a href="{html.escape(link)}">Verify Email</a>',
                f"Verification code: <strong>{token}</strong>",
                "This code expires in 7 days.",
            ],
        ),
        text=f"Hi {first_name},\n\nVerify your email: {link}\nVerification code: {token}\n\nExpires in 7 days.\n",
    )


def email_change_email(to: str, first_name: str, link: str, token: str) -> EmailMessage:
    name = html.escape(first_name)
    return EmailMessage(
        to=to,
        subject="Confirm Your New Patriot Thanks Email Address",
        html=_wrap_html(
            "Confirm Your New Email",
            [
                f"Hi {name}, we received a request to change your account email to this address.",
                f'<a href="{html.escape(link)}">Confirm New Email</a>',
                f"Confirmation code: <strong>{token}</strong>",
                "This code expires in 1 hour. If you did not request this change, ignore this message.",
            ],
        ),
        text=(
            f"Hi {first_name},\n\nConfirm your new email: {link}\nConfirmation code: {token}\n\n"
            "This code expires in 1 hour.\n"
        ),
    )


def donation_receipt_email(
    to: str, name: str, amount: float, recurring: bool, transaction_id: str | None
) -> EmailMessage:
    kind = "monthly donation" if recurring else "donation"
    reference = transaction_id or "n/a"
    return EmailMessage(
        to=to,
        subject="Thank You for Supporting Patriot Thanks",
        html=_wrap_html(
            "Thank You for Your Donation",
            [
                f"Dear {html.escape(name)}, we received your {kind} of ${amount:,.2f}.",
                f"Transaction reference: {html.escape(reference)}",
            ],
        ),
        text=f"Dear {name},\n\nWe received your {kind} of ${amount:,.2f}.\nTransaction reference: {reference}\n",
    )
