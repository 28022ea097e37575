"""Service-layer exceptions, each carrying the HTTP status it maps to."""

from __future__ import annotations

from typing import Any


class PatriotThanksError(Exception):
    status_code = 500

    def __init__(self, message: str, *, error: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.error = error
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message}
        if self.error is not None:
            payload["error"] = self.error
        payload.update(self.details)
        return payload


class ValidationError(PatriotThanksError):
    status_code = 400


class AuthenticationError(PatriotThanksError):
    status_code = 401


class AuthorizationError(PatriotThanksError):
    status_code = 403


class NotFoundError(PatriotThanksError):
    status_code = 404


class ConflictError(PatriotThanksError):
    status_code = 409


class RateLimitedError(PatriotThanksError):
    status_code = 429


class UpstreamError(PatriotThanksError):
    status_code = 500


class PaymentError(PatriotThanksError):
    status_code = 502
