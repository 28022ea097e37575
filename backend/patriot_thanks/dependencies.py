"""Request-scoped accessors for the resources held on ``app.state``."""

from __future__ import annotations

from fastapi import Request

from .config import Settings
from .rate_limit import InMemoryRateLimiter
from .services.email_service import EmailSender
from .services.payment_service import PaymentGateway
from .services.search_service import SearchService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payments


def get_rate_limiter(request: Request) -> InMemoryRateLimiter:
    return request.app.state.rate_limiter
