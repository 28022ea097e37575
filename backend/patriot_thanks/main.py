import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .database import Database
from .errors import PatriotThanksError
from .rate_limit import InMemoryRateLimiter
from .routes.admin import router as admin_router
from .routes.auth import router as auth_router
from .routes.businesses import router as businesses_router
from .routes.chains import router as chains_router
from .routes.donations import router as donations_router
from .routes.favorites import router as favorites_router
from .routes.incentives import router as incentives_router
from .routes.search import router as search_router
from .schemas import HealthResponse
from .services.email_service import EmailSender, ResendEmailSender
from .services.geocoding_service import GoogleGeocoder
from .services.payment_service import PaymentGateway, PayPalClient, StripeClient
from .services.places_service import GooglePlacesClient
from .services.search_service import SearchService
from .telemetry.logging_utils import configure_logging
from .telemetry.middleware import TelemetryMiddleware

logger = logging.getLogger(__name__)


def build_search_service(settings: Settings) -> SearchService:
    geocoder = GoogleGeocoder(settings.google_maps_api_key, timeout=settings.http_timeout_seconds)
    places = None
    if settings.google_maps_api_key:
        places = GooglePlacesClient(settings.google_maps_api_key, timeout=settings.http_timeout_seconds)
    else:
        logger.warning("No Google Maps API key configured; external supplementation disabled")
    return SearchService(
        geocoder,
        places,
        result_limit=settings.search_result_limit,
        places_limit=settings.places_result_limit,
    )


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    return PaymentGateway(
        stripe=StripeClient(settings.stripe_secret_key, timeout=settings.http_timeout_seconds),
        paypal=PayPalClient(
            settings.paypal_client_id,
            settings.paypal_client_secret,
            settings.paypal_base_url,
            timeout=settings.http_timeout_seconds,
        ),
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        content = exc.detail if isinstance(exc.detail, dict) else {"message": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg")}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"message": _validation_message(exc), "errors": errors})

    @app.exception_handler(PatriotThanksError)
    async def service_exception_handler(request: Request, exc: PatriotThanksError) -> JSONResponse:
        payload = exc.to_payload()
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
            if settings.is_production:
                payload.pop("error", None)
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error on %s %s", request.method, request.url.path)
        payload = {"message": "Database error"}
        if not settings.is_production:
            payload["error"] = str(exc)
        return JSONResponse(status_code=500, content=payload)


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    *,
    search_service: SearchService | None = None,
    email: EmailSender | None = None,
    payments: PaymentGateway | None = None,
    rate_limiter: InMemoryRateLimiter | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.perf_log_level)

    owned_database = database is None
    database = database or Database(settings.database_url)
    search_service = search_service or build_search_service(settings)
    email = email or ResendEmailSender(
        settings.resend_api_key, settings.email_from, timeout=settings.http_timeout_seconds
    )
    payments = payments or build_payment_gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("%s starting (%s)", settings.app_name, settings.environment)
        yield
        if owned_database:
            database.dispose()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.search_service = search_service
    app.state.email = email
    app.state.payments = payments
    app.state.rate_limiter = rate_limiter or InMemoryRateLimiter()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TelemetryMiddleware, enabled=settings.telemetry_enabled)
    register_exception_handlers(app, settings)

    for router in (
        search_router,
        chains_router,
        businesses_router,
        incentives_router,
        auth_router,
        donations_router,
        favorites_router,
        admin_router,
    ):
        app.include_router(router, prefix="/api")

    @app.get("/health", response_model=HealthResponse)
    def healthcheck() -> HealthResponse:
        with database.session() as session:
            session.execute(text("SELECT 1"))
        return HealthResponse(status="ok")

    return app


app = create_app()
