"""
Application Factory
===================
Builds the FastAPI app and wires the services together.

Run with:
    uvicorn --factory accessotp.api.app:create_app
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..clock import Clock, SystemClock
from ..config import Settings
from ..delivery.dispatcher import DeliveryDispatcher
from ..errors import DuplicateUserError, SessionError
from ..identity import IdentityResolver
from ..logging_config import RequestContextMiddleware, setup_logging
from ..metrics import ServiceMetrics
from ..otp.engine import OTPEngine
from ..ratelimit import FixedWindowLimiter
from ..sessions import SessionIssuer
from ..storage.base import Store
from ..storage.database import create_store
from .health import create_health_router
from .routes import auth_router, otp_router, users_router

logger = structlog.get_logger(__name__)

DEMO_USER = {
    "email": "test@example.com",
    "phone_number": "+1234567890",
    "first_name": "Test",
    "last_name": "User",
}


async def seed_demo_user(identity: IdentityResolver) -> None:
    """Register the demo account unless it already exists."""
    try:
        await identity.register(**DEMO_USER)
    except DuplicateUserError:
        logger.debug("Demo user already present")


def install_exception_handlers(app: FastAPI) -> None:
    """Map framework and domain errors onto ``{error, code}`` bodies."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
        return JSONResponse(
            status_code=400,
            content={"error": "; ".join(problems) or "Invalid request", "code": "ValidationError"},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            content = exc.detail
        else:
            content = {"error": str(exc.detail), "code": f"HTTP{exc.status_code}"}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(SessionError)
    async def session_error_handler(request: Request, exc: SessionError):
        return JSONResponse(
            status_code=401,
            content={"error": str(exc), "code": "InvalidSession"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(DuplicateUserError)
    async def duplicate_user_handler(request: Request, exc: DuplicateUserError):
        return JSONResponse(status_code=409, content={"error": str(exc), "code": "DuplicateUser"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", error_type=type(exc).__name__, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "An unexpected error occurred", "code": "Unexpected"},
        )


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[Store] = None,
    dispatcher: Optional[DeliveryDispatcher] = None,
    clock: Optional[Clock] = None,
    metrics: Optional[ServiceMetrics] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Create the AccessOTP application.

    Every collaborator can be injected; anything left out is built from
    ``settings`` (read from the environment when omitted).
    """
    settings = settings or Settings.from_env()
    if configure_logging:
        setup_logging(settings.service_name, settings.log_level, settings.log_json)

    clock = clock or SystemClock()
    metrics = metrics or ServiceMetrics()
    store = store or create_store(settings.database_url)
    dispatcher = dispatcher or DeliveryDispatcher.from_config(
        settings.delivery,
        log_content=not settings.is_production,
        metrics=metrics,
        fallback_to_logging=not settings.is_production,
    )
    identity = IdentityResolver(store, clock)
    sessions = SessionIssuer(store, settings.sessions, clock, metrics)
    engine = OTPEngine(
        store,
        dispatcher,
        sessions,
        config=settings.otp,
        clock=clock,
        identity=identity,
        metrics=metrics,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.create_schema()
        await dispatcher.initialize()
        if settings.seed_demo_user:
            await seed_demo_user(identity)
        logger.info(
            "Service started",
            environment=settings.environment,
            store=store.name,
            expose_code=settings.otp.expose_code,
        )
        try:
            yield
        finally:
            await dispatcher.close()
            await store.close()
            logger.info("Service stopped")

    app = FastAPI(
        title="AccessOTP Service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.metrics = metrics
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.identity = identity
    app.state.sessions = sessions
    app.state.engine = engine
    app.state.rate_limiter = FixedWindowLimiter(
        rate=settings.rate_limit_per_minute, window=60, clock=clock
    )

    app.add_middleware(RequestContextMiddleware)
    install_exception_handlers(app)

    app.include_router(create_health_router(settings.service_name, __version__))
    app.include_router(otp_router)
    app.include_router(auth_router)
    app.include_router(users_router)
    app.mount("/metrics", metrics.asgi_app())

    return app
