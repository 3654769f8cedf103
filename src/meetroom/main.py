"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the domain error handler, lifespan events that build the record store and the
room services, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.meetroom.api.middleware.logging import LoggingMiddleware
from src.meetroom.api.session import CookieIdentityBinding
from src.meetroom.api.v1.router import router as v1_router
from src.meetroom.config import Settings, StoreBackend, get_settings
from src.meetroom.core.database import close_db, get_engine, init_db
from src.meetroom.core.errors import (
    Forbidden,
    Internal,
    MeetroomError,
    NotFound,
    Rejected,
    Transient,
)
from src.meetroom.core.logging import configure_structlog
from src.meetroom.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.meetroom.rooms.admission import AdmissionController
from src.meetroom.rooms.confirmation import ConfirmationCoordinator
from src.meetroom.rooms.intervals import IntervalValidator
from src.meetroom.rooms.lifecycle import RoomLifecycleManager
from src.meetroom.rooms.memory_store import InMemoryRecordStore
from src.meetroom.rooms.notifier import Notifier, build_notifier
from src.meetroom.rooms.sql_store import SqlRecordStore
from src.meetroom.rooms.store import RecordStore

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR: dict[type[MeetroomError], int] = {
    NotFound: 404,
    Forbidden: 403,
    Rejected: 409,
    Transient: 503,
    Internal: 500,
}


# ── Service Wiring ───────────────────────────────────────────────────────────


def install_services(
    app: FastAPI,
    store: RecordStore,
    notifier: Notifier,
    settings: Settings | None = None,
    notify_in_background: bool = False,
) -> None:
    """Build the room services over ``store`` and publish them on app.state."""
    settings = settings or get_settings()
    identity = CookieIdentityBinding(settings)

    app.state.store = store
    app.state.notifier = notifier
    app.state.lifecycle = RoomLifecycleManager(store, identity, settings)
    app.state.admission = AdmissionController(store, identity, settings)
    app.state.interval_validator = IntervalValidator(store, identity)
    app.state.confirmation = ConfirmationCoordinator(
        store, identity, notifier, notify_in_background=notify_in_background
    )


async def _build_store(settings: Settings) -> RecordStore:
    if settings.STORE_BACKEND == StoreBackend.memory:
        logger.warning("store.memory_backend", detail="rooms are lost on restart")
        return InMemoryRecordStore(lock_timeout_ms=settings.STORE_LOCK_TIMEOUT_MS)
    await init_db()
    return SqlRecordStore(get_engine(), lock_timeout_ms=settings.STORE_LOCK_TIMEOUT_MS)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build store and services on startup, drain on shutdown."""
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    store = await _build_store(settings)
    install_services(app, store, build_notifier(settings), settings, notify_in_background=True)
    logger.info(
        "app.started",
        store_backend=settings.STORE_BACKEND.value,
        environment=settings.ENVIRONMENT.value,
    )

    yield

    confirmation = getattr(app.state, "confirmation", None)
    if confirmation is not None:
        await confirmation.drain()
    await store.close()
    await close_db()
    logger.info("app.stopped")


# ── Error Handling ───────────────────────────────────────────────────────────


async def domain_error_handler(request: Request, exc: MeetroomError) -> JSONResponse:
    """Map a domain error to ``{"error": kind, "reason": reason}``."""
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    headers = {"Retry-After": "1"} if isinstance(exc, Transient) else None

    if status_code >= 500:
        logger.error(
            "request.domain_error",
            path=request.url.path,
            kind=exc.kind,
            reason=exc.reason,
        )

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "reason": exc.reason},
        headers=headers,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meetroom API",
        version="0.1.0",
        description="Meeting scheduling rooms: shared availability, one confirmed time",
        lifespan=lifespan,
    )

    app.add_exception_handler(MeetroomError, domain_error_handler)

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
