"""Structured request logging middleware.

One ``request_completed`` (or ``request_error``) event per request carrying
method, path, status, duration_ms, the X-Request-ID echoed back to the client
and, when the session cookie verifies, the caller's room and attendee ids.
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.meetroom.api.session import decode_identity
from src.meetroom.config import get_settings

logger = structlog.get_logger(__name__)


def _caller_fields(request: Request) -> dict:
    """Best-effort room/attendee ids for log context; never fails the request."""
    settings = get_settings()
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    identity = decode_identity(token, settings) if token else None
    if identity is None:
        return {}
    return {"room_id": str(identity.room_id), "attendee_id": str(identity.attendee_id)}


def _level_for(status_code: int):
    if status_code >= 500:
        return logger.error
    if status_code >= 400:
        return logger.warning
    return logger.info


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with caller context and timing.

    Honors an incoming X-Request-ID header, otherwise generates one.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        started = time.monotonic()
        fields = {
            "method": request.method,
            "path": request.url.path,
            "request_id": request_id,
            **_caller_fields(request),
        }

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "request_error",
                status_code=500,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
                **fields,
            )
            raise

        response.headers["X-Request-ID"] = request_id
        _level_for(response.status_code)(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
            **fields,
        )
        return response
