"""Signed-cookie identity binding.

The caller's (room_id, attendee_id) pair travels in an HttpOnly cookie holding
a JWT signed with SESSION_SECRET_KEY. Tampered, malformed or expired cookies
resolve to no identity; the services then answer NotFound("not authenticated").
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from fastapi import Request, Response
from jose import JWTError, jwt

from src.meetroom.config import Settings, get_settings
from src.meetroom.rooms.identity import IdentityBinding
from src.meetroom.rooms.schemas import Identity

logger = structlog.get_logger(__name__)


@dataclass
class RequestContext:
    """HTTP request context: cookies are read from the request, written to the response."""

    request: Request
    response: Response


# ── Token encoding ───────────────────────────────────────────────────────────


def encode_identity(identity: Identity, settings: Settings, now: datetime | None = None) -> str:
    """Sign ``identity`` into a JWT that expires after SESSION_TTL_SECONDS."""
    now = now or datetime.now(timezone.utc)
    claims = {
        "room_id": str(identity.room_id),
        "attendee_id": str(identity.attendee_id),
        "iat": now,
        "exp": now + timedelta(seconds=settings.SESSION_TTL_SECONDS),
    }
    return jwt.encode(claims, settings.SESSION_SECRET_KEY, algorithm=settings.SESSION_ALGORITHM)


def decode_identity(token: str, settings: Settings) -> Identity | None:
    """Verify and decode a session token. None on any verification failure."""
    try:
        payload = jwt.decode(
            token,
            settings.SESSION_SECRET_KEY,
            algorithms=[settings.SESSION_ALGORITHM],
        )
        return Identity(
            room_id=uuid.UUID(payload["room_id"]),
            attendee_id=uuid.UUID(payload["attendee_id"]),
        )
    except JWTError:
        logger.info("session.invalid_token")
        return None
    except (KeyError, TypeError, ValueError):
        logger.info("session.malformed_claims")
        return None


# ── Binding ──────────────────────────────────────────────────────────────────


class CookieIdentityBinding(IdentityBinding):
    """IdentityBinding over a signed session cookie."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def resolve(self, ctx: RequestContext) -> Identity | None:
        token = ctx.request.cookies.get(self._settings.SESSION_COOKIE_NAME)
        if not token:
            return None
        return decode_identity(token, self._settings)

    async def bind(self, ctx: RequestContext, identity: Identity) -> None:
        ctx.response.set_cookie(
            key=self._settings.SESSION_COOKIE_NAME,
            value=encode_identity(identity, self._settings),
            max_age=self._settings.SESSION_TTL_SECONDS,
            httponly=True,
            secure=self._settings.session_cookie_secure,
            samesite="lax",
            path="/",
        )

    async def clear(self, ctx: RequestContext) -> None:
        ctx.response.delete_cookie(
            key=self._settings.SESSION_COOKIE_NAME,
            path="/",
            httponly=True,
            secure=self._settings.session_cookie_secure,
            samesite="lax",
        )
