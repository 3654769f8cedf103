"""Room lifecycle manager.

Creates a room together with its host attendee, deletes a room with its
whole subtree, and serves the read-only room overview.

States: Open (no confirmed time) and Confirmed (confirmed time set). The
only way into Confirmed is the confirmation coordinator; the only way out of
either state is deletion by the host.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.meetroom.config import Settings, get_settings
from src.meetroom.core.errors import Forbidden, Internal, Rejected
from src.meetroom.core.monitoring import rooms_created_total
from src.meetroom.core.timezones import get_zone
from src.meetroom.rooms.identity import IdentityBinding, load_caller
from src.meetroom.rooms.intervals import to_utc_range
from src.meetroom.rooms.schemas import (
    Attendee,
    Identity,
    Room,
    RoomCreated,
    RoomOverview,
)
from src.meetroom.rooms.store import RecordStore, SecretKeyConflict

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomLifecycleManager:
    """Room creation, deletion and overview.

    Args:
        store: RecordStore for transactional access.
        identity: IdentityBinding for the caller's session.
        settings: Room rules (capacity floor, secret key size and retries).
        token_factory: Produces secret keys; defaults to secrets.token_urlsafe.
        clock: Current UTC time.
    """

    def __init__(
        self,
        store: RecordStore,
        identity: IdentityBinding,
        settings: Settings | None = None,
        token_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._identity = identity
        self._settings = settings or get_settings()
        self._token_factory = token_factory or (
            lambda: secrets.token_urlsafe(self._settings.SECRET_KEY_BYTES)
        )
        self._clock = clock

    async def create(
        self,
        ctx: Any,
        *,
        title: str,
        host_name: str,
        host_contact: str,
        start: datetime,
        end: datetime,
        capacity: int,
        time_zone: str,
    ) -> RoomCreated:
        """Create a room and its host, then bind the caller as the host.

        ``start``/``end`` are wall-clock times in ``time_zone`` when naive.

        Raises:
            Rejected: Capacity below the floor, unknown zone, nonexistent
                local time, or start not before end.
            Internal: No unique secret key after the configured attempts.
        """
        if not title.strip():
            raise Rejected("title required")
        if not host_name:
            raise Rejected("display name required")
        if capacity < self._settings.MIN_CAPACITY:
            raise Rejected(f"capacity must be at least {self._settings.MIN_CAPACITY}")
        get_zone(time_zone)
        window = to_utc_range(start, end, time_zone)

        attempts = self._settings.SECRET_KEY_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            now = self._clock()
            room = Room(
                title=title,
                secret_key=self._token_factory(),
                window_start=window.start,
                window_end=window.end,
                capacity=capacity,
                time_zone=time_zone,
                created_at=now,
            )
            host = Attendee(
                room_id=room.id,
                display_name=host_name,
                contact_address=host_contact,
                is_host=True,
                created_at=now,
            )
            try:
                async with self._store.transaction() as tx:
                    room = await tx.create_room(room)
                    host = await tx.create_attendee(host)
            except SecretKeyConflict:
                logger.warning("room.secret_key_collision", attempt=attempt)
                continue
            break
        else:
            logger.error("room.secret_key_exhausted", attempts=attempts)
            raise Internal("could not allocate a room key")

        identity = Identity(room_id=room.id, attendee_id=host.id)
        await self._identity.bind(ctx, identity)

        rooms_created_total.inc()
        logger.info(
            "room.created",
            room_id=str(room.id),
            capacity=room.capacity,
            time_zone=room.time_zone,
            window_start=room.window_start.isoformat(),
            window_end=room.window_end.isoformat(),
        )
        return RoomCreated(room=room, host=host, identity=identity)

    async def delete(self, ctx: Any) -> None:
        """Delete the caller's room and everything in it. Host only.

        Raises:
            NotFound: Caller unbound or room gone.
            Forbidden: Caller is not the host.
        """
        identity = await self._identity.require(ctx)

        async with self._store.transaction() as tx:
            room, attendee = await load_caller(tx, identity)
            if not attendee.is_host:
                raise Forbidden("host only")
            await tx.delete_room_cascade(room.id)

        await self._identity.clear(ctx)
        logger.info("room.deleted", room_id=str(room.id))

    async def overview(self, ctx: Any) -> RoomOverview:
        """Room, attendees and every attendee's intervals for the caller."""
        identity = await self._identity.require(ctx)

        async with self._store.transaction() as tx:
            room, attendee = await load_caller(tx, identity, lock=False)
            attendees = await tx.list_attendees_by_room(room.id)
            if not attendees:
                logger.error("room.no_attendees", room_id=str(room.id))
                raise Internal("room has no attendees")
            intervals = await tx.list_intervals_by_attendee_ids([a.id for a in attendees])

        return RoomOverview(
            room=room,
            attendees=attendees,
            intervals=intervals,
            current_attendee_id=attendee.id,
        )

