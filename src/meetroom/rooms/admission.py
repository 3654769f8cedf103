"""Membership admission controller.

Admits callers holding a room's secret key. The room row is locked for the
whole check-then-insert so concurrent joins can never push the attendee
count past capacity.

Display names identify attendees within a room: joining again with an
existing name (exact, case-sensitive) re-binds the caller to that attendee
and replaces its contact address instead of adding a row. The contact
address is not checked on rejoin.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.meetroom.config import Settings, get_settings
from src.meetroom.core.errors import NotFound, Rejected
from src.meetroom.core.monitoring import room_joins_total
from src.meetroom.rooms.identity import IdentityBinding
from src.meetroom.rooms.schemas import Attendee, Identity, JoinResult, Room
from src.meetroom.rooms.store import RecordStore

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdmissionController:
    """Join requests against capacity with name-based de-duplication.

    Args:
        store: RecordStore for transactional access.
        identity: IdentityBinding for the caller's session.
        settings: Late-join grace period.
        clock: Current UTC time.
    """

    def __init__(
        self,
        store: RecordStore,
        identity: IdentityBinding,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._identity = identity
        self._settings = settings or get_settings()
        self._clock = clock

    def _join_closed(self, room: Room, now: datetime) -> bool:
        """True once a confirmed meeting ended more than the grace period ago."""
        if room.actual_end is None:
            return False
        grace = timedelta(hours=self._settings.LATE_JOIN_GRACE_HOURS)
        return now > room.actual_end + grace

    async def join(
        self,
        ctx: Any,
        *,
        secret_key: str,
        display_name: str,
        contact_address: str,
    ) -> JoinResult:
        """Join (or rejoin) the room identified by ``secret_key``.

        Raises:
            NotFound: No room has this secret key.
            Rejected: Meeting already elapsed, or room full.
        """
        if not display_name:
            raise Rejected("display name required")

        rejoined = False
        async with self._store.transaction() as tx:
            room = await tx.get_room_by_secret(secret_key, lock=True)
            if room is None:
                room_joins_total.labels(outcome="not_found").inc()
                raise NotFound("room not found")

            if self._join_closed(room, self._clock()):
                room_joins_total.labels(outcome="late").inc()
                logger.info("admission.late_join", room_id=str(room.id))
                raise Rejected("late join not allowed")

            attendee = await tx.find_attendee_by_room_and_name(room.id, display_name)
            if attendee is not None:
                attendee = await tx.update_attendee_contact(attendee.id, contact_address)
                rejoined = True
            else:
                count = await tx.count_attendees_by_room(room.id)
                if count + 1 > room.capacity:
                    room_joins_total.labels(outcome="full").inc()
                    logger.info(
                        "admission.room_full",
                        room_id=str(room.id),
                        capacity=room.capacity,
                    )
                    raise Rejected("room full")
                attendee = await tx.create_attendee(
                    Attendee(
                        room_id=room.id,
                        display_name=display_name,
                        contact_address=contact_address,
                        is_host=False,
                        created_at=self._clock(),
                    )
                )

        identity = Identity(room_id=room.id, attendee_id=attendee.id)
        await self._identity.bind(ctx, identity)

        outcome = "rejoined" if rejoined else "joined"
        room_joins_total.labels(outcome=outcome).inc()
        logger.info(
            f"admission.{outcome}",
            room_id=str(room.id),
            attendee_id=str(attendee.id),
        )
        return JoinResult(attendee=attendee, identity=identity, rejoined=rejoined)
