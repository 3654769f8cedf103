"""Interval overlap validator.

Pure checks shared with confirmation:
- ``to_utc_range``: caller input -> UTC TimeRange, start strictly before end
- ``require_inside_window``: range must sit fully inside the availability
  window; never clipped
- ``find_overlap``: half-open overlap test, [a0, a1) and [b0, b1) overlap iff
  a0 < b1 and b0 < a1, so abutting ranges do not overlap

IntervalValidator runs submit/delete for the caller inside the room's
critical section so two concurrent submissions by one attendee cannot both
pass the overlap check.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog

from src.meetroom.core.errors import Forbidden, NotFound, Rejected
from src.meetroom.core.monitoring import intervals_submitted_total
from src.meetroom.core.timezones import to_utc
from src.meetroom.rooms.identity import IdentityBinding, load_caller
from src.meetroom.rooms.schemas import Interval, IntervalMode, Room, TimeRange
from src.meetroom.rooms.store import RecordStore

logger = structlog.get_logger(__name__)


# ── Pure checks ─────────────────────────────────────────────────────────────


def to_utc_range(start: datetime, end: datetime, zone_name: str) -> TimeRange:
    """Convert caller input to a UTC range.

    Raises:
        Rejected: Unknown zone, nonexistent local time, or start not before end.
    """
    start_utc = to_utc(start, zone_name)
    end_utc = to_utc(end, zone_name)
    if start_utc >= end_utc:
        raise Rejected("start must be before end")
    return TimeRange(start=start_utc, end=end_utc)


def require_inside_window(room: Room, candidate: TimeRange) -> None:
    if not room.window.contains(candidate):
        raise Rejected("outside availability window")


def find_overlap(candidate: TimeRange, existing: Iterable[Interval]) -> Interval | None:
    """Return the first existing interval overlapping ``candidate``, if any."""
    for interval in existing:
        if candidate.overlaps(interval.time_range):
            return interval
    return None


# ── Service ─────────────────────────────────────────────────────────────────


class IntervalValidator:
    """Submit and delete the caller's free/busy intervals.

    Args:
        store: RecordStore for transactional access.
        identity: IdentityBinding resolving the caller.
    """

    def __init__(self, store: RecordStore, identity: IdentityBinding) -> None:
        self._store = store
        self._identity = identity

    async def submit(
        self,
        ctx: Any,
        start: datetime,
        end: datetime,
        mode: IntervalMode,
    ) -> Interval:
        """Record a FREE/BUSY interval for the caller.

        Raises:
            NotFound: Caller unbound, or room/attendee gone.
            Rejected: Room not open, bad ordering, outside window, or overlap.
        """
        identity = await self._identity.require(ctx)

        async with self._store.transaction() as tx:
            room, attendee = await load_caller(tx, identity)

            if not room.is_open:
                intervals_submitted_total.labels(outcome="room_not_open").inc()
                raise Rejected("room not open")

            try:
                candidate = to_utc_range(start, end, room.time_zone)
                require_inside_window(room, candidate)
            except Rejected as exc:
                intervals_submitted_total.labels(outcome="invalid").inc()
                logger.info(
                    "interval.rejected",
                    room_id=str(room.id),
                    attendee_id=str(attendee.id),
                    reason=exc.reason,
                )
                raise

            existing = await tx.list_intervals_by_attendee(attendee.id)
            clash = find_overlap(candidate, existing)
            if clash is not None:
                intervals_submitted_total.labels(outcome="overlap").inc()
                logger.info(
                    "interval.overlap",
                    room_id=str(room.id),
                    attendee_id=str(attendee.id),
                    existing_id=str(clash.id),
                )
                raise Rejected("overlapping interval")

            interval = await tx.create_interval(
                Interval(
                    attendee_id=attendee.id,
                    start=candidate.start,
                    end=candidate.end,
                    mode=IntervalMode(mode),
                )
            )

        intervals_submitted_total.labels(outcome="accepted").inc()
        logger.info(
            "interval.submitted",
            room_id=str(room.id),
            attendee_id=str(attendee.id),
            interval_id=str(interval.id),
            mode=interval.mode.value,
        )
        return interval

    async def delete(self, ctx: Any, interval_id: uuid.UUID) -> None:
        """Delete one of the caller's own intervals while the room is open.

        Raises:
            NotFound: Caller unbound, room gone, or no such interval.
            Forbidden: The interval belongs to another attendee.
            Rejected: Room not open.
        """
        identity = await self._identity.require(ctx)

        async with self._store.transaction() as tx:
            room, attendee = await load_caller(tx, identity)

            interval = await tx.get_interval(interval_id)
            if interval is None:
                raise NotFound("interval not found")
            if interval.attendee_id != attendee.id:
                raise Forbidden("interval belongs to another attendee")
            if not room.is_open:
                raise Rejected("room not open")

            await tx.delete_interval(interval_id)

        logger.info(
            "interval.deleted",
            room_id=str(room.id),
            attendee_id=str(attendee.id),
            interval_id=str(interval_id),
        )
