"""Confirmation coordinator.

The host picks one concrete meeting interval inside the availability window.
Setting it moves the room from Open to Confirmed inside the room's critical
section. Only after that transaction commits, and outside the lock, every
attendee is notified. A failed notification is logged; it never undoes the
confirmation.

Notifications either run inline (awaited before ``confirm`` returns) or as
tracked background tasks that ``drain()`` waits for on shutdown.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog

from src.meetroom.core.errors import Forbidden, Rejected
from src.meetroom.core.monitoring import rooms_confirmed_total
from src.meetroom.core.timezones import format_range
from src.meetroom.rooms.identity import IdentityBinding, load_caller
from src.meetroom.rooms.intervals import require_inside_window, to_utc_range
from src.meetroom.rooms.notifier import Notifier
from src.meetroom.rooms.schemas import Attendee, Room
from src.meetroom.rooms.store import RecordStore

logger = structlog.get_logger(__name__)


def build_confirmation_message(room: Room, attendee: Attendee) -> tuple[str, str]:
    """Subject and plain-text body announcing the confirmed time."""
    subject = f"{room.title} - Meeting Time Confirmed"
    when = format_range(room.actual_start, room.actual_end, room.time_zone)
    body = (
        f"Hi {attendee.display_name},\n"
        "\n"
        "The host has confirmed the meeting time.\n"
        "\n"
        f"Meeting Title: {room.title}\n"
        f"Meeting Time: {when}\n"
    )
    return subject, body


class ConfirmationCoordinator:
    """Finalize the meeting time and notify attendees.

    Args:
        store: RecordStore for transactional access.
        identity: IdentityBinding for the caller's session.
        notifier: Outbound message delivery.
        notify_in_background: Schedule notifications as tasks instead of
            awaiting them before ``confirm`` returns.
    """

    def __init__(
        self,
        store: RecordStore,
        identity: IdentityBinding,
        notifier: Notifier,
        notify_in_background: bool = False,
    ) -> None:
        self._store = store
        self._identity = identity
        self._notifier = notifier
        self._notify_in_background = notify_in_background
        self._pending: set[asyncio.Task] = set()

    async def confirm(self, ctx: Any, start: datetime, end: datetime) -> Room:
        """Set the room's confirmed interval. Host only, room must be open.

        Raises:
            NotFound: Caller unbound or room gone.
            Forbidden: Caller is not the host.
            Rejected: Room not open, bad ordering, or outside the window.
        """
        identity = await self._identity.require(ctx)

        async with self._store.transaction() as tx:
            room, attendee = await load_caller(tx, identity)
            if not attendee.is_host:
                raise Forbidden("host only")
            if not room.is_open:
                raise Rejected("room not open")

            chosen = to_utc_range(start, end, room.time_zone)
            require_inside_window(room, chosen)

            room = await tx.update_room_actual_interval(room.id, chosen.start, chosen.end)
            attendees = await tx.list_attendees_by_room(room.id)

        rooms_confirmed_total.inc()
        logger.info(
            "room.confirmed",
            room_id=str(room.id),
            actual_start=room.actual_start.isoformat(),
            actual_end=room.actual_end.isoformat(),
            attendee_count=len(attendees),
        )

        if self._notify_in_background:
            task = asyncio.create_task(
                self._notify_all(room, attendees), name=f"notify_room_{room.id}"
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            await self._notify_all(room, attendees)
        return room

    async def unbind(self, ctx: Any) -> None:
        """Clear the caller's identity binding. No domain state changes."""
        await self._identity.clear(ctx)

    async def drain(self) -> None:
        """Wait for background notifications still in flight."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _notify_all(self, room: Room, attendees: list[Attendee]) -> None:
        await asyncio.gather(*(self._notify_one(room, a) for a in attendees))

    async def _notify_one(self, room: Room, attendee: Attendee) -> None:
        try:
            subject, body = build_confirmation_message(room, attendee)
            await self._notifier.send(attendee.contact_address, subject, body)
        except Exception:
            logger.warning(
                "notify.dispatch_failed",
                room_id=str(room.id),
                attendee_id=str(attendee.id),
                exc_info=True,
            )
