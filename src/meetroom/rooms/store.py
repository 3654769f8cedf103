"""Record store contract for rooms, attendees and intervals.

A RecordStore hands out StoreSession units of work through ``transaction()``.
Everything done on one session commits together when the ``async with``
block exits normally and is rolled back when it raises.

Reading a room with ``lock=True`` enters that room's critical section for the
rest of the transaction: no other transaction can lock the same room until
this one finishes. Every read-then-write on room state (capacity check,
overlap check, confirmation state check) must lock the room first.

Waiting for a lock is bounded. A timed-out wait raises Transient.

Backends: sql_store (SQLAlchemy, row locks) and memory_store (in-process,
per-room asyncio locks).
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from src.meetroom.rooms.schemas import Attendee, Interval, Room


class SecretKeyConflict(Exception):
    """Raised by ``create_room`` when the secret key is already taken.

    Never reaches a caller of the services: the lifecycle manager regenerates
    the key and retries in a fresh transaction.
    """


class StoreSession(ABC):
    """One transactional unit of work against the record store."""

    # ── Rooms ────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_room(self, room: Room) -> Room:
        """Insert a room. Raises SecretKeyConflict on a duplicate secret key."""
        ...

    @abstractmethod
    async def get_room_by_id(self, room_id: uuid.UUID, *, lock: bool = False) -> Room | None:
        ...

    @abstractmethod
    async def get_room_by_secret(self, secret_key: str, *, lock: bool = False) -> Room | None:
        ...

    @abstractmethod
    async def update_room_actual_interval(
        self, room_id: uuid.UUID, start: datetime, end: datetime
    ) -> Room:
        ...

    @abstractmethod
    async def delete_room(self, room_id: uuid.UUID) -> None:
        """Delete the room row only. Use ``delete_room_cascade`` from services."""
        ...

    async def delete_room_cascade(self, room_id: uuid.UUID) -> None:
        """Delete a room and its subtree, children first.

        Order: intervals of the room's attendees, then attendees, then the room.
        """
        attendees = await self.list_attendees_by_room(room_id)
        await self.delete_intervals_by_attendee_ids([a.id for a in attendees])
        await self.delete_attendees_by_room(room_id)
        await self.delete_room(room_id)

    # ── Attendees ────────────────────────────────────────────────────────

    @abstractmethod
    async def create_attendee(self, attendee: Attendee) -> Attendee:
        ...

    @abstractmethod
    async def get_attendee(self, attendee_id: uuid.UUID) -> Attendee | None:
        ...

    @abstractmethod
    async def find_attendee_by_room_and_name(
        self, room_id: uuid.UUID, display_name: str
    ) -> Attendee | None:
        """Exact, case-sensitive display name match within one room."""
        ...

    @abstractmethod
    async def update_attendee_contact(
        self, attendee_id: uuid.UUID, contact_address: str
    ) -> Attendee:
        ...

    @abstractmethod
    async def list_attendees_by_room(self, room_id: uuid.UUID) -> list[Attendee]:
        """Attendees ordered by creation time."""
        ...

    async def count_attendees_by_room(self, room_id: uuid.UUID) -> int:
        return len(await self.list_attendees_by_room(room_id))

    @abstractmethod
    async def delete_attendees_by_room(self, room_id: uuid.UUID) -> int:
        ...

    # ── Intervals ────────────────────────────────────────────────────────

    @abstractmethod
    async def create_interval(self, interval: Interval) -> Interval:
        ...

    @abstractmethod
    async def get_interval(self, interval_id: uuid.UUID) -> Interval | None:
        ...

    @abstractmethod
    async def list_intervals_by_attendee(self, attendee_id: uuid.UUID) -> list[Interval]:
        """Intervals ordered by start."""
        ...

    @abstractmethod
    async def list_intervals_by_attendee_ids(
        self, attendee_ids: Sequence[uuid.UUID]
    ) -> list[Interval]:
        """Intervals of several attendees ordered by start."""
        ...

    @abstractmethod
    async def delete_interval(self, interval_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def delete_intervals_by_attendee_ids(self, attendee_ids: Sequence[uuid.UUID]) -> int:
        ...


class RecordStore(ABC):
    """Factory for transactional store sessions."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreSession]:
        """Open a unit of work. Commits on normal exit, rolls back on error."""
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the backing store is unreachable."""
        ...

    async def close(self) -> None:
        return None
