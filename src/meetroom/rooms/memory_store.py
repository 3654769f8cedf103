"""In-process record store.

Keeps rooms, attendees and intervals in dicts. Used when STORE_BACKEND=memory
(local development, single-process deployments) and by the test suite.

Per-room critical section: one ``asyncio.Lock`` per existing room id. Reading
a room with ``lock=True`` acquires it (bounded by ``lock_timeout_ms``) and holds
it until the transaction ends. The lock entry is dropped once a transaction
deleting the room commits. Writes record an undo step; a transaction that
raises replays the undo log in reverse so no partial write survives.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime

import structlog

from src.meetroom.core.errors import NotFound, Transient
from src.meetroom.rooms.schemas import Attendee, Interval, Room
from src.meetroom.rooms.store import RecordStore, SecretKeyConflict, StoreSession

logger = structlog.get_logger(__name__)


class _Tables:
    """Shared storage for every session of one InMemoryRecordStore."""

    def __init__(self) -> None:
        self.rooms: dict[uuid.UUID, Room] = {}
        self.attendees: dict[uuid.UUID, Attendee] = {}
        self.intervals: dict[uuid.UUID, Interval] = {}
        self.room_locks: dict[uuid.UUID, asyncio.Lock] = {}


class InMemoryStoreSession(StoreSession):
    """Unit of work over the shared tables with an undo log."""

    def __init__(self, tables: _Tables, lock_timeout: float) -> None:
        self._t = tables
        self._lock_timeout = lock_timeout
        self._held: dict[uuid.UUID, asyncio.Lock] = {}
        self._undo: list[Callable[[], None]] = []
        self._deleted_rooms: set[uuid.UUID] = set()

    # ── Transaction plumbing ─────────────────────────────────────────────

    async def _lock_room(self, room_id: uuid.UUID) -> None:
        if room_id in self._held:
            return
        lock = self._t.room_locks.setdefault(room_id, asyncio.Lock())
        try:
            async with asyncio.timeout(self._lock_timeout):
                await lock.acquire()
        except TimeoutError:
            logger.warning("store.lock_timeout", room_id=str(room_id))
            raise Transient("room is busy, retry")
        self._held[room_id] = lock

    def _release_all(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()

    def _rollback(self) -> None:
        while self._undo:
            self._undo.pop()()
        self._deleted_rooms.clear()

    def _commit(self) -> None:
        self._undo.clear()
        for room_id in self._deleted_rooms:
            self._t.room_locks.pop(room_id, None)
        self._deleted_rooms.clear()

    def _put(self, table: dict, key: uuid.UUID, value: object) -> None:
        previous = table.get(key)
        table[key] = value
        if previous is None:
            self._undo.append(lambda: table.pop(key, None))
        else:
            self._undo.append(lambda: table.__setitem__(key, previous))

    def _pop(self, table: dict, key: uuid.UUID) -> object | None:
        previous = table.pop(key, None)
        if previous is not None:
            self._undo.append(lambda: table.__setitem__(key, previous))
        return previous

    # ── Rooms ────────────────────────────────────────────────────────────

    async def create_room(self, room: Room) -> Room:
        if any(r.secret_key == room.secret_key for r in self._t.rooms.values()):
            raise SecretKeyConflict(room.secret_key)
        self._put(self._t.rooms, room.id, room)
        return room

    async def get_room_by_id(self, room_id: uuid.UUID, *, lock: bool = False) -> Room | None:
        if room_id not in self._t.rooms:
            return None
        if lock:
            await self._lock_room(room_id)
        return self._t.rooms.get(room_id)

    async def get_room_by_secret(self, secret_key: str, *, lock: bool = False) -> Room | None:
        room = next(
            (r for r in self._t.rooms.values() if r.secret_key == secret_key), None
        )
        if room is None or not lock:
            return room
        await self._lock_room(room.id)
        # Re-read: the room may have changed or vanished while we waited
        return self._t.rooms.get(room.id)

    async def update_room_actual_interval(
        self, room_id: uuid.UUID, start: datetime, end: datetime
    ) -> Room:
        room = self._t.rooms.get(room_id)
        if room is None:
            raise NotFound("room not found")
        updated = room.model_copy(update={"actual_start": start, "actual_end": end})
        self._put(self._t.rooms, room_id, updated)
        return updated

    async def delete_room(self, room_id: uuid.UUID) -> None:
        if self._pop(self._t.rooms, room_id) is not None:
            self._deleted_rooms.add(room_id)

    # ── Attendees ────────────────────────────────────────────────────────

    async def create_attendee(self, attendee: Attendee) -> Attendee:
        self._put(self._t.attendees, attendee.id, attendee)
        return attendee

    async def get_attendee(self, attendee_id: uuid.UUID) -> Attendee | None:
        return self._t.attendees.get(attendee_id)

    async def find_attendee_by_room_and_name(
        self, room_id: uuid.UUID, display_name: str
    ) -> Attendee | None:
        for attendee in await self.list_attendees_by_room(room_id):
            if attendee.display_name == display_name:
                return attendee
        return None

    async def update_attendee_contact(
        self, attendee_id: uuid.UUID, contact_address: str
    ) -> Attendee:
        attendee = self._t.attendees.get(attendee_id)
        if attendee is None:
            raise NotFound("attendee not found")
        updated = attendee.model_copy(update={"contact_address": contact_address})
        self._put(self._t.attendees, attendee_id, updated)
        return updated

    async def list_attendees_by_room(self, room_id: uuid.UUID) -> list[Attendee]:
        found = [a for a in self._t.attendees.values() if a.room_id == room_id]
        return sorted(found, key=lambda a: a.created_at)

    async def delete_attendees_by_room(self, room_id: uuid.UUID) -> int:
        ids = [a.id for a in self._t.attendees.values() if a.room_id == room_id]
        for attendee_id in ids:
            self._pop(self._t.attendees, attendee_id)
        return len(ids)

    # ── Intervals ────────────────────────────────────────────────────────

    async def create_interval(self, interval: Interval) -> Interval:
        self._put(self._t.intervals, interval.id, interval)
        return interval

    async def get_interval(self, interval_id: uuid.UUID) -> Interval | None:
        return self._t.intervals.get(interval_id)

    async def list_intervals_by_attendee(self, attendee_id: uuid.UUID) -> list[Interval]:
        return await self.list_intervals_by_attendee_ids([attendee_id])

    async def list_intervals_by_attendee_ids(
        self, attendee_ids: Sequence[uuid.UUID]
    ) -> list[Interval]:
        wanted = set(attendee_ids)
        found = [i for i in self._t.intervals.values() if i.attendee_id in wanted]
        return sorted(found, key=lambda i: i.start)

    async def delete_interval(self, interval_id: uuid.UUID) -> bool:
        return self._pop(self._t.intervals, interval_id) is not None

    async def delete_intervals_by_attendee_ids(self, attendee_ids: Sequence[uuid.UUID]) -> int:
        wanted = set(attendee_ids)
        ids = [i.id for i in self._t.intervals.values() if i.attendee_id in wanted]
        for interval_id in ids:
            self._pop(self._t.intervals, interval_id)
        return len(ids)


class InMemoryRecordStore(RecordStore):
    """RecordStore holding everything in process memory.

    Args:
        lock_timeout_ms: Upper bound on waiting for a room lock.
    """

    session_class: type[InMemoryStoreSession] = InMemoryStoreSession

    def __init__(self, lock_timeout_ms: int = 5000) -> None:
        self._tables = _Tables()
        self._lock_timeout = lock_timeout_ms / 1000

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreSession]:
        session = self.session_class(self._tables, self._lock_timeout)
        try:
            yield session
        except BaseException:
            session._rollback()
            raise
        else:
            session._commit()
        finally:
            session._release_all()

    async def ping(self) -> None:
        return None

    # ── Inspection helpers (tests, diagnostics) ──────────────────────────

    @property
    def room_count(self) -> int:
        return len(self._tables.rooms)

    @property
    def attendee_count(self) -> int:
        return len(self._tables.attendees)

    @property
    def interval_count(self) -> int:
        return len(self._tables.intervals)

    @property
    def lock_count(self) -> int:
        return len(self._tables.room_locks)
