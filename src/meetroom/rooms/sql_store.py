"""SQLAlchemy record store.

Each ``transaction()`` is one AsyncSession inside ``session.begin()``. The
per-room critical section is a ``SELECT ... FOR UPDATE`` on the room row,
bounded by ``SET LOCAL lock_timeout`` on PostgreSQL.

Driver errors are translated here so services only ever see domain errors:
lock timeouts, serialization failures, deadlocks and dropped connections
become Transient; any other database failure becomes Internal.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from src.meetroom.core.errors import Internal, MeetroomError, NotFound, Transient
from src.meetroom.rooms.models import AttendeeModel, IntervalModel, RoomModel
from src.meetroom.rooms.schemas import Attendee, Interval, IntervalMode, Room
from src.meetroom.rooms.store import RecordStore, SecretKeyConflict, StoreSession

logger = structlog.get_logger(__name__)

# lock_not_available, serialization_failure, deadlock_detected, query_canceled
_TRANSIENT_SQLSTATES = {"55P03", "40001", "40P01", "57014"}


# ── Serialization Helpers ───────────────────────────────────────────────────


def _utc(value: datetime | None) -> datetime | None:
    """Engines without timezone support hand back naive datetimes; they are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _model_to_room(model: RoomModel) -> Room:
    return Room(
        id=model.id,
        title=model.title,
        secret_key=model.secret_key,
        window_start=_utc(model.window_start),
        window_end=_utc(model.window_end),
        capacity=model.capacity,
        time_zone=model.time_zone,
        actual_start=_utc(model.actual_start),
        actual_end=_utc(model.actual_end),
        created_at=_utc(model.created_at) or datetime.now(timezone.utc),
    )


def _model_to_attendee(model: AttendeeModel) -> Attendee:
    return Attendee(
        id=model.id,
        room_id=model.room_id,
        display_name=model.display_name,
        contact_address=model.contact_address,
        is_host=model.is_host,
        created_at=_utc(model.created_at) or datetime.now(timezone.utc),
    )


def _model_to_interval(model: IntervalModel) -> Interval:
    return Interval(
        id=model.id,
        attendee_id=model.attendee_id,
        start=_utc(model.start),
        end=_utc(model.end),
        mode=IntervalMode(model.mode),
    )


def _is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in _TRANSIENT_SQLSTATES


# ── Session ─────────────────────────────────────────────────────────────────


class SqlStoreSession(StoreSession):
    """StoreSession over one AsyncSession with an open transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ── Rooms ────────────────────────────────────────────────────────────

    async def create_room(self, room: Room) -> Room:
        model = RoomModel(
            id=room.id,
            title=room.title,
            secret_key=room.secret_key,
            window_start=room.window_start,
            window_end=room.window_end,
            capacity=room.capacity,
            time_zone=room.time_zone,
            actual_start=room.actual_start,
            actual_end=room.actual_end,
            created_at=room.created_at,
        )
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise SecretKeyConflict(room.secret_key) from exc
        return _model_to_room(model)

    async def _get_room(self, *criteria, lock: bool) -> Room | None:
        stmt = select(RoomModel).where(*criteria)
        if lock:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return _model_to_room(model)

    async def get_room_by_id(self, room_id: uuid.UUID, *, lock: bool = False) -> Room | None:
        return await self._get_room(RoomModel.id == room_id, lock=lock)

    async def get_room_by_secret(self, secret_key: str, *, lock: bool = False) -> Room | None:
        return await self._get_room(RoomModel.secret_key == secret_key, lock=lock)

    async def update_room_actual_interval(
        self, room_id: uuid.UUID, start: datetime, end: datetime
    ) -> Room:
        model = await self._session.get(RoomModel, room_id)
        if model is None:
            raise NotFound("room not found")
        model.actual_start = start
        model.actual_end = end
        await self._session.flush()
        return _model_to_room(model)

    async def delete_room(self, room_id: uuid.UUID) -> None:
        await self._session.execute(delete(RoomModel).where(RoomModel.id == room_id))

    # ── Attendees ────────────────────────────────────────────────────────

    async def create_attendee(self, attendee: Attendee) -> Attendee:
        model = AttendeeModel(
            id=attendee.id,
            room_id=attendee.room_id,
            display_name=attendee.display_name,
            contact_address=attendee.contact_address,
            is_host=attendee.is_host,
            created_at=attendee.created_at,
        )
        self._session.add(model)
        await self._session.flush()
        return _model_to_attendee(model)

    async def get_attendee(self, attendee_id: uuid.UUID) -> Attendee | None:
        model = await self._session.get(AttendeeModel, attendee_id)
        if model is None:
            return None
        return _model_to_attendee(model)

    async def find_attendee_by_room_and_name(
        self, room_id: uuid.UUID, display_name: str
    ) -> Attendee | None:
        stmt = (
            select(AttendeeModel)
            .where(
                AttendeeModel.room_id == room_id,
                AttendeeModel.display_name == display_name,
            )
            .order_by(AttendeeModel.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return _model_to_attendee(model)

    async def update_attendee_contact(
        self, attendee_id: uuid.UUID, contact_address: str
    ) -> Attendee:
        model = await self._session.get(AttendeeModel, attendee_id)
        if model is None:
            raise NotFound("attendee not found")
        model.contact_address = contact_address
        await self._session.flush()
        return _model_to_attendee(model)

    async def list_attendees_by_room(self, room_id: uuid.UUID) -> list[Attendee]:
        stmt = (
            select(AttendeeModel)
            .where(AttendeeModel.room_id == room_id)
            .order_by(AttendeeModel.created_at, AttendeeModel.id)
        )
        result = await self._session.execute(stmt)
        return [_model_to_attendee(m) for m in result.scalars().all()]

    async def delete_attendees_by_room(self, room_id: uuid.UUID) -> int:
        result = await self._session.execute(
            delete(AttendeeModel).where(AttendeeModel.room_id == room_id)
        )
        return result.rowcount or 0

    # ── Intervals ────────────────────────────────────────────────────────

    async def create_interval(self, interval: Interval) -> Interval:
        model = IntervalModel(
            id=interval.id,
            attendee_id=interval.attendee_id,
            start=interval.start,
            end=interval.end,
            mode=interval.mode.value,
        )
        self._session.add(model)
        await self._session.flush()
        return _model_to_interval(model)

    async def get_interval(self, interval_id: uuid.UUID) -> Interval | None:
        model = await self._session.get(IntervalModel, interval_id)
        if model is None:
            return None
        return _model_to_interval(model)

    async def list_intervals_by_attendee(self, attendee_id: uuid.UUID) -> list[Interval]:
        return await self.list_intervals_by_attendee_ids([attendee_id])

    async def list_intervals_by_attendee_ids(
        self, attendee_ids: Sequence[uuid.UUID]
    ) -> list[Interval]:
        if not attendee_ids:
            return []
        stmt = (
            select(IntervalModel)
            .where(IntervalModel.attendee_id.in_(list(attendee_ids)))
            .order_by(IntervalModel.start, IntervalModel.id)
        )
        result = await self._session.execute(stmt)
        return [_model_to_interval(m) for m in result.scalars().all()]

    async def delete_interval(self, interval_id: uuid.UUID) -> bool:
        result = await self._session.execute(
            delete(IntervalModel).where(IntervalModel.id == interval_id)
        )
        return bool(result.rowcount)

    async def delete_intervals_by_attendee_ids(self, attendee_ids: Sequence[uuid.UUID]) -> int:
        if not attendee_ids:
            return 0
        result = await self._session.execute(
            delete(IntervalModel).where(IntervalModel.attendee_id.in_(list(attendee_ids)))
        )
        return result.rowcount or 0


# ── Store ───────────────────────────────────────────────────────────────────


class SqlRecordStore(RecordStore):
    """RecordStore backed by an async SQLAlchemy engine.

    Args:
        engine: AsyncEngine to open sessions on.
        lock_timeout_ms: Upper bound on waiting for a room row lock.
    """

    def __init__(self, engine: AsyncEngine, lock_timeout_ms: int = 5000) -> None:
        self._engine = engine
        self._lock_timeout_ms = lock_timeout_ms

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreSession]:
        try:
            async with AsyncSession(self._engine, expire_on_commit=False) as session:
                async with session.begin():
                    if self._engine.dialect.name == "postgresql":
                        await session.execute(
                            text(f"SET LOCAL lock_timeout = '{int(self._lock_timeout_ms)}ms'")
                        )
                    yield SqlStoreSession(session)
        except (MeetroomError, SecretKeyConflict):
            raise
        except DBAPIError as exc:
            if _is_transient(exc):
                logger.warning("store.transient_failure", error=str(exc.orig))
                raise Transient("store busy, retry") from exc
            logger.error("store.failure", error=str(exc.orig), exc_info=True)
            raise Internal("store failure") from exc
        except (asyncio.TimeoutError, TimeoutError) as exc:
            logger.warning("store.timeout")
            raise Transient("store timeout, retry") from exc
        except SQLAlchemyError as exc:
            logger.error("store.failure", error=str(exc), exc_info=True)
            raise Internal("store failure") from exc

    async def ping(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self._engine.dispose()
