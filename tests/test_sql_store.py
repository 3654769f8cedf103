"""Unit tests for the SQL store's conversion and error classification helpers.

The transactional paths run against PostgreSQL in deployment; these tests
cover the pure pieces without a database.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import DBAPIError

from src.meetroom.rooms.models import IntervalModel, RoomModel
from src.meetroom.rooms.schemas import IntervalMode, RoomState
from src.meetroom.rooms.sql_store import _is_transient, _model_to_interval, _model_to_room, _utc


class _DriverError(Exception):
    def __init__(self, sqlstate: str | None) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _dbapi_error(sqlstate: str | None, invalidated: bool = False) -> DBAPIError:
    return DBAPIError("SELECT 1", {}, _DriverError(sqlstate), connection_invalidated=invalidated)


class TestTransientClassification:
    def test_lock_timeout_is_transient(self):
        assert _is_transient(_dbapi_error("55P03"))

    def test_serialization_and_deadlock_are_transient(self):
        assert _is_transient(_dbapi_error("40001"))
        assert _is_transient(_dbapi_error("40P01"))

    def test_dropped_connection_is_transient(self):
        assert _is_transient(_dbapi_error(None, invalidated=True))

    def test_other_failures_are_not(self):
        assert not _is_transient(_dbapi_error("42P01"))
        assert not _is_transient(_dbapi_error(None))


class TestModelConversion:
    def test_naive_values_are_utc(self):
        assert _utc(datetime(2030, 1, 15, 9)) == datetime(2030, 1, 15, 9, tzinfo=timezone.utc)
        offset = datetime(2030, 1, 15, 10, tzinfo=timezone(timedelta(hours=1)))
        assert _utc(offset) == datetime(2030, 1, 15, 9, tzinfo=timezone.utc)
        assert _utc(None) is None

    def test_room_model_to_room(self):
        model = RoomModel(
            id=uuid.uuid4(),
            title="Planning",
            secret_key="k",
            window_start=datetime(2030, 1, 15, 9),
            window_end=datetime(2030, 1, 15, 17),
            capacity=3,
            time_zone="UTC",
            actual_start=None,
            actual_end=None,
            created_at=datetime(2030, 1, 15, 8),
        )
        room = _model_to_room(model)
        assert room.id == model.id
        assert room.state == RoomState.OPEN
        assert room.window_start.tzinfo is timezone.utc

    def test_interval_model_to_interval(self):
        model = IntervalModel(
            id=uuid.uuid4(),
            attendee_id=uuid.uuid4(),
            start=datetime(2030, 1, 15, 9, tzinfo=timezone.utc),
            end=datetime(2030, 1, 15, 10, tzinfo=timezone.utc),
            mode="BUSY",
        )
        interval = _model_to_interval(model)
        assert interval.mode == IntervalMode.BUSY
        assert interval.time_range.end == datetime(2030, 1, 15, 10, tzinfo=timezone.utc)
