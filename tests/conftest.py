"""Shared fixtures for the room service tests.

Provides:
- Settings tuned for tests (memory backend, short lock timeout)
- InMemoryRecordStore, plus a variant that yields to the event loop on reads
- DictIdentityBinding: identity keyed by a plain string context
- RecordingNotifier: captures outbound messages, optionally failing some
- Service fixtures wired over the same store and binding
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from src.meetroom.config import Settings, StoreBackend
from src.meetroom.rooms.admission import AdmissionController
from src.meetroom.rooms.confirmation import ConfirmationCoordinator
from src.meetroom.rooms.identity import IdentityBinding
from src.meetroom.rooms.intervals import IntervalValidator
from src.meetroom.rooms.lifecycle import RoomLifecycleManager
from src.meetroom.rooms.memory_store import InMemoryRecordStore, InMemoryStoreSession
from src.meetroom.rooms.notifier import Notifier
from src.meetroom.rooms.schemas import Identity, RoomCreated

WINDOW_START = datetime(2030, 1, 15, 9, 0, tzinfo=timezone.utc)
WINDOW_END = datetime(2030, 1, 15, 17, 0, tzinfo=timezone.utc)


# ── Test Doubles ─────────────────────────────────────────────────────────────


class DictIdentityBinding(IdentityBinding):
    """Identity binding where the context is any hashable key."""

    def __init__(self) -> None:
        self.bound: dict[Any, Identity] = {}

    async def resolve(self, ctx: Any) -> Identity | None:
        return self.bound.get(ctx)

    async def bind(self, ctx: Any, identity: Identity) -> None:
        self.bound[ctx] = identity

    async def clear(self, ctx: Any) -> None:
        self.bound.pop(ctx, None)


class RecordingNotifier(Notifier):
    """Records every message; raises for addresses listed in ``fail_for``."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for = fail_for or set()

    async def send(self, address: str, subject: str, body: str) -> None:
        if address in self.fail_for:
            raise ConnectionError(f"cannot reach {address}")
        self.sent.append((address, subject, body))


class YieldingStoreSession(InMemoryStoreSession):
    """Suspends after every list read, so concurrent transactions interleave
    between a check and the write that depends on it."""

    async def list_attendees_by_room(self, room_id):
        found = await super().list_attendees_by_room(room_id)
        await asyncio.sleep(0)
        return found

    async def list_intervals_by_attendee(self, attendee_id):
        found = await super().list_intervals_by_attendee(attendee_id)
        await asyncio.sleep(0)
        return found


class YieldingRecordStore(InMemoryRecordStore):
    session_class = YieldingStoreSession


async def no_room_lock(self, room_id) -> None:
    """Stand-in for InMemoryStoreSession._lock_room that never locks."""
    return None


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(
        STORE_BACKEND=StoreBackend.memory,
        STORE_LOCK_TIMEOUT_MS=200,
        SESSION_SECRET_KEY="test-session-secret",
        SMTP_HOST="",
        _env_file=None,
    )


@pytest.fixture
def store(settings: Settings) -> InMemoryRecordStore:
    return InMemoryRecordStore(lock_timeout_ms=settings.STORE_LOCK_TIMEOUT_MS)


@pytest.fixture
def identity() -> DictIdentityBinding:
    return DictIdentityBinding()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def lifecycle(store, identity, settings) -> RoomLifecycleManager:
    return RoomLifecycleManager(store, identity, settings)


@pytest.fixture
def admission(store, identity, settings) -> AdmissionController:
    return AdmissionController(store, identity, settings)


@pytest.fixture
def validator(store, identity) -> IntervalValidator:
    return IntervalValidator(store, identity)


@pytest.fixture
def confirmation(store, identity, notifier) -> ConfirmationCoordinator:
    return ConfirmationCoordinator(store, identity, notifier)


@pytest.fixture
def make_room(lifecycle: RoomLifecycleManager):
    """Factory creating the standard test room (09:00-17:00 UTC, capacity 3)."""

    async def _make(ctx: Any = "host", **overrides: Any) -> RoomCreated:
        kwargs: dict[str, Any] = {
            "title": "Planning",
            "host_name": "Hana",
            "host_contact": "hana@example.com",
            "start": WINDOW_START,
            "end": WINDOW_END,
            "capacity": 3,
            "time_zone": "UTC",
        }
        kwargs.update(overrides)
        return await lifecycle.create(ctx, **kwargs)

    return _make


@pytest.fixture
def yielding_store(settings: Settings) -> YieldingRecordStore:
    return YieldingRecordStore(lock_timeout_ms=settings.STORE_LOCK_TIMEOUT_MS)


@pytest.fixture
def unlocked_rooms(monkeypatch) -> None:
    """Disable the in-memory per-room lock for the duration of a test."""
    monkeypatch.setattr(InMemoryStoreSession, "_lock_room", no_room_lock)
