"""Pydantic v2 schemas for the room scheduling domain.

Defines the data contracts shared by the store, the services and the HTTP
layer: rooms with their availability window, attendees, free/busy intervals
and the caller identity bound to a (room, attendee) pair. All datetimes are
aware UTC instants.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class IntervalMode(str, Enum):
    """Whether an attendee is available or unavailable during an interval."""

    FREE = "FREE"
    BUSY = "BUSY"


class RoomState(str, Enum):
    """Room lifecycle state. Open until the host confirms a meeting time."""

    OPEN = "open"
    CONFIRMED = "confirmed"


# ── Value Objects ────────────────────────────────────────────────────────────


class TimeRange(BaseModel):
    """Half-open UTC range [start, end)."""

    start: datetime
    end: datetime

    def overlaps(self, other: TimeRange) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: TimeRange) -> bool:
        return self.start <= other.start and other.end <= self.end


class Identity(BaseModel):
    """A caller's binding to one attendee of one room."""

    room_id: uuid.UUID
    attendee_id: uuid.UUID


# ── Entities ─────────────────────────────────────────────────────────────────


class Room(BaseModel):
    """A scheduling room with a host-declared availability window."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    title: str
    secret_key: str
    window_start: datetime
    window_end: datetime
    capacity: int
    time_zone: str
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    created_at: datetime

    @property
    def state(self) -> RoomState:
        if self.actual_start is None:
            return RoomState.OPEN
        return RoomState.CONFIRMED

    @property
    def is_open(self) -> bool:
        return self.state == RoomState.OPEN

    @property
    def window(self) -> TimeRange:
        return TimeRange(start=self.window_start, end=self.window_end)


class Attendee(BaseModel):
    """A participant of a room. Exactly one attendee per room is the host."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    room_id: uuid.UUID
    display_name: str
    contact_address: str
    is_host: bool = False
    created_at: datetime


class Interval(BaseModel):
    """A free/busy proposal owned by one attendee."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    attendee_id: uuid.UUID
    start: datetime
    end: datetime
    mode: IntervalMode

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)


# ── Operation Results ────────────────────────────────────────────────────────


class RoomCreated(BaseModel):
    """Result of room creation: the room, its host and the bound identity."""

    room: Room
    host: Attendee
    identity: Identity


class JoinResult(BaseModel):
    """Result of a join: the (new or re-bound) attendee and its identity."""

    attendee: Attendee
    identity: Identity
    rejoined: bool = False


class RoomOverview(BaseModel):
    """Everything a bound attendee sees about their room."""

    room: Room
    attendees: list[Attendee] = Field(default_factory=list)
    intervals: list[Interval] = Field(default_factory=list)
    current_attendee_id: uuid.UUID
