"""REST API endpoints for meeting rooms.

Provides endpoints for creating and joining rooms, viewing the caller's room,
submitting and deleting free/busy intervals, confirming the meeting time and
logging out. The caller's identity travels in the signed session cookie; every
endpoint acting on "current" resolves the room from that cookie.

Domain errors raised by the services are mapped to HTTP statuses by the
application-wide handler in ``src.meetroom.main``.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field

from src.meetroom.api.deps import (
    get_admission,
    get_confirmation,
    get_context,
    get_interval_validator,
    get_lifecycle,
)
from src.meetroom.api.session import RequestContext
from src.meetroom.rooms.admission import AdmissionController
from src.meetroom.rooms.confirmation import ConfirmationCoordinator
from src.meetroom.rooms.intervals import IntervalValidator
from src.meetroom.rooms.lifecycle import RoomLifecycleManager
from src.meetroom.rooms.schemas import Attendee, Interval, IntervalMode, Room

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/rooms", tags=["rooms"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class CreateRoomRequest(BaseModel):
    """Naive datetimes are wall-clock times in ``time_zone``."""

    title: str
    host_name: str
    host_contact: EmailStr
    start: datetime
    end: datetime
    capacity: int
    time_zone: str


class JoinRoomRequest(BaseModel):
    secret_key: str
    display_name: str
    contact_address: EmailStr


class IntervalRequest(BaseModel):
    """Naive datetimes are wall-clock times in the room's zone."""

    start: datetime
    end: datetime
    mode: IntervalMode


class ConfirmRequest(BaseModel):
    start: datetime
    end: datetime


# ── Response Schemas ─────────────────────────────────────────────────────────


class RoomResponse(BaseModel):
    """Room data; datetimes are UTC instants."""

    id: uuid.UUID
    title: str
    secret_key: str
    window_start: datetime
    window_end: datetime
    capacity: int
    time_zone: str
    state: str
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    created_at: datetime

    @classmethod
    def from_room(cls, room: Room) -> RoomResponse:
        return cls(
            id=room.id,
            title=room.title,
            secret_key=room.secret_key,
            window_start=room.window_start,
            window_end=room.window_end,
            capacity=room.capacity,
            time_zone=room.time_zone,
            state=room.state.value,
            actual_start=room.actual_start,
            actual_end=room.actual_end,
            created_at=room.created_at,
        )


class AttendeeResponse(BaseModel):
    """Attendee data. ``contact_address`` is only filled for the caller."""

    id: uuid.UUID
    display_name: str
    is_host: bool
    contact_address: str | None = None

    @classmethod
    def from_attendee(cls, attendee: Attendee, *, with_contact: bool = False) -> AttendeeResponse:
        return cls(
            id=attendee.id,
            display_name=attendee.display_name,
            is_host=attendee.is_host,
            contact_address=attendee.contact_address if with_contact else None,
        )


class IntervalResponse(BaseModel):
    id: uuid.UUID
    attendee_id: uuid.UUID
    start: datetime
    end: datetime
    mode: IntervalMode

    @classmethod
    def from_interval(cls, interval: Interval) -> IntervalResponse:
        return cls(
            id=interval.id,
            attendee_id=interval.attendee_id,
            start=interval.start,
            end=interval.end,
            mode=interval.mode,
        )


class CreateRoomResponse(BaseModel):
    room: RoomResponse
    attendee: AttendeeResponse


class JoinRoomResponse(BaseModel):
    room_id: uuid.UUID
    attendee: AttendeeResponse
    rejoined: bool


class RoomOverviewResponse(BaseModel):
    room: RoomResponse
    attendees: list[AttendeeResponse] = Field(default_factory=list)
    intervals: list[IntervalResponse] = Field(default_factory=list)
    current_attendee_id: uuid.UUID


# ── Room Endpoints ───────────────────────────────────────────────────────────


@router.post("", response_model=CreateRoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    body: CreateRoomRequest,
    ctx: RequestContext = Depends(get_context),
    lifecycle: RoomLifecycleManager = Depends(get_lifecycle),
) -> CreateRoomResponse:
    """Create a room; the caller becomes its host."""
    created = await lifecycle.create(
        ctx,
        title=body.title,
        host_name=body.host_name,
        host_contact=str(body.host_contact),
        start=body.start,
        end=body.end,
        capacity=body.capacity,
        time_zone=body.time_zone,
    )
    return CreateRoomResponse(
        room=RoomResponse.from_room(created.room),
        attendee=AttendeeResponse.from_attendee(created.host, with_contact=True),
    )


@router.post("/join", response_model=JoinRoomResponse)
async def join_room(
    body: JoinRoomRequest,
    ctx: RequestContext = Depends(get_context),
    admission: AdmissionController = Depends(get_admission),
) -> JoinRoomResponse:
    """Join a room by its secret key, or rejoin under an existing display name."""
    result = await admission.join(
        ctx,
        secret_key=body.secret_key,
        display_name=body.display_name,
        contact_address=str(body.contact_address),
    )
    return JoinRoomResponse(
        room_id=result.identity.room_id,
        attendee=AttendeeResponse.from_attendee(result.attendee, with_contact=True),
        rejoined=result.rejoined,
    )


@router.get("/current", response_model=RoomOverviewResponse)
async def get_current_room(
    ctx: RequestContext = Depends(get_context),
    lifecycle: RoomLifecycleManager = Depends(get_lifecycle),
) -> RoomOverviewResponse:
    """The caller's room with all attendees and their intervals."""
    overview = await lifecycle.overview(ctx)
    return RoomOverviewResponse(
        room=RoomResponse.from_room(overview.room),
        attendees=[
            AttendeeResponse.from_attendee(
                a, with_contact=a.id == overview.current_attendee_id
            )
            for a in overview.attendees
        ],
        intervals=[IntervalResponse.from_interval(i) for i in overview.intervals],
        current_attendee_id=overview.current_attendee_id,
    )


@router.delete("/current", status_code=status.HTTP_204_NO_CONTENT)
async def delete_current_room(
    ctx: RequestContext = Depends(get_context),
    lifecycle: RoomLifecycleManager = Depends(get_lifecycle),
) -> None:
    """Delete the caller's room (host only)."""
    await lifecycle.delete(ctx)


# ── Interval Endpoints ───────────────────────────────────────────────────────


@router.post(
    "/current/intervals",
    response_model=IntervalResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_interval(
    body: IntervalRequest,
    ctx: RequestContext = Depends(get_context),
    validator: IntervalValidator = Depends(get_interval_validator),
) -> IntervalResponse:
    """Record a FREE/BUSY interval for the caller."""
    interval = await validator.submit(ctx, body.start, body.end, body.mode)
    return IntervalResponse.from_interval(interval)


@router.delete(
    "/current/intervals/{interval_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_interval(
    interval_id: uuid.UUID,
    ctx: RequestContext = Depends(get_context),
    validator: IntervalValidator = Depends(get_interval_validator),
) -> None:
    """Delete one of the caller's own intervals."""
    await validator.delete(ctx, interval_id)


# ── Confirmation / Session Endpoints ─────────────────────────────────────────


@router.post("/current/confirm", response_model=RoomResponse)
async def confirm_meeting(
    body: ConfirmRequest,
    ctx: RequestContext = Depends(get_context),
    confirmation: ConfirmationCoordinator = Depends(get_confirmation),
) -> RoomResponse:
    """Confirm the meeting time (host only) and notify every attendee."""
    room = await confirmation.confirm(ctx, body.start, body.end)
    return RoomResponse.from_room(room)


@router.post("/session/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    ctx: RequestContext = Depends(get_context),
    confirmation: ConfirmationCoordinator = Depends(get_confirmation),
) -> None:
    """Clear the session cookie. Room data is untouched."""
    await confirmation.unbind(ctx)
