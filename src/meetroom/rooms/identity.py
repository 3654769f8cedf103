"""Identity binding contract.

Maps a caller's request context to the (room, attendee) pair it acts as.
The services never hold identity between calls: every operation receives the
caller's context explicitly and resolves it here. What a context is depends
on the transport (an HTTP request/response pair, a CLI profile, a test key).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.meetroom.core.errors import NotFound
from src.meetroom.rooms.schemas import Attendee, Identity, Room
from src.meetroom.rooms.store import StoreSession


class IdentityBinding(ABC):
    """Resolve, bind and clear the identity attached to a request context."""

    @abstractmethod
    async def resolve(self, ctx: Any) -> Identity | None:
        ...

    @abstractmethod
    async def bind(self, ctx: Any, identity: Identity) -> None:
        ...

    @abstractmethod
    async def clear(self, ctx: Any) -> None:
        ...

    async def require(self, ctx: Any) -> Identity:
        """Resolve the caller or raise NotFound("not authenticated")."""
        identity = await self.resolve(ctx)
        if identity is None:
            raise NotFound("not authenticated")
        return identity


async def load_caller(
    session: StoreSession, identity: Identity, *, lock: bool = True
) -> tuple[Room, Attendee]:
    """Load the caller's room (locked by default) and attendee.

    Raises:
        NotFound: If the room is gone or the attendee no longer belongs to it.
    """
    room = await session.get_room_by_id(identity.room_id, lock=lock)
    if room is None:
        raise NotFound("room not found")
    attendee = await session.get_attendee(identity.attendee_id)
    if attendee is None or attendee.room_id != room.id:
        raise NotFound("attendee not found")
    return room, attendee
