"""Domain error taxonomy.

Every service operation either returns its result or raises one of these.
Each error carries a short human-readable ``reason`` that is safe to show to
the caller. The HTTP layer maps the class to a status code; the core never
lets a raw driver exception escape.
"""

from __future__ import annotations


class MeetroomError(Exception):
    """Base class for all domain errors."""

    kind: str = "error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.reason!r})"


class NotFound(MeetroomError):
    """Room, attendee or interval absent, or the caller is not bound to a room."""

    kind = "not_found"


class Forbidden(MeetroomError):
    """Caller is bound to the room but may not perform this operation."""

    kind = "forbidden"


class Rejected(MeetroomError):
    """Business-rule violation: capacity, overlap, window, ordering or room state."""

    kind = "rejected"


class Transient(MeetroomError):
    """Store timeout or conflict. Safe for the caller to retry."""

    kind = "transient"


class Internal(MeetroomError):
    """Unexpected store failure or broken invariant."""

    kind = "internal"
