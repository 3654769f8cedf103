"""IANA time zone helpers.

Only UTC instants are stored. A room's zone is display metadata plus the
zone in which naive (wall-clock) input is interpreted.

Conversion rules:
- aware datetime -> normalized to UTC, zone ignored
- naive datetime -> wall-clock time in the given zone
- ambiguous wall time (DST fall-back) -> first occurrence (fold=0)
- nonexistent wall time (DST spring-forward gap) -> Rejected, since it could
  not be rendered back to the same wall time
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.meetroom.core.errors import Rejected


def get_zone(name: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA identifier.

    Raises:
        Rejected: If the identifier is not a recognized zone.
    """
    if not name or not isinstance(name, str):
        raise Rejected("unknown time zone")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError: names of tzdata directories such as "America"
        raise Rejected("unknown time zone")


def is_valid_zone(name: str) -> bool:
    try:
        get_zone(name)
    except Rejected:
        return False
    return True


def to_utc(value: datetime, zone_name: str) -> datetime:
    """Convert caller-supplied input to an aware UTC datetime."""
    if value.tzinfo is not None and value.utcoffset() is not None:
        return value.astimezone(timezone.utc)

    zone = get_zone(zone_name)
    local = value.replace(tzinfo=zone, fold=0)
    converted = local.astimezone(timezone.utc)

    # Round-trip check catches wall times skipped by a DST transition
    if converted.astimezone(zone).replace(tzinfo=None) != value.replace(fold=0):
        raise Rejected("nonexistent local time")
    return converted


def to_local(value: datetime, zone_name: str) -> datetime:
    """Render a stored UTC instant in the given zone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(get_zone(zone_name))


def format_range(start: datetime, end: datetime, zone_name: str) -> str:
    """Human-readable interval in the room zone, e.g. ``2026-03-02 09:30 - 10:30 CET``."""
    local_start = to_local(start, zone_name)
    local_end = to_local(end, zone_name)
    if local_start.date() == local_end.date():
        end_text = local_end.strftime("%H:%M")
    else:
        end_text = local_end.strftime("%Y-%m-%d %H:%M")
    return f"{local_start:%Y-%m-%d %H:%M} - {end_text} {local_end.tzname()}"
