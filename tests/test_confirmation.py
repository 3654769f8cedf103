"""Tests for meeting confirmation and attendee notification."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.meetroom.core.errors import Forbidden, NotFound, Rejected
from src.meetroom.rooms.confirmation import ConfirmationCoordinator, build_confirmation_message
from src.meetroom.rooms.schemas import Attendee, Room, RoomState


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 1, 15, hour, minute, tzinfo=timezone.utc)


async def _room_with_guest(make_room, admission):
    created = await make_room(time_zone="Europe/Berlin")
    await admission.join(
        "guest",
        secret_key=created.room.secret_key,
        display_name="Gil",
        contact_address="gil@example.com",
    )
    return created


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_sets_interval_and_notifies_everyone(
        self, make_room, admission, confirmation, notifier
    ):
        created = await _room_with_guest(make_room, admission)

        room = await confirmation.confirm("host", _at(9, 30), _at(10, 30))

        assert room.id == created.room.id
        assert room.state == RoomState.CONFIRMED
        assert room.actual_start == _at(9, 30)
        assert room.actual_end == _at(10, 30)

        addresses = sorted(address for address, _, _ in notifier.sent)
        assert addresses == ["gil@example.com", "hana@example.com"]
        _, subject, body = next(m for m in notifier.sent if m[0] == "gil@example.com")
        assert subject == "Planning - Meeting Time Confirmed"
        assert "Hi Gil," in body
        assert "Meeting Title: Planning" in body
        assert "Meeting Time: 2030-01-15 10:30 - 11:30 CET" in body

    @pytest.mark.asyncio
    async def test_confirm_outside_window_rejected(self, make_room, confirmation, lifecycle, notifier):
        await make_room()
        with pytest.raises(Rejected) as exc_info:
            await confirmation.confirm("host", _at(8), _at(9, 30))
        assert exc_info.value.reason == "outside availability window"

        overview = await lifecycle.overview("host")
        assert overview.room.state == RoomState.OPEN
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_confirm_reversed_range(self, make_room, confirmation):
        await make_room()
        with pytest.raises(Rejected) as exc_info:
            await confirmation.confirm("host", _at(11), _at(10))
        assert exc_info.value.reason == "start must be before end"

    @pytest.mark.asyncio
    async def test_second_confirm_rejected(self, make_room, confirmation, notifier):
        await make_room()
        await confirmation.confirm("host", _at(9), _at(10))

        with pytest.raises(Rejected) as exc_info:
            await confirmation.confirm("host", _at(11), _at(12))
        assert exc_info.value.reason == "room not open"
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_non_host_forbidden(self, make_room, admission, confirmation, notifier):
        await _room_with_guest(make_room, admission)
        with pytest.raises(Forbidden) as exc_info:
            await confirmation.confirm("guest", _at(9), _at(10))
        assert exc_info.value.reason == "host only"
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_unbound_caller(self, confirmation):
        with pytest.raises(NotFound):
            await confirmation.confirm("nobody", _at(9), _at(10))

    @pytest.mark.asyncio
    async def test_concurrent_confirms_only_one_wins(self, make_room, confirmation, notifier):
        await make_room()
        results = await asyncio.gather(
            confirmation.confirm("host", _at(9), _at(10)),
            confirmation.confirm("host", _at(11), _at(12)),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Rejected)]
        assert len(failures) == 1
        assert failures[0].reason == "room not open"
        assert len(notifier.sent) == 1


class TestNotificationFailures:
    @pytest.mark.asyncio
    async def test_failed_delivery_keeps_confirmation(
        self, make_room, admission, store, identity, notifier, lifecycle
    ):
        await _room_with_guest(make_room, admission)
        notifier.fail_for = {"gil@example.com"}
        coordinator = ConfirmationCoordinator(store, identity, notifier)

        room = await coordinator.confirm("host", _at(9), _at(10))

        assert room.state == RoomState.CONFIRMED
        assert [m[0] for m in notifier.sent] == ["hana@example.com"]
        overview = await lifecycle.overview("host")
        assert overview.room.state == RoomState.CONFIRMED

    @pytest.mark.asyncio
    async def test_background_notifications_drained(self, make_room, admission, store, identity):
        await _room_with_guest(make_room, admission)
        slow = AsyncMock()
        coordinator = ConfirmationCoordinator(store, identity, slow, notify_in_background=True)

        await coordinator.confirm("host", _at(9), _at(10))
        await coordinator.drain()

        assert slow.send.await_count == 2
        recipients = sorted(call.args[0] for call in slow.send.await_args_list)
        assert recipients == ["gil@example.com", "hana@example.com"]


class TestUnbind:
    @pytest.mark.asyncio
    async def test_unbind_clears_identity_only(self, make_room, confirmation, identity, store):
        await make_room()
        await confirmation.unbind("host")

        assert "host" not in identity.bound
        assert store.room_count == 1
        assert store.attendee_count == 1

    @pytest.mark.asyncio
    async def test_unbind_when_unbound_is_noop(self, confirmation):
        await confirmation.unbind("nobody")


def test_confirmation_message_renders_room_zone():
    room = Room(
        title="Kickoff",
        secret_key="k",
        window_start=_at(9),
        window_end=_at(17),
        capacity=2,
        time_zone="America/New_York",
        actual_start=_at(15),
        actual_end=_at(16),
        created_at=_at(8),
    )
    attendee = Attendee(
        room_id=room.id,
        display_name="Ada",
        contact_address="ada@example.com",
        created_at=_at(8),
    )

    subject, body = build_confirmation_message(room, attendee)
    assert subject == "Kickoff - Meeting Time Confirmed"
    assert body.startswith("Hi Ada,")
    assert "Meeting Time: 2030-01-15 10:00 - 11:00 EST" in body
