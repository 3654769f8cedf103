"""Tests for the in-memory record store: rollback, locking and cascade delete."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from src.meetroom.core.errors import Transient
from src.meetroom.rooms.memory_store import InMemoryRecordStore
from src.meetroom.rooms.schemas import Attendee, Interval, IntervalMode, Room
from src.meetroom.rooms.store import SecretKeyConflict

NOW = datetime(2030, 1, 15, 8, 0, tzinfo=timezone.utc)


def _room(secret_key: str = "secret") -> Room:
    return Room(
        title="Planning",
        secret_key=secret_key,
        window_start=datetime(2030, 1, 15, 9, 0, tzinfo=timezone.utc),
        window_end=datetime(2030, 1, 15, 17, 0, tzinfo=timezone.utc),
        capacity=3,
        time_zone="UTC",
        created_at=NOW,
    )


def _attendee(room_id: uuid.UUID, name: str = "Hana", is_host: bool = True) -> Attendee:
    return Attendee(
        room_id=room_id,
        display_name=name,
        contact_address=f"{name.lower()}@example.com",
        is_host=is_host,
        created_at=NOW,
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore(lock_timeout_ms=100)


class TestRollback:
    @pytest.mark.asyncio
    async def test_failed_transaction_leaves_no_writes(self, store):
        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                room = await tx.create_room(_room())
                await tx.create_attendee(_attendee(room.id))
                raise RuntimeError("boom")

        assert store.room_count == 0
        assert store.attendee_count == 0

    @pytest.mark.asyncio
    async def test_updates_and_deletes_restored(self, store):
        async with store.transaction() as tx:
            room = await tx.create_room(_room())
            host = await tx.create_attendee(_attendee(room.id))

        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                await tx.update_attendee_contact(host.id, "changed@example.com")
                await tx.update_room_actual_interval(
                    room.id,
                    datetime(2030, 1, 15, 9, 0, tzinfo=timezone.utc),
                    datetime(2030, 1, 15, 10, 0, tzinfo=timezone.utc),
                )
                await tx.delete_room_cascade(room.id)
                raise RuntimeError("boom")

        async with store.transaction() as tx:
            restored_room = await tx.get_room_by_id(room.id)
            restored_host = await tx.get_attendee(host.id)

        assert restored_room is not None
        assert restored_room.actual_start is None
        assert restored_host is not None
        assert restored_host.contact_address == "hana@example.com"

    @pytest.mark.asyncio
    async def test_secret_key_conflict(self, store):
        async with store.transaction() as tx:
            await tx.create_room(_room("dup"))

        with pytest.raises(SecretKeyConflict):
            async with store.transaction() as tx:
                await tx.create_room(_room("dup"))
        assert store.room_count == 1


class TestLocking:
    @pytest.mark.asyncio
    async def test_lock_wait_times_out_as_transient(self, store):
        async with store.transaction() as tx:
            room = await tx.create_room(_room())

        async with store.transaction() as holder:
            await holder.get_room_by_id(room.id, lock=True)
            with pytest.raises(Transient):
                async with store.transaction() as waiter:
                    await waiter.get_room_by_secret("secret", lock=True)

        # Released once the holder's transaction ends
        async with store.transaction() as tx:
            assert await tx.get_room_by_id(room.id, lock=True) is not None

    @pytest.mark.asyncio
    async def test_relocking_in_same_transaction(self, store):
        async with store.transaction() as tx:
            room = await tx.create_room(_room())

        async with store.transaction() as tx:
            await tx.get_room_by_id(room.id, lock=True)
            assert await tx.get_room_by_secret("secret", lock=True) is not None

    @pytest.mark.asyncio
    async def test_timed_out_wait_leaves_lock_free(self, store):
        async with store.transaction() as tx:
            room = await tx.create_room(_room())

        for _ in range(3):
            async with store.transaction() as holder:
                await holder.get_room_by_id(room.id, lock=True)
                with pytest.raises(Transient):
                    async with store.transaction() as waiter:
                        await waiter.get_room_by_id(room.id, lock=True)

        assert not store._tables.room_locks[room.id].locked()

    @pytest.mark.asyncio
    async def test_locking_absent_room_adds_no_entry(self, store):
        async with store.transaction() as tx:
            assert await tx.get_room_by_id(uuid.uuid4(), lock=True) is None
        assert store.lock_count == 0

    @pytest.mark.asyncio
    async def test_committed_delete_drops_lock_entry(self, store):
        async with store.transaction() as tx:
            room = await tx.create_room(_room())
        async with store.transaction() as tx:
            await tx.get_room_by_id(room.id, lock=True)
        assert store.lock_count == 1

        async with store.transaction() as tx:
            await tx.get_room_by_id(room.id, lock=True)
            await tx.delete_room_cascade(room.id)
        assert store.lock_count == 0

    @pytest.mark.asyncio
    async def test_rolled_back_delete_keeps_lock_entry(self, store):
        async with store.transaction() as tx:
            room = await tx.create_room(_room())

        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                await tx.get_room_by_id(room.id, lock=True)
                await tx.delete_room_cascade(room.id)
                raise RuntimeError("boom")

        assert store.room_count == 1
        assert store.lock_count == 1


class TestQueries:
    @pytest.mark.asyncio
    async def test_cascade_delete_and_ordering(self, store):
        async with store.transaction() as tx:
            room = await tx.create_room(_room())
            host = await tx.create_attendee(_attendee(room.id))
            guest = await tx.create_attendee(_attendee(room.id, "Gil", is_host=False))
            for attendee, hour in ((host, 11), (guest, 9), (host, 10)):
                await tx.create_interval(
                    Interval(
                        attendee_id=attendee.id,
                        start=datetime(2030, 1, 15, hour, tzinfo=timezone.utc),
                        end=datetime(2030, 1, 15, hour, 30, tzinfo=timezone.utc),
                        mode=IntervalMode.FREE,
                    )
                )

        async with store.transaction() as tx:
            intervals = await tx.list_intervals_by_attendee_ids([host.id, guest.id])
            assert [i.start.hour for i in intervals] == [9, 10, 11]
            assert await tx.count_attendees_by_room(room.id) == 2
            assert (await tx.find_attendee_by_room_and_name(room.id, "Gil")).id == guest.id
            assert await tx.find_attendee_by_room_and_name(room.id, "gil") is None

            await tx.delete_room_cascade(room.id)

        assert store.room_count == 0
        assert store.attendee_count == 0
        assert store.interval_count == 0
