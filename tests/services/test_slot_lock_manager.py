"""
Tests for slot locks (in-memory store through the manager)
"""

import asyncio

import pytest

from scheduling_engine.constants import AuditEventType
from scheduling_engine.exceptions import ConflictError
from scheduling_engine.services.slot_lock_manager import SlotLockManager

from tests.fixtures import MONDAY, OTHER_PRACTITIONER_ID, TEST_PRACTITIONER_ID, at


@pytest.fixture
def manager(lock_store, clock, audit_sink):
    return SlotLockManager(lock_store, clock, ttl_seconds=60, audit_sink=audit_sink)


class TestAcquire:

    async def test_overlapping_hold_conflicts_until_expiry(self, manager, clock):
        """14:00-14:30 held with TTL 60s; 14:15-14:45 conflicts at +10s and succeeds at +65s"""
        first = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))

        clock.advance(seconds=10)
        with pytest.raises(ConflictError) as exc_info:
            await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14, 15), at(MONDAY, 14, 45))
        assert exc_info.value.conflicting_ids == [first.lock_id]

        clock.advance(seconds=55)
        second = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14, 15), at(MONDAY, 14, 45))
        assert second.lock_id != first.lock_id

    async def test_adjacent_holds_do_not_conflict(self, manager):
        await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
        await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14, 30), at(MONDAY, 15))

    async def test_other_practitioner_is_independent(self, manager):
        await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
        await manager.acquire(OTHER_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))

    async def test_concurrent_acquires_single_winner(self, manager):
        results = await asyncio.gather(
            *[manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 9), at(MONDAY, 9, 30)) for _ in range(5)],
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 4
        assert all(isinstance(f, ConflictError) for f in failures)

    async def test_renew_keeps_lock_id(self, manager, clock):
        lock = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
        clock.advance(seconds=30)

        renewed = await manager.acquire(
            TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30), requested_lock_id=lock.lock_id
        )

        assert renewed.lock_id == lock.lock_id
        assert renewed.expires_at > lock.expires_at

    async def test_renew_of_expired_lock_issues_new_id(self, manager, clock):
        lock = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
        clock.advance(seconds=61)

        fresh = await manager.acquire(
            TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30), requested_lock_id=lock.lock_id
        )

        assert fresh.lock_id != lock.lock_id

    async def test_rejects_empty_interval(self, manager):
        with pytest.raises(ValueError):
            await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14))

    async def test_audit_events(self, manager, audit_sink):
        lock = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
        with pytest.raises(ConflictError):
            await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
        await manager.release(lock.lock_id)

        assert [e.event_type for e in audit_sink.events] == [
            AuditEventType.LOCK_ACQUIRED,
            AuditEventType.LOCK_CONFLICT,
            AuditEventType.LOCK_RELEASED,
        ]
        assert audit_sink.events[1].outcome == "conflict"


class TestVerifyReleaseSweep:

    async def test_verify_until_ttl(self, manager, clock):
        lock = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))

        assert await manager.verify(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30), lock.lock_id)
        assert not await manager.verify(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 15), lock.lock_id)
        assert not await manager.verify(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30), None)

        clock.advance(seconds=60)
        assert not await manager.verify(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30), lock.lock_id)

    async def test_release_frees_interval(self, manager):
        lock = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
        await manager.release(lock.lock_id)
        await manager.release(lock.lock_id)

        await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))

    async def test_sweep_removes_expired_only(self, manager, clock, lock_store):
        await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 9), at(MONDAY, 9, 30))
        clock.advance(seconds=45)
        live = await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 10), at(MONDAY, 10, 30))
        clock.advance(seconds=30)

        assert await manager.sweep() == 1
        assert await manager.sweep() == 0
        assert await lock_store.get(live.lock_id) is not None

    async def test_hold_releases_on_exit(self, manager):
        async with manager.hold(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30)) as lock:
            assert lock.practitioner_id == TEST_PRACTITIONER_ID
            with pytest.raises(ConflictError):
                await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))

        await manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 14), at(MONDAY, 14, 30))
