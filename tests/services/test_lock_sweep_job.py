"""
Tests for the background lock sweep job
"""

from unittest.mock import AsyncMock, Mock

import pytest

from scheduling_engine import ManualClock
from scheduling_engine.jobs import LockSweepJob

from tests.fixtures import CLOCK_START, MONDAY, TEST_PRACTITIONER_ID, at


@pytest.fixture
def mock_lock_manager():
    manager = Mock()
    manager.sweep = AsyncMock(return_value=0)
    manager.clock = ManualClock(CLOCK_START)
    return manager


class TestLockSweepJob:
    """Test suite for LockSweepJob"""

    async def test_run_once_reports_removed_locks(self, mock_lock_manager):
        mock_lock_manager.sweep.return_value = 3
        job = LockSweepJob(mock_lock_manager, run_interval_seconds=10)

        stats = await job.run_once()

        assert stats['removed_locks'] == 3
        assert stats['errors'] == 0
        assert job.total_removed == 3

    async def test_failed_run_is_counted_not_raised(self, mock_lock_manager):
        mock_lock_manager.sweep.side_effect = ConnectionError("redis unavailable")
        job = LockSweepJob(mock_lock_manager)

        stats = await job.run_once()

        assert stats['errors'] == 1
        assert 'redis unavailable' in stats['error']
        assert job.failed_runs == 1

    async def test_start_and_stop(self, mock_lock_manager):
        job = LockSweepJob(mock_lock_manager, run_interval_seconds=5)

        job.start()
        job.start()
        try:
            assert job.is_running
            jobs = job.scheduler.get_jobs()
            assert [j.id for j in jobs] == ['slot_lock_sweep_job']
        finally:
            job.stop()

        assert not job.is_running

    async def test_sweeps_real_manager(self, engine, clock):
        """Expired holds are removed from the in-memory store"""
        await engine.lock_manager.acquire(TEST_PRACTITIONER_ID, at(MONDAY, 10), at(MONDAY, 10, 30))
        clock.advance(seconds=engine.policy.slot_lock_ttl_seconds + 1)

        stats = await engine.lock_sweep_job().run_once()

        assert stats['removed_locks'] == 1

    async def test_run_times_come_from_manager_clock(self, engine, clock):
        clock.advance(hours=2)

        stats = await engine.lock_sweep_job().run_once()

        assert stats['start_time'] == clock.now().isoformat()
        assert stats['end_time'] == clock.now().isoformat()
        assert stats['duration_seconds'] == 0

    async def test_explicit_clock_overrides_manager_clock(self, mock_lock_manager):
        other = ManualClock(at(MONDAY, 12))
        job = LockSweepJob(mock_lock_manager, clock=other)

        stats = await job.run_once()

        assert stats['start_time'] == at(MONDAY, 12).isoformat()
