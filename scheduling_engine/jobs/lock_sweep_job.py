"""
Slot Lock Sweep Job

Background janitor that periodically removes expired slot locks. Expiry is
already enforced on read; the sweep keeps lock storage from accumulating
dead entries.
"""

import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..clock import Clock
from ..config import LOCK_SWEEP_INTERVAL_SECONDS
from ..services.slot_lock_manager import SlotLockManager

logger = logging.getLogger(__name__)


class LockSweepJob:
    """
    Runs SlotLockManager.sweep() on an interval.
    A failing run is logged and counted; the scheduler keeps going.
    """

    def __init__(
        self,
        lock_manager: SlotLockManager,
        run_interval_seconds: int = LOCK_SWEEP_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            lock_manager: manager whose store is swept
            run_interval_seconds: how often to sweep (default 30 seconds)
            clock: time source for run statistics (defaults to the manager's clock)
        """
        self.lock_manager = lock_manager
        self.clock = clock or lock_manager.clock
        self.scheduler = AsyncIOScheduler()
        self.run_interval_seconds = run_interval_seconds
        self.is_running = False
        self.total_removed = 0
        self.failed_runs = 0

        logger.info(f"Initialized LockSweepJob with {run_interval_seconds} second interval")

    async def sweep_expired_locks(self) -> Dict[str, Any]:
        """
        Remove expired locks once.

        Returns:
            Dictionary with sweep statistics
        """
        started = self.clock.now()
        stats = {
            "removed_locks": 0,
            "errors": 0,
            "start_time": started.isoformat(),
        }
        try:
            stats["removed_locks"] = await self.lock_manager.sweep()
            self.total_removed += stats["removed_locks"]
        except Exception as e:
            logger.error(f"Error in lock sweep job: {e}", exc_info=True)
            stats["errors"] = 1
            stats["error"] = str(e)
            self.failed_runs += 1

        finished = self.clock.now()
        stats["end_time"] = finished.isoformat()
        stats["duration_seconds"] = (finished - started).total_seconds()
        if stats["removed_locks"]:
            logger.info(f"Lock sweep removed {stats['removed_locks']} expired lock(s)")
        return stats

    def start(self):
        """Start the scheduled sweep."""
        if not self.is_running:
            self.scheduler.add_job(
                self.sweep_expired_locks,
                trigger=IntervalTrigger(seconds=self.run_interval_seconds),
                id='slot_lock_sweep_job',
                name='Slot Lock Sweep',
                misfire_grace_time=self.run_interval_seconds,
                coalesce=True,  # Combine missed runs
                max_instances=1  # Only one sweep at a time
            )
            self.scheduler.start()
            self.is_running = True
            logger.info(f"Lock sweep job started (runs every {self.run_interval_seconds} seconds)")

    def stop(self):
        """Stop the scheduled sweep."""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Lock sweep job stopped")

    async def run_once(self) -> Dict[str, Any]:
        """Run the sweep once (for testing or manual execution)."""
        return await self.sweep_expired_locks()
