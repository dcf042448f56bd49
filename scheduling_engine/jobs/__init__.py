from .lock_sweep_job import LockSweepJob

__all__ = ["LockSweepJob"]
