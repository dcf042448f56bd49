"""
Slot Lock Manager

Short-lived exclusive holds on a (practitioner, interval) pair that bridge
slot selection and booking commit. Acquisition fails fast with ConflictError
instead of queuing; holds expire on their own and can be released or swept.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from ..clock import Clock, SystemClock
from ..config import SLOT_LOCK_TTL_SECONDS
from ..constants import AuditEventType
from ..exceptions import ConflictError
from ..models import AuditEvent, SlotLock
from .audit_sink import AuditSink, safe_emit
from .lock_stores import LockStore

logger = logging.getLogger(__name__)


class SlotLockManager:
    """
    Issues, verifies and releases slot locks.

    Args:
        store: atomic lock storage (in-memory or Redis)
        clock: time source for audit timestamps
        ttl_seconds: lifetime of a hold
        audit_sink: receives every acquisition, renewal, conflict, release and sweep
    """

    def __init__(
        self,
        store: LockStore,
        clock: Optional[Clock] = None,
        ttl_seconds: int = SLOT_LOCK_TTL_SECONDS,
        audit_sink: Optional[AuditSink] = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.store = store
        self.clock = clock or SystemClock()
        self.ttl_seconds = ttl_seconds
        self.audit_sink = audit_sink

    async def acquire(
        self,
        practitioner_id: str,
        start: datetime,
        end: datetime,
        requested_lock_id: Optional[str] = None,
    ) -> SlotLock:
        """
        Hold [start, end) for the practitioner.

        A still-valid requested_lock_id for the same practitioner and interval
        is renewed rather than duplicated.

        Raises:
            ConflictError: an unexpired lock overlaps the interval
        """
        if end <= start:
            raise ValueError("Lock interval end must be after start")

        try:
            lock, renewed = await self.store.acquire(
                practitioner_id, start, end, self.ttl_seconds, requested_lock_id
            )
        except ConflictError as e:
            logger.info(
                "slot_lock.conflict",
                extra={
                    "practitioner_id": practitioner_id,
                    "interval_start": start.isoformat(),
                    "conflicting_ids": e.conflicting_ids,
                },
            )
            await self._audit(
                AuditEventType.LOCK_CONFLICT,
                None,
                practitioner_id,
                outcome="conflict",
                details={"start": start.isoformat(), "end": end.isoformat(), "held_by": e.conflicting_ids},
            )
            raise

        event_type = AuditEventType.LOCK_RENEWED if renewed else AuditEventType.LOCK_ACQUIRED
        logger.debug(f"🔒 {event_type.value}: {lock.lock_id[:8]} for {practitioner_id} at {start.isoformat()}")
        await self._audit(
            event_type,
            lock.lock_id,
            practitioner_id,
            details={
                "start": start.isoformat(),
                "end": end.isoformat(),
                "expires_at": lock.expires_at.isoformat(),
            },
        )
        return lock

    async def verify(self, practitioner_id: str, start: datetime, end: datetime, lock_id: Optional[str]) -> bool:
        """True only if an unexpired lock with this id holds exactly this interval."""
        if not lock_id:
            return False
        lock = await self.store.get(lock_id)
        return lock is not None and lock.matches(practitioner_id, start, end)

    async def release(self, lock_id: Optional[str]) -> None:
        """Best-effort release; an absent lock is not an error."""
        if not lock_id:
            return
        removed = await self.store.release(lock_id)
        logger.debug(f"🔓 Released slot lock {lock_id[:8]} (present={removed})")
        await self._audit(AuditEventType.LOCK_RELEASED, lock_id, None, details={"present": removed})

    async def sweep(self) -> int:
        """Remove expired locks. Idempotent and safe to run concurrently."""
        removed = await self.store.sweep()
        if removed:
            logger.info(f"Swept {removed} expired slot lock(s)")
            await self._audit(AuditEventType.LOCK_SWEPT, None, None, details={"removed": removed})
        return removed

    @asynccontextmanager
    async def hold(self, practitioner_id: str, start: datetime, end: datetime) -> AsyncIterator[SlotLock]:
        """
        Acquire a lock for the duration of the block and always release it.

        Raises:
            ConflictError: the interval is already held
        """
        lock = await self.acquire(practitioner_id, start, end)
        try:
            yield lock
        finally:
            try:
                await self.release(lock.lock_id)
            except Exception as e:
                logger.warning(f"Failed to release slot lock {lock.lock_id}: {e}")

    async def _audit(self, event_type, entity_id, practitioner_id, outcome="success", details=None):
        await safe_emit(self.audit_sink, AuditEvent(
            event_type=event_type,
            entity_id=entity_id,
            practitioner_id=practitioner_id,
            outcome=outcome,
            details=details or {},
            occurred_at=self.clock.now(),
        ))
