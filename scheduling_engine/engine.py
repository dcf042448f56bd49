"""
Scheduling engine wiring.

SchedulingEngine bundles the services that share one repository, lock store,
clock and policy. create_scheduling_engine() builds an in-process engine
(tests, single-process deployments); create_production_engine() wires Supabase
persistence, Redis locks and the outbox/audit tables.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .clock import Clock, SystemClock
from .config import SchedulingPolicy, get_redis_client, load_scheduling_policy
from .database import get_healthcare_client
from .jobs.lock_sweep_job import LockSweepJob
from .repositories import InMemorySchedulingRepository, SchedulingRepository, SupabaseSchedulingRepository
from .services.appointment_state_machine import AppointmentStateMachine
from .services.audit_sink import AuditSink, LoggingAuditSink, SupabaseAuditSink
from .services.availability_resolver import AvailabilityResolver
from .services.booking_service import BookingService
from .services.conflict_detector import ConflictDetector
from .services.emergency_cascade_planner import EmergencyCascadePlanner
from .services.holiday_calendar import HolidayCalendar
from .services.lock_stores import InMemoryLockStore, LockStore, RedisLockStore
from .services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from .services.recurring_series_expander import RecurringSeriesExpander
from .services.slot_generator import SlotGenerator
from .services.slot_lock_manager import SlotLockManager

logger = logging.getLogger(__name__)


@dataclass
class SchedulingEngine:
    repository: SchedulingRepository
    clock: Clock
    policy: SchedulingPolicy
    resolver: AvailabilityResolver
    slot_generator: SlotGenerator
    conflict_detector: ConflictDetector
    lock_manager: SlotLockManager
    state_machine: AppointmentStateMachine
    booking: BookingService
    series: RecurringSeriesExpander
    cascade: EmergencyCascadePlanner

    def lock_sweep_job(self) -> LockSweepJob:
        return LockSweepJob(self.lock_manager, clock=self.clock)


# Factory function to create a wired scheduling engine
def create_scheduling_engine(
    repository: Optional[SchedulingRepository] = None,
    lock_store: Optional[LockStore] = None,
    clock: Optional[Clock] = None,
    policy: Optional[SchedulingPolicy] = None,
    notifier: Optional[NotificationDispatcher] = None,
    audit_sink: Optional[AuditSink] = None,
    holiday_calendar: Optional[HolidayCalendar] = None,
) -> SchedulingEngine:
    """Create a scheduling engine; missing collaborators get in-process defaults."""
    clock = clock or SystemClock()
    policy = policy or load_scheduling_policy()
    repository = repository or InMemorySchedulingRepository()
    lock_store = lock_store or InMemoryLockStore(clock)
    notifier = notifier or LoggingNotificationDispatcher()
    audit_sink = audit_sink or LoggingAuditSink()

    resolver = AvailabilityResolver(repository, holiday_calendar)
    slot_generator = SlotGenerator(resolver, repository, clock, policy)
    conflict_detector = ConflictDetector(repository, policy)
    lock_manager = SlotLockManager(lock_store, clock, policy.slot_lock_ttl_seconds, audit_sink)
    state_machine = AppointmentStateMachine(repository, clock, audit_sink)
    booking = BookingService(
        resolver, slot_generator, conflict_detector, lock_manager, state_machine, notifier, clock
    )
    series = RecurringSeriesExpander(
        resolver, booking, state_machine, repository, clock, policy, audit_sink
    )
    cascade = EmergencyCascadePlanner(
        repository, resolver, slot_generator, booking, notifier, audit_sink, clock, policy
    )

    logger.info(
        f"Scheduling engine ready (repository={type(repository).__name__}, "
        f"locks={type(lock_store).__name__}, ttl={policy.slot_lock_ttl_seconds}s)"
    )
    return SchedulingEngine(
        repository=repository,
        clock=clock,
        policy=policy,
        resolver=resolver,
        slot_generator=slot_generator,
        conflict_detector=conflict_detector,
        lock_manager=lock_manager,
        state_machine=state_machine,
        booking=booking,
        series=series,
        cascade=cascade,
    )


def create_production_engine(country: Optional[str] = None) -> SchedulingEngine:
    """Engine backed by Supabase (healthcare schema) and Redis, configured from the environment."""
    supabase = get_healthcare_client()
    return create_scheduling_engine(
        repository=SupabaseSchedulingRepository(supabase),
        lock_store=RedisLockStore(get_redis_client()),
        notifier=OutboxNotificationDispatcher(supabase),
        audit_sink=SupabaseAuditSink(supabase),
        holiday_calendar=HolidayCalendar.from_supabase(supabase, country),
    )
