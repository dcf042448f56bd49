"""Scheduling services: availability, slots, conflicts, locks, lifecycle, series and cascades."""

from .appointment_state_machine import AppointmentStateMachine
from .audit_sink import AuditSink, LoggingAuditSink, RecordingAuditSink, SupabaseAuditSink, safe_emit
from .availability_resolver import AvailabilityResolver
from .booking_service import BookingResult, BookingService
from .conflict_detector import ConflictDetector, ConflictReport
from .emergency_cascade_planner import CascadePlan, CascadeReport, EmergencyCascadePlanner
from .holiday_calendar import HolidayCalendar
from .lock_stores import InMemoryLockStore, LockStore, RedisLockStore
from .notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    OutboxNotificationDispatcher,
    RecordingNotificationDispatcher,
    safe_dispatch,
)
from .recurring_series_expander import RecurringSeriesExpander, SeriesExpansionResult
from .slot_generator import SlotGenerator, SlotSequence, generate_slots
from .slot_lock_manager import SlotLockManager

__all__ = [
    "AppointmentStateMachine",
    "AuditSink",
    "AvailabilityResolver",
    "BookingResult",
    "BookingService",
    "CascadePlan",
    "CascadeReport",
    "ConflictDetector",
    "ConflictReport",
    "EmergencyCascadePlanner",
    "HolidayCalendar",
    "InMemoryLockStore",
    "LockStore",
    "LoggingAuditSink",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "OutboxNotificationDispatcher",
    "RecordingAuditSink",
    "RecordingNotificationDispatcher",
    "RecurringSeriesExpander",
    "RedisLockStore",
    "SeriesExpansionResult",
    "SlotGenerator",
    "SlotLockManager",
    "SlotSequence",
    "SupabaseAuditSink",
    "generate_slots",
    "safe_dispatch",
    "safe_emit",
]
