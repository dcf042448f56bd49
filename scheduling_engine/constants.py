"""
Scheduling Constants Module

Enums and transition tables shared across the engine: appointment states,
leave and series statuses, recurrence options and event kinds.
"""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle states.

    Main path:
    SCHEDULED -> CONFIRMED -> CHECKED_IN -> IN_PROGRESS -> COMPLETED

    CANCELLED and NO_SHOW are reachable from every non-terminal state.
    COMPLETED, CANCELLED and NO_SHOW are terminal.
    """
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class LeaveStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EMERGENCY = "emergency"


class SeriesStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PARTIALLY_CANCELLED = "partially_cancelled"


class RecurrenceFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class MonthlyAnchor(str, Enum):
    """Single explicit anchor strategy for monthly series."""
    DAY_OF_MONTH = "day_of_month"
    NTH_WEEKDAY = "nth_weekday"


class UpdateScope(str, Enum):
    THIS = "this"
    THIS_AND_FUTURE = "this_and_future"
    ALL = "all"


class OccurrenceOutcome(str, Enum):
    BOOKED = "booked"
    UNSCHEDULED = "unscheduled"
    SKIPPED = "skipped"


class NotificationKind(str, Enum):
    BOOKED = "booked"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


class CascadeAction(str, Enum):
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"


class CascadeStepStatus(str, Enum):
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    FAILED = "failed"


class AuditEventType(str, Enum):
    LOCK_ACQUIRED = "slot_lock.acquired"
    LOCK_RENEWED = "slot_lock.renewed"
    LOCK_CONFLICT = "slot_lock.conflict"
    LOCK_RELEASED = "slot_lock.released"
    LOCK_SWEPT = "slot_lock.swept"
    APPOINTMENT_CREATED = "appointment.created"
    APPOINTMENT_TRANSITIONED = "appointment.transitioned"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_RESCHEDULED = "appointment.rescheduled"
    SERIES_EXPANDED = "series.expanded"
    SERIES_CANCELLED = "series.cancelled"
    LEAVE_RECORDED = "leave.recorded"
    CASCADE_STEP = "cascade.step"


# Terminal states have empty transition lists
VALID_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.CHECKED_IN: [
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.IN_PROGRESS: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.COMPLETED: [],
    AppointmentStatus.CANCELLED: [],
    AppointmentStatus.NO_SHOW: [],
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

# Statuses that no longer hold their interval
RELEASED_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})

# Core fields (type, duration, notes) may only be edited in these states
EDITABLE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})

RESCHEDULABLE_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.CHECKED_IN,
})

# Timestamp field stamped exactly once on entry into each state
TRANSITION_TIMESTAMPS = {
    AppointmentStatus.CONFIRMED: "confirmed_at",
    AppointmentStatus.CHECKED_IN: "checked_in_at",
    AppointmentStatus.IN_PROGRESS: "started_at",
    AppointmentStatus.COMPLETED: "completed_at",
    AppointmentStatus.CANCELLED: "cancelled_at",
    AppointmentStatus.NO_SHOW: "no_show_at",
}

BLOCKING_LEAVE_STATUSES = frozenset({LeaveStatus.APPROVED, LeaveStatus.EMERGENCY})
