"""
Appointment scheduling engine.

Computes practitioner availability, generates bookable slots, prevents
double-booking with short-lived slot locks, owns the appointment lifecycle,
expands recurring series and cascades emergency unavailability.
"""

from .clock import Clock, ManualClock, SystemClock
from .engine import SchedulingEngine, create_production_engine, create_scheduling_engine
from .exceptions import (
    ConflictError,
    InvalidRecurrenceRuleError,
    InvalidTransitionError,
    LockExpiredError,
    NotFoundError,
    PartialSeriesWarning,
    SchedulingError,
    is_retryable,
)

__version__ = "0.1.0"

__all__ = [
    "Clock",
    "ConflictError",
    "InvalidRecurrenceRuleError",
    "InvalidTransitionError",
    "LockExpiredError",
    "ManualClock",
    "NotFoundError",
    "PartialSeriesWarning",
    "SchedulingEngine",
    "SchedulingError",
    "SystemClock",
    "create_production_engine",
    "create_scheduling_engine",
    "is_retryable",
]
