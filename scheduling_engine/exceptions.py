"""
Custom exceptions for the scheduling engine.

Caller errors (NotFoundError, InvalidTransitionError, InvalidRecurrenceRuleError)
are surfaced immediately and never retried. ConflictError and LockExpiredError
are expected under concurrent load; callers detect them with is_retryable()
and restart slot selection.
"""

from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class for all scheduling engine errors."""

    code = "scheduling_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(SchedulingError):
    """Raised when a practitioner, appointment, series or leave does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "entity_id": entity_id},
        )


class RetryableSchedulingError(SchedulingError):
    """Errors expected under concurrent load; slot selection can be retried."""


class ConflictError(RetryableSchedulingError):
    """Raised when an interval is already booked, locked or concurrently modified."""

    code = "conflict"

    def __init__(
        self,
        message: str = "Requested interval is not available",
        conflicting_ids: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.conflicting_ids = list(conflicting_ids or [])
        merged = dict(details or {})
        merged.setdefault("conflicting_ids", self.conflicting_ids)
        super().__init__(message, merged)


class LockExpiredError(RetryableSchedulingError):
    """Raised when a slot lock fails verification at commit time."""

    code = "lock_expired"

    def __init__(self, lock_id: Optional[str] = None):
        self.lock_id = lock_id
        message = f"Slot lock {lock_id} has expired" if lock_id else "Slot lock has expired"
        super().__init__(message, {"lock_id": lock_id})


class InvalidTransitionError(SchedulingError):
    """Raised on an appointment state machine violation."""

    code = "invalid_transition"

    def __init__(self, appointment_id: str, current: str, target: str, message: str = None):
        self.appointment_id = appointment_id
        self.current = current
        self.target = target
        super().__init__(
            message or f"Appointment {appointment_id} cannot move from {current} to {target}",
            {"appointment_id": appointment_id, "current": current, "target": target},
        )


class InvalidRecurrenceRuleError(SchedulingError):
    """Raised when a recurrence rule is malformed."""

    code = "invalid_recurrence_rule"

    def __init__(self, message: str):
        super().__init__(message)


class PartialSeriesWarning(UserWarning):
    """Series expansion could not fill the requested count within its date bound.

    Logged and attached to expansion results; never raised.
    """

    def __init__(self, series_id: str, requested: int, booked: int):
        self.series_id = series_id
        self.requested = requested
        self.booked = booked
        super().__init__(
            f"Series {series_id} booked {booked} of {requested} requested occurrences"
        )


def is_retryable(exc: BaseException) -> bool:
    """True when the caller should retry slot selection instead of failing."""
    return isinstance(exc, RetryableSchedulingError)
