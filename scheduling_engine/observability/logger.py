"""
Scheduling Structured Logging Module

JSON event logs for audit-grade scheduling events:
- ISO 8601 UTC timestamps
- Dotted event types (slot_lock.acquired, appointment.transitioned, ...)
- Privacy-preserving patient identifier hashing

Privacy:
- Patient IDs are hashed (SHA-256, truncated to 16 chars)
- Free-text fields (notes, reasons) are never logged verbatim
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("scheduling.events")

# Keys that may carry free text entered by staff or patients
REDACTED_KEYS = frozenset({"notes", "reason", "cancellation_reason", "reschedule_reason"})


def hash_identifier(identifier: str) -> str:
    """
    Hash an identifier for log correlation without exposing it.

    Example:
        >>> len(hash_identifier("patient-42"))
        16
    """
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def sanitize_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop free-text values and stringify everything else."""
    if not details:
        return {}
    sanitized = {}
    for key, value in details.items():
        if key in REDACTED_KEYS:
            sanitized[key] = "[redacted]" if value else None
        elif isinstance(value, (str, int, float, bool)) or value is None:
            sanitized[key] = value
        elif isinstance(value, (list, tuple)):
            sanitized[key] = [str(v) for v in value]
        else:
            sanitized[key] = str(value)
    return sanitized


def log_scheduling_event(
    event_type: str,
    entity_id: Optional[str] = None,
    practitioner_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    actor: Optional[str] = None,
    outcome: str = "success",
    error: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
):
    """
    Log a scheduling event as one JSON line.

    Example:
        >>> log_scheduling_event(
        ...     event_type="slot_lock.acquired",
        ...     entity_id="lock_123",
        ...     practitioner_id="dr_1",
        ...     details={"ttl_seconds": 60},
        ... )
    """
    log_data = {
        "timestamp": (occurred_at or datetime.now(timezone.utc)).isoformat(),
        "event_type": event_type,
        "entity_id": entity_id,
        "practitioner_id": practitioner_id,
        "patient_id_hash": hash_identifier(patient_id) if patient_id else None,
        "actor": actor,
        "outcome": outcome,
        "error": error,
        **sanitize_details(details),
    }

    if error or outcome == "failure":
        logger.error(json.dumps(log_data))
    elif outcome == "conflict":
        logger.warning(json.dumps(log_data))
    else:
        logger.info(json.dumps(log_data))
