"""
Event payloads sent to the notification dispatcher and the audit sink.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..constants import AuditEventType, NotificationKind
from .availability import utcnow


class NotificationEvent(BaseModel):
    """Fire-and-forget notification request."""

    appointment_id: str
    kind: NotificationKind
    recipient: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class AuditEvent(BaseModel):
    event_type: AuditEventType
    entity_id: Optional[str] = None
    practitioner_id: Optional[str] = None
    patient_id: Optional[str] = None
    actor: Optional[str] = None
    outcome: str = "success"
    details: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)
