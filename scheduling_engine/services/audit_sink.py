"""
Audit/event sink.

Every state transition and lock acquisition/failure is reported here. The
engine never depends on the sink succeeding: callers go through safe_emit,
which logs and swallows sink failures.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from supabase import Client

from ..models import AuditEvent
from ..observability.logger import hash_identifier, log_scheduling_event, sanitize_details

logger = logging.getLogger(__name__)


class AuditSink(ABC):

    @abstractmethod
    async def emit(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink(AuditSink):
    """Writes each event as one structured JSON log line."""

    async def emit(self, event: AuditEvent) -> None:
        log_scheduling_event(
            event_type=event.event_type.value,
            entity_id=event.entity_id,
            practitioner_id=event.practitioner_id,
            patient_id=event.patient_id,
            actor=event.actor,
            outcome=event.outcome,
            details=event.details,
            occurred_at=event.occurred_at,
        )


class SupabaseAuditSink(AuditSink):
    """Persists events to healthcare.scheduling_audit_events."""

    def __init__(self, supabase_client: Client, table: str = 'scheduling_audit_events'):
        self.supabase = supabase_client
        self.table = table

    async def emit(self, event: AuditEvent) -> None:
        record = {
            'event_type': event.event_type.value,
            'entity_id': event.entity_id,
            'practitioner_id': event.practitioner_id,
            'patient_id_hash': hash_identifier(event.patient_id) if event.patient_id else None,
            'actor': event.actor,
            'outcome': event.outcome,
            'details': sanitize_details(event.details),
            'occurred_at': event.occurred_at.isoformat(),
        }
        self.supabase.schema('healthcare').table(self.table).insert(record).execute()


class RecordingAuditSink(AuditSink):
    """Keeps events in memory; used by tests and local simulations."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


async def safe_emit(sink: Optional[AuditSink], event: AuditEvent) -> None:
    """Emit without letting a sink failure reach the caller."""
    if sink is None:
        return
    try:
        await sink.emit(event)
    except Exception as e:
        logger.error(
            f"Audit sink failed for {event.event_type.value} ({event.entity_id}): {e}",
            exc_info=True,
        )
