"""
Notification dispatch.

Scheduling decisions emit fire-and-forget events
{appointment_id, kind: booked|rescheduled|cancelled, recipient}. Delivery is
someone else's job: the outbox dispatcher writes pending rows to the
healthcare.scheduling_notifications table for an outbox worker to pick up.
A dispatch failure never rolls back the scheduling decision.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from supabase import Client

from ..constants import NotificationKind
from ..models import Appointment, NotificationEvent
from ..observability.logger import hash_identifier

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):

    @abstractmethod
    async def dispatch(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Logs notifications instead of delivering them."""

    async def dispatch(self, event: NotificationEvent) -> None:
        logger.info(
            "notification.dispatched",
            extra={
                "appointment_id": event.appointment_id,
                "kind": event.kind.value,
                "recipient_hash": hash_identifier(event.recipient),
            },
        )


class OutboxNotificationDispatcher(NotificationDispatcher):
    """Writes notifications to an outbox table for asynchronous delivery."""

    def __init__(self, supabase_client: Client, table: str = 'scheduling_notifications'):
        self.supabase = supabase_client
        self.table = table

    async def dispatch(self, event: NotificationEvent) -> None:
        result = self.supabase.schema('healthcare').table(self.table).insert({
            'appointment_id': event.appointment_id,
            'kind': event.kind.value,
            'recipient': event.recipient,
            'payload': event.payload,
            'delivery_status': 'pending',
            'retry_count': 0,
        }).execute()

        if not result.data:
            raise RuntimeError(f"Outbox insert returned no data for appointment {event.appointment_id}")
        logger.info(f"Notification queued in outbox: {event.kind.value} for appointment {event.appointment_id}")


class RecordingNotificationDispatcher(NotificationDispatcher):
    """Keeps events in memory; used by tests."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    async def dispatch(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def for_appointment(self, appointment_id: str) -> List[NotificationEvent]:
        return [e for e in self.events if e.appointment_id == appointment_id]


def build_notification(
    appointment: Appointment,
    kind: NotificationKind,
    payload: Optional[Dict[str, Any]] = None,
) -> NotificationEvent:
    base = {
        "practitioner_id": appointment.practitioner_id,
        "start": appointment.start.isoformat(),
        "duration_minutes": appointment.duration_minutes,
    }
    base.update(payload or {})
    return NotificationEvent(
        appointment_id=appointment.id,
        kind=kind,
        recipient=appointment.patient_id,
        payload=base,
    )


async def safe_dispatch(dispatcher: Optional[NotificationDispatcher], event: NotificationEvent) -> bool:
    """Dispatch and report success; failures are logged, never raised."""
    if dispatcher is None:
        return False
    try:
        await dispatcher.dispatch(event)
        return True
    except Exception as e:
        logger.error(
            f"Notification dispatch failed for appointment {event.appointment_id} ({event.kind.value}): {e}",
            exc_info=True,
        )
        return False
