"""
Appointment State Machine

Owns the lifecycle of a single appointment:

    scheduled -> confirmed -> checked-in -> in-progress -> completed
    scheduled -> checked-in (walk-in without confirmation)
    any non-terminal state -> cancelled | no-show

Every change is an explicit command applied as one compare-and-set write:
status, timestamp (stamped once), history record and version move together.
"""

import logging
from typing import Optional, Tuple

from ..clock import Clock, SystemClock
from ..constants import (
    EDITABLE_STATUSES,
    RESCHEDULABLE_STATUSES,
    TRANSITION_TIMESTAMPS,
    VALID_TRANSITIONS,
    AppointmentStatus,
    AuditEventType,
)
from ..exceptions import ConflictError, InvalidTransitionError, NotFoundError
from ..models import (
    Appointment,
    AuditEvent,
    CreateAppointment,
    RescheduleAppointment,
    TransitionAppointment,
    TransitionRecord,
    UpdateAppointmentDetails,
)
from ..repositories import SchedulingRepository
from .audit_sink import AuditSink, safe_emit

logger = logging.getLogger(__name__)


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


class AppointmentStateMachine:
    """Single writer for Appointment records."""

    def __init__(
        self,
        repository: SchedulingRepository,
        clock: Optional[Clock] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.repository = repository
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink

    async def get(self, appointment_id: str) -> Appointment:
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    async def create(self, command: CreateAppointment) -> Appointment:
        """Persist a new appointment in `scheduled`. Conflict checks happen upstream."""
        now = self.clock.now()
        appointment = Appointment(
            practitioner_id=command.practitioner_id,
            patient_id=command.patient_id,
            appointment_type_id=command.appointment_type_id,
            start=command.start,
            duration_minutes=command.duration_minutes,
            status=AppointmentStatus.SCHEDULED,
            series_id=command.series_id,
            occurrence_index=command.occurrence_index,
            rescheduled_from_id=command.rescheduled_from_id,
            reschedule_reason=command.reschedule_reason,
            notes=command.notes,
            history=[TransitionRecord(
                from_status=None,
                to_status=AppointmentStatus.SCHEDULED,
                actor=command.actor,
                at=now,
            )],
            created_at=now,
            updated_at=now,
        )
        created = await self.repository.create_appointment(appointment)
        logger.info(
            "appointment.created",
            extra={
                "appointment_id": created.id,
                "practitioner_id": created.practitioner_id,
                "appointment_start": created.start.isoformat(),
            },
        )
        await self._audit(AuditEventType.APPOINTMENT_CREATED, created, command.actor, details={
            "start": created.start.isoformat(),
            "duration_minutes": created.duration_minutes,
            "series_id": created.series_id,
        })
        return created

    async def transition(self, command: TransitionAppointment) -> Appointment:
        """
        Move an appointment to a new status.

        Raises:
            NotFoundError: unknown appointment
            InvalidTransitionError: terminal source state or transition not allowed
            ConflictError: concurrent modification
        """
        current = await self.get(command.appointment_id)
        target = AppointmentStatus(command.target)

        if current.is_terminal:
            raise InvalidTransitionError(
                current.id,
                current.status.value,
                target.value,
                f"Appointment {current.id} is {current.status.value} and cannot change status",
            )
        if not can_transition(current.status, target):
            raise InvalidTransitionError(current.id, current.status.value, target.value)

        changes = {"status": target}
        stamp_field = TRANSITION_TIMESTAMPS.get(target)
        if stamp_field and getattr(current, stamp_field) is None:
            changes[stamp_field] = self.clock.now()
        if target == AppointmentStatus.CANCELLED:
            changes["cancellation_reason"] = command.reason

        updated = await self._save(current, changes, target, command.actor, command.reason)
        logger.info(
            "appointment.transitioned",
            extra={
                "appointment_id": updated.id,
                "from_status": current.status.value,
                "to_status": target.value,
            },
        )
        await self._audit(AuditEventType.APPOINTMENT_TRANSITIONED, updated, command.actor, details={
            "from": current.status.value,
            "to": target.value,
            "reason": command.reason,
        })
        return updated

    async def confirm(self, appointment_id: str, actor: Optional[str] = None) -> Appointment:
        return await self.transition(TransitionAppointment(
            appointment_id=appointment_id, target=AppointmentStatus.CONFIRMED, actor=actor
        ))

    async def check_in(self, appointment_id: str, actor: Optional[str] = None) -> Appointment:
        return await self.transition(TransitionAppointment(
            appointment_id=appointment_id, target=AppointmentStatus.CHECKED_IN, actor=actor
        ))

    async def start(self, appointment_id: str, actor: Optional[str] = None) -> Appointment:
        return await self.transition(TransitionAppointment(
            appointment_id=appointment_id, target=AppointmentStatus.IN_PROGRESS, actor=actor
        ))

    async def complete(self, appointment_id: str, actor: Optional[str] = None) -> Appointment:
        return await self.transition(TransitionAppointment(
            appointment_id=appointment_id, target=AppointmentStatus.COMPLETED, actor=actor
        ))

    async def cancel(self, appointment_id: str, reason: Optional[str] = None, actor: Optional[str] = None) -> Appointment:
        return await self.transition(TransitionAppointment(
            appointment_id=appointment_id, target=AppointmentStatus.CANCELLED, actor=actor, reason=reason
        ))

    async def mark_no_show(self, appointment_id: str, actor: Optional[str] = None) -> Appointment:
        return await self.transition(TransitionAppointment(
            appointment_id=appointment_id, target=AppointmentStatus.NO_SHOW, actor=actor
        ))

    async def update_details(self, command: UpdateAppointmentDetails) -> Appointment:
        """
        Edit type, duration or notes while the appointment is scheduled or confirmed.

        Raises:
            InvalidTransitionError: appointment is past confirmation
        """
        current = await self.get(command.appointment_id)
        if current.status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(
                current.id,
                current.status.value,
                current.status.value,
                f"Appointment {current.id} is {current.status.value}; core fields can only be "
                f"edited while scheduled or confirmed, use a reschedule instead",
            )

        changes = {}
        if command.appointment_type_id is not None:
            changes["appointment_type_id"] = command.appointment_type_id
        if command.duration_minutes is not None:
            changes["duration_minutes"] = command.duration_minutes
        if command.notes is not None:
            changes["notes"] = command.notes
        if not changes:
            return current

        updated = await self._save(current, changes)
        await self._audit(AuditEventType.APPOINTMENT_UPDATED, updated, command.actor, details={
            "fields": sorted(changes),
        })
        return updated

    async def detach_from_series(self, appointment_id: str, actor: Optional[str] = None) -> Appointment:
        """Exclude an occurrence from later series-wide edits."""
        current = await self.get(appointment_id)
        if current.detached_from_series:
            return current
        updated = await self._save(current, {"detached_from_series": True})
        await self._audit(AuditEventType.APPOINTMENT_UPDATED, updated, actor, details={"fields": ["detached_from_series"]})
        return updated

    async def reschedule(self, command: RescheduleAppointment) -> Tuple[Appointment, Appointment]:
        """
        Move an appointment to a new interval as a new claim.

        The replacement is created `scheduled` with rescheduled_from_id; the
        original is cancelled with rescheduled_to_id. Interval checks (conflict
        detection, lock verification) are the caller's job.

        Returns:
            (cancelled original, replacement)

        Raises:
            InvalidTransitionError: appointment cannot be rescheduled from its status
        """
        current = await self.get(command.appointment_id)
        if current.status not in RESCHEDULABLE_STATUSES:
            raise InvalidTransitionError(
                current.id,
                current.status.value,
                AppointmentStatus.SCHEDULED.value,
                f"Appointment {current.id} is {current.status.value} and cannot be rescheduled",
            )

        replacement = await self.create(CreateAppointment(
            practitioner_id=command.new_practitioner_id or current.practitioner_id,
            patient_id=current.patient_id,
            appointment_type_id=current.appointment_type_id,
            start=command.new_start,
            duration_minutes=command.new_duration_minutes or current.duration_minutes,
            series_id=current.series_id,
            occurrence_index=current.occurrence_index,
            rescheduled_from_id=current.id,
            reschedule_reason=command.reason,
            notes=current.notes,
            actor=command.actor,
        ))
        if current.detached_from_series:
            replacement = await self._save(replacement, {"detached_from_series": True})

        changes = {
            "status": AppointmentStatus.CANCELLED,
            "cancelled_at": current.cancelled_at or self.clock.now(),
            "cancellation_reason": f"Rescheduled: {command.reason}" if command.reason else "Rescheduled",
            "reschedule_reason": command.reason,
            "rescheduled_to_id": replacement.id,
        }
        try:
            original = await self._save(
                current, changes, AppointmentStatus.CANCELLED, command.actor, command.reason
            )
        except ConflictError:
            # The original changed underneath us; withdraw the replacement claim
            await self.cancel(replacement.id, reason="Reschedule aborted", actor=command.actor)
            raise

        logger.info(
            "appointment.rescheduled",
            extra={"appointment_id": original.id, "replacement_id": replacement.id},
        )
        await self._audit(AuditEventType.APPOINTMENT_RESCHEDULED, original, command.actor, details={
            "replacement_id": replacement.id,
            "new_start": replacement.start.isoformat(),
            "new_practitioner_id": replacement.practitioner_id,
            "reason": command.reason,
        })
        return original, replacement

    async def _save(
        self,
        current: Appointment,
        changes: dict,
        target: Optional[AppointmentStatus] = None,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        now = self.clock.now()
        history = list(current.history)
        if target is not None:
            history.append(TransitionRecord(
                from_status=current.status,
                to_status=target,
                actor=actor,
                reason=reason,
                at=now,
            ))
        updated = current.model_copy(update={
            **changes,
            "history": history,
            "version": current.version + 1,
            "updated_at": now,
        })
        return await self.repository.update_appointment(updated, expected_version=current.version)

    async def _audit(self, event_type, appointment: Appointment, actor, details=None):
        await safe_emit(self.audit_sink, AuditEvent(
            event_type=event_type,
            entity_id=appointment.id,
            practitioner_id=appointment.practitioner_id,
            patient_id=appointment.patient_id,
            actor=actor,
            details=details or {},
            occurred_at=self.clock.now(),
        ))
