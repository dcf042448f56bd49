"""
Emergency Cascade Planner

When a practitioner's availability is revoked on short notice:

1. record an emergency Leave for the window (availability drops immediately)
2. enumerate live appointments overlapping the window
3. propose alternative slots within the search horizon, optionally with other
   practitioners offering the same appointment type
4. apply the caller's per-appointment decision (reschedule or cancel) and
   emit one notification per affected appointment

Enumeration is always re-derived from the Leave window, so an interrupted
cascade can be planned and applied again safely.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..clock import Clock, SystemClock
from ..config import SchedulingPolicy
from ..constants import (
    AuditEventType,
    CascadeAction,
    CascadeStepStatus,
    LeaveStatus,
    NotificationKind,
)
from ..exceptions import ConflictError, NotFoundError, RetryableSchedulingError
from ..intervals import Interval
from ..models import (
    AlternativeSlot,
    Appointment,
    AppointmentFilter,
    AuditEvent,
    CascadeDecision,
    Leave,
    RescheduleAppointment,
)
from ..models.commands import CascadeDecisions
from ..repositories import SchedulingRepository
from .audit_sink import AuditSink, safe_emit
from .availability_resolver import AvailabilityResolver
from .booking_service import BookingService
from .notifications import NotificationDispatcher, build_notification, safe_dispatch
from .slot_generator import SlotGenerator

logger = logging.getLogger(__name__)


@dataclass
class AffectedAppointment:
    appointment: Appointment
    alternatives: List[AlternativeSlot] = field(default_factory=list)


@dataclass
class CascadePlan:
    leave: Leave
    window: Interval
    items: List[AffectedAppointment] = field(default_factory=list)

    @property
    def appointment_ids(self) -> List[str]:
        return [item.appointment.id for item in self.items]


@dataclass
class CascadeStep:
    appointment_id: str
    status: CascadeStepStatus
    replacement_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CascadeReport:
    leave_id: str
    steps: List[CascadeStep] = field(default_factory=list)
    interrupted: bool = False

    def with_status(self, status: CascadeStepStatus) -> List[CascadeStep]:
        return [s for s in self.steps if s.status == status]

    @property
    def failed(self) -> List[CascadeStep]:
        return self.with_status(CascadeStepStatus.FAILED)


class EmergencyCascadePlanner:

    def __init__(
        self,
        repository: SchedulingRepository,
        resolver: AvailabilityResolver,
        slot_generator: SlotGenerator,
        booking_service: BookingService,
        notifier: Optional[NotificationDispatcher] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Optional[Clock] = None,
        policy: Optional[SchedulingPolicy] = None,
    ):
        self.repository = repository
        self.resolver = resolver
        self.slot_generator = slot_generator
        self.booking_service = booking_service
        self.notifier = notifier
        self.audit_sink = audit_sink
        self.clock = clock or SystemClock()
        self.policy = policy or SchedulingPolicy()

    async def declare_emergency(
        self,
        practitioner_id: str,
        window: Interval,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        include_other_practitioners: bool = False,
    ) -> CascadePlan:
        """
        Record (or reuse) an emergency leave for the window and plan the cascade.

        Raises:
            NotFoundError: unknown practitioner
        """
        practitioner = await self.resolver.get_practitioner(practitioner_id)
        tz = practitioner.tz

        leave = await self._existing_emergency_leave(practitioner_id, window, tz)
        if leave is None:
            leave = await self.repository.create_leave(Leave.from_window(
                practitioner_id,
                window,
                tz,
                status=LeaveStatus.EMERGENCY,
                leave_type="emergency",
                reason=reason,
                requested_by=actor,
                created_at=self.clock.now(),
            ))
            logger.info(
                "leave.recorded",
                extra={"leave_id": leave.id, "practitioner_id": practitioner_id, "window_start": window.start.isoformat()},
            )
            await safe_emit(self.audit_sink, AuditEvent(
                event_type=AuditEventType.LEAVE_RECORDED,
                entity_id=leave.id,
                practitioner_id=practitioner_id,
                actor=actor,
                details={
                    "status": leave.status.value,
                    "start": window.start.isoformat(),
                    "end": window.end.isoformat(),
                    "reason": reason,
                },
                occurred_at=self.clock.now(),
            ))
        else:
            logger.info(f"Reusing emergency leave {leave.id} for practitioner {practitioner_id}")

        return await self.plan_for_leave(leave.id, include_other_practitioners)

    async def plan_for_leave(self, leave_id: str, include_other_practitioners: bool = False) -> CascadePlan:
        """Enumerate affected appointments of any blocking leave and attach alternatives."""
        leave, window = await self._leave_window(leave_id)
        plan = CascadePlan(leave=leave, window=window)
        if not leave.removes_availability:
            logger.info(f"Leave {leave_id} is {leave.status.value}; nothing to cascade")
            return plan

        for appointment in await self._affected(leave, window):
            alternatives = await self.find_alternatives(
                appointment, include_other_practitioners, not_before=window.end
            )
            plan.items.append(AffectedAppointment(appointment=appointment, alternatives=alternatives))

        logger.info(
            f"Cascade plan for leave {leave_id}: {len(plan.items)} affected appointment(s)"
        )
        return plan

    async def enumerate_affected(self, leave_id: str) -> List[Appointment]:
        """Live appointments overlapping the leave window, ordered by (start, id)."""
        leave, window = await self._leave_window(leave_id)
        return await self._affected(leave, window)

    async def find_alternatives(
        self,
        appointment: Appointment,
        include_other_practitioners: bool = False,
        not_before: Optional[datetime] = None,
    ) -> List[AlternativeSlot]:
        """Alternative slots for a displaced appointment, earliest first."""
        earliest = max(not_before or appointment.start, self.clock.now())
        limit = self.policy.cascade_max_alternatives

        practitioner_ids = [appointment.practitioner_id]
        if include_other_practitioners:
            for other in await self.repository.find_practitioners_for_type(appointment.appointment_type_id):
                if other.id != appointment.practitioner_id:
                    practitioner_ids.append(other.id)

        alternatives: List[AlternativeSlot] = []
        for practitioner_id in practitioner_ids:
            practitioner = await self.resolver.get_practitioner(practitioner_id)
            start_date = earliest.astimezone(practitioner.tz).date()
            end_date = start_date + timedelta(days=self.policy.cascade_search_horizon_days)
            slots = await self.slot_generator.slots_for_range(
                practitioner_id,
                start_date,
                end_date,
                appointment_type_id=appointment.appointment_type_id,
                duration_minutes=appointment.duration_minutes,
                exclude_appointment_ids=[appointment.id],
            )
            found = 0
            for slot in slots:
                if slot.start < earliest:
                    continue
                alternatives.append(AlternativeSlot(
                    practitioner_id=slot.practitioner_id,
                    start=slot.start,
                    end=slot.end,
                    same_practitioner=practitioner_id == appointment.practitioner_id,
                ))
                found += 1
                if found >= limit:
                    break

        # Same practitioner first, then earliest
        alternatives.sort(key=lambda a: (not a.same_practitioner, a.start, a.practitioner_id))
        return alternatives[:limit]

    async def apply(
        self,
        plan: CascadePlan,
        decisions: CascadeDecisions,
        actor: Optional[str] = None,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> CascadeReport:
        """
        Apply per-appointment decisions.

        Each step is an independent, complete state transition; a failure is
        recorded for that appointment and processing continues. should_continue
        is consulted between steps for cooperative cancellation.
        """
        report = CascadeReport(leave_id=plan.leave.id)

        for item in plan.items:
            if should_continue is not None and not should_continue():
                report.interrupted = True
                logger.info(f"Cascade for leave {plan.leave.id} interrupted after {len(report.steps)} step(s)")
                break

            step = await self._apply_one(plan, item, decisions.get(item.appointment.id), actor)
            report.steps.append(step)

            if step.status == CascadeStepStatus.FAILED:
                logger.warning(
                    "cascade.step_failed",
                    extra={"appointment_id": step.appointment_id, "error": step.error},
                )
            await safe_emit(self.audit_sink, AuditEvent(
                event_type=AuditEventType.CASCADE_STEP,
                entity_id=step.appointment_id,
                practitioner_id=item.appointment.practitioner_id,
                patient_id=item.appointment.patient_id,
                actor=actor,
                outcome="failure" if step.status == CascadeStepStatus.FAILED else "success",
                details={
                    "leave_id": plan.leave.id,
                    "status": step.status.value,
                    "replacement_id": step.replacement_id,
                    "error": step.error,
                },
                occurred_at=self.clock.now(),
            ))

        return report

    async def _apply_one(
        self,
        plan: CascadePlan,
        item: AffectedAppointment,
        decision: Optional[CascadeDecision],
        actor: Optional[str],
    ) -> CascadeStep:
        appointment_id = item.appointment.id
        current = await self.repository.get_appointment(appointment_id)
        if current is None or current.is_terminal or not current.interval.overlaps(plan.window):
            return CascadeStep(appointment_id, CascadeStepStatus.SKIPPED, error="already resolved")
        if decision is None:
            return CascadeStep(appointment_id, CascadeStepStatus.SKIPPED, error="no decision")

        reason = plan.leave.reason or "Practitioner unavailable"
        try:
            if decision.action == CascadeAction.CANCEL:
                cancelled = await self.booking_service.cancel(
                    appointment_id, reason=f"Emergency: {reason}", actor=actor, notify=False
                )
                await safe_dispatch(self.notifier, build_notification(
                    cancelled, NotificationKind.CANCELLED, {"reason": reason, "leave_id": plan.leave.id}
                ))
                return CascadeStep(appointment_id, CascadeStepStatus.CANCELLED)

            original, replacement = await self._reschedule_to_first_free(
                appointment_id, self._candidate_alternatives(item, decision), f"Emergency: {reason}", actor
            )
            await safe_dispatch(self.notifier, build_notification(
                replacement,
                NotificationKind.RESCHEDULED,
                {"previous_appointment_id": original.id, "previous_start": original.start.isoformat(), "leave_id": plan.leave.id},
            ))
            return CascadeStep(appointment_id, CascadeStepStatus.RESCHEDULED, replacement_id=replacement.id)

        except Exception as e:
            logger.error(f"Cascade step failed for appointment {appointment_id}: {e}", exc_info=True)
            return CascadeStep(appointment_id, CascadeStepStatus.FAILED, error=str(e))

    async def _reschedule_to_first_free(self, appointment_id, candidates, reason, actor):
        """Try candidates in order; a candidate taken since planning falls through to the next."""
        last_error: Optional[RetryableSchedulingError] = None
        for candidate in candidates:
            try:
                return await self.booking_service.reschedule(RescheduleAppointment(
                    appointment_id=appointment_id,
                    new_start=candidate.start,
                    new_practitioner_id=candidate.practitioner_id,
                    reason=reason,
                    actor=actor,
                ), notify=False)
            except RetryableSchedulingError as e:
                last_error = e
        if last_error is not None:
            raise last_error
        raise ConflictError(f"No alternative slot available for appointment {appointment_id}")

    def _candidate_alternatives(self, item: AffectedAppointment, decision: CascadeDecision) -> List[AlternativeSlot]:
        if decision.new_start is None:
            return list(item.alternatives)

        practitioner_id = decision.new_practitioner_id or item.appointment.practitioner_id
        for alternative in item.alternatives:
            if alternative.start == decision.new_start and alternative.practitioner_id == practitioner_id:
                return [alternative]
        # Caller picked a time outside the proposals; booking re-validates it
        return [AlternativeSlot(
            practitioner_id=practitioner_id,
            start=decision.new_start,
            end=decision.new_start + timedelta(minutes=item.appointment.duration_minutes),
            same_practitioner=practitioner_id == item.appointment.practitioner_id,
        )]

    async def _affected(self, leave: Leave, window: Interval) -> List[Appointment]:
        appointments = await self.repository.find_appointments(
            AppointmentFilter.active_for_practitioner(leave.practitioner_id, window)
        )
        live = [a for a in appointments if not a.is_terminal]
        return sorted(live, key=lambda a: (a.start, a.id))

    async def _leave_window(self, leave_id: str):
        leave = await self.repository.get_leave(leave_id)
        if leave is None:
            raise NotFoundError("Leave", leave_id)
        practitioner = await self.resolver.get_practitioner(leave.practitioner_id)
        return leave, leave.window(practitioner.tz)

    async def _existing_emergency_leave(self, practitioner_id: str, window: Interval, tz) -> Optional[Leave]:
        start_date = window.start.astimezone(tz).date()
        end_date = window.end.astimezone(tz).date()
        leaves = await self.repository.list_leaves(
            practitioner_id, start_date, end_date, statuses=[LeaveStatus.EMERGENCY]
        )
        for leave in leaves:
            if leave.window(tz) == window:
                return leave
        return None
