"""
Recurring Series Expander

Generates anchor dates from a RecurrenceRule and books each one through the
booking service. Closed days are skipped when skip_holidays is set; skipped
anchors do not consume an occurrence, so a counted series still ends with
the requested number of booked occurrences unless the date bound runs out
first (PartialSeriesWarning).

Scopes for updates and cancellations:
- this: one occurrence, detached from later series-wide edits
- this_and_future: the target occurrence and everything after it
- all: every future occurrence; the past is never touched
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional, Set

from ..clock import Clock, SystemClock
from ..config import SchedulingPolicy
from ..constants import (
    AuditEventType,
    MonthlyAnchor,
    OccurrenceOutcome,
    RecurrenceFrequency,
    SeriesStatus,
    UpdateScope,
)
from ..exceptions import (
    InvalidRecurrenceRuleError,
    NotFoundError,
    PartialSeriesWarning,
    RetryableSchedulingError,
    SchedulingError,
)
from ..intervals import local_datetime
from ..models import (
    Appointment,
    AppointmentFilter,
    AuditEvent,
    CreateAppointment,
    CreateSeries,
    RecurrenceRule,
    RecurringSeries,
    RescheduleAppointment,
    SeriesCancellation,
    SeriesOccurrence,
    SeriesUpdate,
    UpdateAppointmentDetails,
)
from ..repositories import SchedulingRepository
from .appointment_state_machine import AppointmentStateMachine
from .audit_sink import AuditSink, safe_emit
from .availability_resolver import AvailabilityResolver
from .booking_service import BookingService

logger = logging.getLogger(__name__)


def add_months(year: int, month: int, count: int):
    total = year * 12 + (month - 1) + count
    return total // 12, total % 12 + 1


def nth_weekday_of_month(year: int, month: int, weekday: int, week_of_month: int) -> Optional[date]:
    """The nth weekday of a month (-1 = last), or None when the month has no such day."""
    last_day = calendar.monthrange(year, month)[1]
    if week_of_month == -1:
        last = date(year, month, last_day)
        return last - timedelta(days=(last.weekday() - weekday) % 7)
    first = date(year, month, 1)
    day = 1 + (weekday - first.weekday()) % 7 + 7 * (week_of_month - 1)
    if day > last_day:
        return None
    return date(year, month, day)


def anchor_dates(rule: RecurrenceRule) -> Iterator[date]:
    """
    Successive anchor dates on or after rule.start_date.

    Bounded by rule.end_date when set; otherwise unbounded and the caller
    limits how many anchors it consumes.
    """
    rule.validate_rule()
    start = rule.start_date
    end = rule.end_date

    if rule.frequency == RecurrenceFrequency.WEEKLY:
        weekday = rule.day_of_week if rule.day_of_week is not None else start.weekday()
        current = start + timedelta(days=(weekday - start.weekday()) % 7)
        step = timedelta(weeks=rule.interval)
        while end is None or current <= end:
            yield current
            current += step

    elif rule.frequency == RecurrenceFrequency.CUSTOM:
        current = start
        step = timedelta(days=rule.interval_days)
        while end is None or current <= end:
            yield current
            current += step

    elif rule.frequency == RecurrenceFrequency.MONTHLY:
        months = 0
        while True:
            year, month = add_months(start.year, start.month, months)
            months += rule.interval
            if end is not None and date(year, month, 1) > end:
                return
            if rule.monthly_anchor == MonthlyAnchor.DAY_OF_MONTH:
                # Short months clamp to their last day
                day = min(rule.day_of_month, calendar.monthrange(year, month)[1])
                candidate = date(year, month, day)
            else:
                candidate = nth_weekday_of_month(year, month, rule.weekday, rule.week_of_month)
                if candidate is None:
                    continue
            if candidate < start:
                continue
            if end is not None and candidate > end:
                return
            yield candidate


@dataclass
class SeriesExpansionResult:
    series: RecurringSeries
    booked: List[Appointment] = field(default_factory=list)
    cancelled: List[Appointment] = field(default_factory=list)
    occurrences: List[SeriesOccurrence] = field(default_factory=list)
    warning: Optional[PartialSeriesWarning] = None

    @property
    def unscheduled(self) -> List[SeriesOccurrence]:
        return [o for o in self.occurrences if o.outcome == OccurrenceOutcome.UNSCHEDULED]

    @property
    def skipped(self) -> List[SeriesOccurrence]:
        return [o for o in self.occurrences if o.outcome == OccurrenceOutcome.SKIPPED]


class RecurringSeriesExpander:

    def __init__(
        self,
        resolver: AvailabilityResolver,
        booking_service: BookingService,
        state_machine: AppointmentStateMachine,
        repository: SchedulingRepository,
        clock: Optional[Clock] = None,
        policy: Optional[SchedulingPolicy] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.resolver = resolver
        self.booking_service = booking_service
        self.state_machine = state_machine
        self.repository = repository
        self.clock = clock or SystemClock()
        self.policy = policy or SchedulingPolicy()
        self.audit_sink = audit_sink

    def anchor_dates(self, rule: RecurrenceRule) -> Iterator[date]:
        return anchor_dates(rule)

    async def get_series(self, series_id: str) -> RecurringSeries:
        series = await self.repository.get_series(series_id)
        if series is None:
            raise NotFoundError("Series", series_id)
        return series

    async def create_series(self, command: CreateSeries) -> SeriesExpansionResult:
        """
        Validate the rule, persist the series and book its occurrences.

        Raises:
            InvalidRecurrenceRuleError: malformed rule
            NotFoundError: unknown practitioner
        """
        command.rule.validate_rule()
        await self.resolver.get_practitioner(command.practitioner_id)

        now = self.clock.now()
        series = await self.repository.create_series(RecurringSeries(
            practitioner_id=command.practitioner_id,
            patient_id=command.patient_id,
            appointment_type_id=command.appointment_type_id,
            rule=command.rule,
            skip_holidays=command.skip_holidays,
            auto_reschedule=command.auto_reschedule,
            reschedule_window_days=command.reschedule_window_days,
            exception_dates=command.exception_dates,
            notes=command.notes,
            created_at=now,
            updated_at=now,
        ))
        logger.info(f"Created series {series.id} ({series.rule.frequency.value}) for patient {series.patient_id}")
        return await self.expand(series, actor=command.actor)

    async def expand(
        self,
        series: RecurringSeries,
        from_date: Optional[date] = None,
        target_count: Optional[int] = None,
        reserved_anchors: Optional[Set[date]] = None,
        actor: Optional[str] = None,
    ) -> SeriesExpansionResult:
        """
        Book occurrences from from_date onward and persist the outcome.

        Args:
            series: series to expand (its occurrence list is extended)
            from_date: first anchor to consider (defaults to the later of the
                rule start and today)
            target_count: booked occurrences wanted (defaults to the rule count)
            reserved_anchors: anchors already held by retained occurrences
        """
        rule = series.rule
        practitioner = await self.resolver.get_practitioner(series.practitioner_id)
        first_anchor = from_date or max(rule.start_date, self.clock.today())
        target = target_count if target_count is not None else rule.occurrence_count
        reserved = reserved_anchors or set()
        exceptions = set(series.exception_dates)

        horizon = None
        if rule.occurrence_count is not None:
            horizon = rule.occurrence_count * self.policy.series_anchor_factor + self.policy.series_anchor_slack

        result = SeriesExpansionResult(series=series)
        booked_count = 0
        examined = 0

        for ordinal, anchor in enumerate(anchor_dates(rule)):
            if target is not None and booked_count >= target:
                break
            if anchor < first_anchor or anchor in reserved:
                continue
            if horizon is not None and examined >= horizon:
                break
            examined += 1

            if anchor in exceptions:
                result.occurrences.append(SeriesOccurrence(
                    anchor_date=anchor, outcome=OccurrenceOutcome.SKIPPED, reason="exception date"
                ))
                continue

            closed = await self.resolver.is_day_closed(series.practitioner_id, anchor)
            if closed and series.skip_holidays:
                result.occurrences.append(SeriesOccurrence(
                    anchor_date=anchor, outcome=OccurrenceOutcome.SKIPPED, reason="day closed"
                ))
                continue

            occurrence = await self._book_occurrence(series, practitioner.tz, anchor, ordinal, closed, exceptions, actor)
            result.occurrences.append(occurrence)
            if occurrence.outcome == OccurrenceOutcome.BOOKED:
                booked_count += 1
                result.booked.append(await self.state_machine.get(occurrence.appointment_id))

        if target is not None and booked_count < target:
            result.warning = PartialSeriesWarning(series.id, target, booked_count)
            logger.warning(
                "series.partial",
                extra={"series_id": series.id, "requested": target, "booked": booked_count},
            )

        series = series.model_copy(update={
            "occurrences": sorted(series.occurrences + result.occurrences, key=lambda o: o.anchor_date),
            "appointment_ids": series.appointment_ids + [a.id for a in result.booked],
        })
        result.series = await self._save_series(series)

        await self._audit(AuditEventType.SERIES_EXPANDED, result.series, actor, details={
            "booked": len(result.booked),
            "unscheduled": len(result.unscheduled),
            "skipped": len(result.skipped),
            "partial": result.warning is not None,
        })
        return result

    async def _book_occurrence(self, series, tz, anchor, ordinal, closed, exceptions, actor) -> SeriesOccurrence:
        rule = series.rule
        candidates = [] if closed else [anchor]
        if series.auto_reschedule:
            # Same time of day on each following day of the window
            for offset in range(1, series.reschedule_window_days + 1):
                day = anchor + timedelta(days=offset)
                if day not in exceptions:
                    candidates.append(day)

        last_reason = "day closed" if closed else None
        for day in candidates:
            if day != anchor and await self.resolver.is_day_closed(series.practitioner_id, day):
                continue
            try:
                booking = await self.booking_service.book(CreateAppointment(
                    practitioner_id=series.practitioner_id,
                    patient_id=series.patient_id,
                    appointment_type_id=series.appointment_type_id,
                    start=local_datetime(day, rule.time_of_day, tz),
                    duration_minutes=rule.duration_minutes,
                    series_id=series.id,
                    occurrence_index=ordinal,
                    notes=series.notes,
                    actor=actor,
                ), notify=False)
            except RetryableSchedulingError as e:
                last_reason = e.message
                continue
            return SeriesOccurrence(
                anchor_date=anchor,
                outcome=OccurrenceOutcome.BOOKED,
                appointment_id=booking.appointment.id,
                booked_date=day,
                reason=None if day == anchor else f"auto-rescheduled from {anchor.isoformat()}",
            )

        return SeriesOccurrence(
            anchor_date=anchor,
            outcome=OccurrenceOutcome.UNSCHEDULED,
            reason=last_reason or "no bookable time",
        )

    async def update_series(self, command: SeriesUpdate) -> SeriesExpansionResult:
        """
        Apply changes to one occurrence, this and future, or the whole series.

        Raises:
            NotFoundError: unknown series or occurrence
            InvalidRecurrenceRuleError: changes produce a malformed rule
        """
        series = await self.get_series(command.series_id)
        changes = command.changes

        if command.scope == UpdateScope.THIS:
            return await self._update_single(series, command)

        rule_updates = {}
        if changes.time_of_day is not None:
            rule_updates["time_of_day"] = changes.time_of_day
        if changes.duration_minutes is not None:
            rule_updates["duration_minutes"] = changes.duration_minutes
        if changes.day_of_week is not None:
            if series.rule.frequency != RecurrenceFrequency.WEEKLY:
                raise InvalidRecurrenceRuleError("day_of_week can only change on weekly series")
            rule_updates["day_of_week"] = changes.day_of_week
        new_rule = series.rule.model_copy(update=rule_updates).validate_rule()

        series_updates = {"rule": new_rule}
        if changes.appointment_type_id is not None:
            series_updates["appointment_type_id"] = changes.appointment_type_id
        if changes.notes is not None:
            series_updates["notes"] = changes.notes

        if command.scope == UpdateScope.THIS_AND_FUTURE:
            target = await self._series_appointment(series, command.appointment_id)
            occurrence = self._occurrence_for(series, target.id)
            from_date = max(occurrence.anchor_date if occurrence else target.start.date(), self.clock.today())
        else:
            from_date = max(series.rule.start_date, self.clock.today())

        return await self._regenerate(series, series_updates, from_date, command.actor)

    async def _regenerate(self, series, series_updates, from_date, actor) -> SeriesExpansionResult:
        appointments = {a.id: a for a in await self._series_appointments(series)}
        now = self.clock.now()

        cancelled: List[Appointment] = []
        retained: List[SeriesOccurrence] = []
        for occurrence in series.occurrences:
            appointment = self._current_appointment(appointments, occurrence.appointment_id)
            if occurrence.anchor_date < from_date:
                retained.append(occurrence)
                continue
            if appointment is not None and appointment.detached_from_series:
                retained.append(occurrence)
                continue
            if appointment is not None and not appointment.is_terminal and appointment.start >= now:
                cancelled.append(await self.booking_service.cancel(
                    appointment.id, reason="Series regenerated", actor=actor, notify=False
                ))
            elif appointment is not None:
                # Started or finished occurrences stay as history
                retained.append(occurrence)

        reserved = {o.anchor_date for o in retained if o.anchor_date >= from_date}
        kept_booked = sum(1 for o in retained if o.outcome == OccurrenceOutcome.BOOKED)

        updated = series.model_copy(update={**series_updates, "occurrences": retained})
        updated = await self._save_series(updated)

        target = None
        if updated.rule.occurrence_count is not None:
            target = max(updated.rule.occurrence_count - kept_booked, 0)

        result = await self.expand(
            updated,
            from_date=from_date,
            target_count=target,
            reserved_anchors=reserved,
            actor=actor,
        )
        result.cancelled = cancelled
        logger.info(
            f"Regenerated series {series.id} from {from_date.isoformat()}: "
            f"cancelled {len(cancelled)}, booked {len(result.booked)}"
        )
        return result

    async def _update_single(self, series: RecurringSeries, command: SeriesUpdate) -> SeriesExpansionResult:
        changes = command.changes
        target = await self._series_appointment(series, command.appointment_id)
        result = SeriesExpansionResult(series=series)

        moves = changes.time_of_day is not None or changes.day_of_week is not None
        if moves:
            practitioner = await self.resolver.get_practitioner(series.practitioner_id)
            local_start = target.start.astimezone(practitioner.tz)
            day = local_start.date()
            if changes.day_of_week is not None:
                day = day + timedelta(days=changes.day_of_week - day.weekday())
            new_start = local_datetime(
                day, changes.time_of_day or local_start.time().replace(tzinfo=None), practitioner.tz
            )
            original, replacement = await self.booking_service.reschedule(RescheduleAppointment(
                appointment_id=target.id,
                new_start=new_start,
                new_duration_minutes=changes.duration_minutes,
                reason="Series occurrence edited",
                actor=command.actor,
            ))
            result.cancelled.append(original)
            target = replacement
            series = self._replace_appointment(series, original.id, replacement.id, day)

        # Duration already travelled with the reschedule when the occurrence moved
        duration = None if moves else changes.duration_minutes
        if duration is not None or changes.appointment_type_id is not None or changes.notes is not None:
            target = await self.booking_service.update_details(UpdateAppointmentDetails(
                appointment_id=target.id,
                appointment_type_id=changes.appointment_type_id,
                duration_minutes=duration,
                notes=changes.notes,
                actor=command.actor,
            ))

        target = await self.state_machine.detach_from_series(target.id, actor=command.actor)
        result.booked.append(target)
        result.series = await self._save_series(series)
        return result

    async def cancel_series(self, command: SeriesCancellation) -> SeriesExpansionResult:
        """Cancel one occurrence, this and future, or every future occurrence."""
        series = await self.get_series(command.series_id)
        appointments = await self._series_appointments(series)
        now = self.clock.now()
        reason = command.reason or "Series cancelled"

        if command.scope == UpdateScope.THIS:
            target = await self._series_appointment(series, command.appointment_id)
            to_cancel = [target] if not target.is_terminal else []
        elif command.scope == UpdateScope.THIS_AND_FUTURE:
            target = await self._series_appointment(series, command.appointment_id)
            to_cancel = [
                a for a in appointments
                if a.start >= target.start and not a.is_terminal
            ]
        else:
            to_cancel = [a for a in appointments if a.start >= now and not a.is_terminal]

        result = SeriesExpansionResult(series=series)
        for appointment in to_cancel:
            result.cancelled.append(await self.booking_service.cancel(
                appointment.id, reason=reason, actor=command.actor
            ))

        cancelled_ids = {a.id for a in result.cancelled}
        remaining_live = [
            a for a in appointments
            if a.id not in cancelled_ids and a.holds_interval
        ]
        if command.scope == UpdateScope.ALL or not remaining_live:
            status = SeriesStatus.CANCELLED
        else:
            status = SeriesStatus.PARTIALLY_CANCELLED

        result.series = await self._save_series(series.model_copy(update={"status": status}))
        await self._audit(AuditEventType.SERIES_CANCELLED, result.series, command.actor, details={
            "scope": command.scope.value,
            "cancelled": len(result.cancelled),
            "status": status.value,
        })
        return result

    async def _series_appointments(self, series: RecurringSeries) -> List[Appointment]:
        return await self.repository.find_appointments(AppointmentFilter(series_id=series.id))

    async def _series_appointment(self, series: RecurringSeries, appointment_id: Optional[str]) -> Appointment:
        if not appointment_id:
            raise SchedulingError("appointment_id is required for this scope", {"series_id": series.id})
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None or appointment.series_id != series.id:
            raise NotFoundError("Series occurrence", appointment_id)
        return appointment

    @staticmethod
    def _current_appointment(appointments: Dict[str, Appointment], appointment_id: Optional[str]) -> Optional[Appointment]:
        """Follow reschedule links to the appointment that now holds the occurrence."""
        appointment = appointments.get(appointment_id) if appointment_id else None
        seen = set()
        while appointment is not None and appointment.rescheduled_to_id and appointment.id not in seen:
            seen.add(appointment.id)
            successor = appointments.get(appointment.rescheduled_to_id)
            if successor is None:
                break
            appointment = successor
        return appointment

    def _occurrence_for(self, series: RecurringSeries, appointment_id: str) -> Optional[SeriesOccurrence]:
        for occurrence in series.occurrences:
            if occurrence.appointment_id == appointment_id:
                return occurrence
        return None

    def _replace_appointment(self, series: RecurringSeries, old_id: str, new_id: str, booked_date: date) -> RecurringSeries:
        occurrences = [
            o.model_copy(update={"appointment_id": new_id, "booked_date": booked_date})
            if o.appointment_id == old_id else o
            for o in series.occurrences
        ]
        appointment_ids = [new_id if a == old_id else a for a in series.appointment_ids]
        return series.model_copy(update={"occurrences": occurrences, "appointment_ids": appointment_ids})

    async def _save_series(self, series: RecurringSeries) -> RecurringSeries:
        updated = series.model_copy(update={
            "version": series.version + 1,
            "updated_at": self.clock.now(),
        })
        return await self.repository.update_series(updated, expected_version=series.version)

    async def _audit(self, event_type, series: RecurringSeries, actor, details: Optional[Dict] = None):
        await safe_emit(self.audit_sink, AuditEvent(
            event_type=event_type,
            entity_id=series.id,
            practitioner_id=series.practitioner_id,
            patient_id=series.patient_id,
            actor=actor,
            details=details or {},
            occurred_at=self.clock.now(),
        ))
