"""
Conflict Detector

Two independent half-open overlap checks against current persisted state:

- Practitioner conflict: the candidate overlaps the space a live appointment
  of the same practitioner blocks, that is the appointment plus its
  appointment-type buffer after it, widened by the symmetric practitioner
  buffer. Always blocking.
- Patient conflict: live appointment of the same patient, with any
  practitioner, inside the wider symmetric patient window. Advisory unless
  the policy makes it blocking.

The slot generator hides exactly the space blocked_interval() returns, and
booking holds cover hold_interval(), so listing, locking and the final
check agree on what is free.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, List, Optional

from ..config import SchedulingPolicy
from ..exceptions import ConflictError
from ..intervals import Interval
from ..models import Appointment, AppointmentFilter, AppointmentTypeSettings, SettingsCatalog
from ..repositories import SchedulingRepository

logger = logging.getLogger(__name__)


def blocked_interval(interval: Interval, buffer_minutes: int, practitioner_buffer_minutes: int) -> Interval:
    """Space an existing appointment denies to other bookings of its practitioner."""
    margin = timedelta(minutes=practitioner_buffer_minutes)
    return interval.expand(before=margin, after=timedelta(minutes=buffer_minutes) + margin)


def hold_interval(interval: Interval, buffer_minutes: int, practitioner_buffer_minutes: int) -> Interval:
    """
    Interval a slot lock covers for a candidate booking.

    Whenever one candidate would fall inside the blocked_interval() of the
    other once committed, their hold intervals overlap, so the lock store
    serialises them.
    """
    return interval.expand(after=timedelta(minutes=buffer_minutes + practitioner_buffer_minutes))


@dataclass
class ConflictReport:
    """Outcome of a conflict evaluation."""
    practitioner_conflicts: List[Appointment] = field(default_factory=list)
    patient_conflicts: List[Appointment] = field(default_factory=list)
    patient_conflicts_block: bool = False

    @property
    def is_blocking(self) -> bool:
        if self.practitioner_conflicts:
            return True
        return self.patient_conflicts_block and bool(self.patient_conflicts)

    @property
    def advisories(self) -> List[str]:
        """Human-readable notes for non-blocking patient conflicts."""
        if self.patient_conflicts_block:
            return []
        return [
            f"Patient already has appointment {a.id} with {a.practitioner_id} at {a.start.isoformat()}"
            for a in self.patient_conflicts
        ]

    @property
    def conflicting_ids(self) -> List[str]:
        ids = [a.id for a in self.practitioner_conflicts]
        if self.patient_conflicts_block:
            ids.extend(a.id for a in self.patient_conflicts if a.id not in ids)
        return ids


class ConflictDetector:

    def __init__(self, repository: SchedulingRepository, policy: Optional[SchedulingPolicy] = None):
        self.repository = repository
        self.policy = policy or SchedulingPolicy()

    async def resolve_settings(self, practitioner_id: str, appointment_type_id: Optional[str]) -> AppointmentTypeSettings:
        catalog = await self.repository.get_settings_catalog()
        return catalog.resolve(practitioner_id, appointment_type_id, self.policy.fallback_settings)

    def blocked_by(self, appointment: Appointment, catalog: SettingsCatalog) -> Interval:
        settings = catalog.resolve(
            appointment.practitioner_id, appointment.appointment_type_id, self.policy.fallback_settings
        )
        return blocked_interval(
            appointment.interval, settings.buffer_minutes, self.policy.practitioner_buffer_minutes
        )

    async def hold_for(self, practitioner_id: str, appointment_type_id: Optional[str], interval: Interval) -> Interval:
        settings = await self.resolve_settings(practitioner_id, appointment_type_id)
        return hold_interval(interval, settings.buffer_minutes, self.policy.practitioner_buffer_minutes)

    async def check_practitioner(
        self,
        practitioner_id: str,
        interval: Interval,
        exclude_ids: Iterable[str] = (),
    ) -> List[Appointment]:
        catalog = await self.repository.get_settings_catalog()
        margin = timedelta(minutes=self.policy.practitioner_buffer_minutes)
        # Earlier appointments reach forward by their own type buffer
        reach = margin + timedelta(minutes=catalog.max_buffer_minutes(self.policy.fallback_settings))
        window = interval.expand(before=reach, after=margin)
        nearby = await self.repository.find_appointments(
            AppointmentFilter.active_for_practitioner(practitioner_id, window, exclude_ids=list(exclude_ids))
        )
        return [a for a in nearby if interval.overlaps(self.blocked_by(a, catalog))]

    async def check_patient(
        self,
        patient_id: str,
        interval: Interval,
        exclude_ids: Iterable[str] = (),
    ) -> List[Appointment]:
        margin = timedelta(minutes=self.policy.patient_conflict_window_minutes)
        window = interval.expand(before=margin, after=margin)
        return await self.repository.find_appointments(
            AppointmentFilter.active_for_patient(patient_id, window, exclude_ids=list(exclude_ids))
        )

    async def evaluate(
        self,
        practitioner_id: str,
        patient_id: Optional[str],
        interval: Interval,
        exclude_ids: Iterable[str] = (),
    ) -> ConflictReport:
        excluded = list(exclude_ids)
        report = ConflictReport(patient_conflicts_block=self.policy.patient_conflict_blocking)
        report.practitioner_conflicts = await self.check_practitioner(practitioner_id, interval, excluded)
        if patient_id:
            report.patient_conflicts = await self.check_patient(patient_id, interval, excluded)
        return report

    async def assert_bookable(
        self,
        practitioner_id: str,
        patient_id: Optional[str],
        interval: Interval,
        exclude_ids: Iterable[str] = (),
    ) -> ConflictReport:
        """
        Evaluate and raise when the interval cannot be booked.

        Raises:
            ConflictError: blocking practitioner (or policy-blocking patient) conflict

        Returns:
            The report, possibly carrying advisory patient conflicts
        """
        report = await self.evaluate(practitioner_id, patient_id, interval, exclude_ids)
        if report.is_blocking:
            logger.info(
                "conflict.detected",
                extra={
                    "practitioner_id": practitioner_id,
                    "interval_start": interval.start.isoformat(),
                    "conflicting_ids": report.conflicting_ids,
                },
            )
            raise ConflictError(
                f"Interval {interval.start.isoformat()} - {interval.end.isoformat()} "
                f"is not available for practitioner {practitioner_id}",
                report.conflicting_ids,
            )
        if report.patient_conflicts:
            logger.info(
                f"Advisory patient conflict for practitioner {practitioner_id} at {interval.start.isoformat()}: "
                f"{len(report.patient_conflicts)} nearby appointment(s)"
            )
        return report
