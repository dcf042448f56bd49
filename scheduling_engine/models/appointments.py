"""
Appointment, slot and lock models.

Models:
- Appointment: a single booked instance, owned by the state machine
- TransitionRecord: audit trail entry stored on the appointment
- Slot / AlternativeSlot: candidate bookable intervals
- SlotLock: ephemeral hold on a (practitioner, interval) pair
- AppointmentFilter: typed query filter for the repository
- AppointmentTypeSettings / SettingsCatalog: duration and buffer lookup
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import AwareDatetime, BaseModel, Field

from ..constants import RELEASED_STATUSES, TERMINAL_STATUSES, AppointmentStatus
from ..intervals import Interval
from .availability import new_id, utcnow


class TransitionRecord(BaseModel):
    from_status: Optional[AppointmentStatus] = None
    to_status: AppointmentStatus
    actor: Optional[str] = None
    reason: Optional[str] = None
    at: datetime


class Appointment(BaseModel):
    """
    A booked appointment instance.

    Only the state machine creates or mutates appointments; every other
    component reads them. version increases on every write and drives the
    repository's compare-and-set update.
    """

    id: str = Field(default_factory=new_id)
    practitioner_id: str
    patient_id: str
    appointment_type_id: str
    start: AwareDatetime
    duration_minutes: int = Field(..., gt=0)
    status: AppointmentStatus = AppointmentStatus.SCHEDULED

    confirmed_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    no_show_at: Optional[datetime] = None

    series_id: Optional[str] = None
    occurrence_index: Optional[int] = None
    detached_from_series: bool = False

    cancellation_reason: Optional[str] = None
    reschedule_reason: Optional[str] = None
    rescheduled_from_id: Optional[str] = None
    rescheduled_to_id: Optional[str] = None
    notes: Optional[str] = None

    history: List[TransitionRecord] = Field(default_factory=list)
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def interval(self) -> Interval:
        return Interval(start=self.start, end=self.end)

    @property
    def holds_interval(self) -> bool:
        """Cancelled and no-show appointments no longer block their interval."""
        return self.status not in RELEASED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Slot(BaseModel):
    """Candidate bookable interval of exactly the requested duration."""

    practitioner_id: str
    start: AwareDatetime
    end: AwareDatetime

    @property
    def interval(self) -> Interval:
        return Interval(start=self.start, end=self.end)


class AlternativeSlot(Slot):
    """Slot offered to an appointment displaced by a cascade."""

    same_practitioner: bool = True


class SlotLock(BaseModel):
    lock_id: str
    practitioner_id: str
    start: AwareDatetime
    end: AwareDatetime
    expires_at: AwareDatetime

    @property
    def interval(self) -> Interval:
        return Interval(start=self.start, end=self.end)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def matches(self, practitioner_id: str, start: datetime, end: datetime) -> bool:
        return (
            self.practitioner_id == practitioner_id
            and self.start == start
            and self.end == end
        )


class AppointmentFilter(BaseModel):
    """
    Typed query filter passed to the repository.

    Every set field narrows the result; overlaps selects appointments whose
    [start, end) intersects the given interval.
    """

    practitioner_id: Optional[str] = None
    patient_id: Optional[str] = None
    series_id: Optional[str] = None
    statuses: Optional[List[AppointmentStatus]] = None
    exclude_statuses: Optional[List[AppointmentStatus]] = None
    overlaps: Optional[Interval] = None
    exclude_ids: List[str] = Field(default_factory=list)

    @classmethod
    def active_for_practitioner(cls, practitioner_id: str, window: Interval, **kwargs) -> "AppointmentFilter":
        return cls(
            practitioner_id=practitioner_id,
            exclude_statuses=sorted(RELEASED_STATUSES),
            overlaps=window,
            **kwargs,
        )

    @classmethod
    def active_for_patient(cls, patient_id: str, window: Interval, **kwargs) -> "AppointmentFilter":
        return cls(
            patient_id=patient_id,
            exclude_statuses=sorted(RELEASED_STATUSES),
            overlaps=window,
            **kwargs,
        )

    def matches(self, appointment: Appointment) -> bool:
        if self.practitioner_id is not None and appointment.practitioner_id != self.practitioner_id:
            return False
        if self.patient_id is not None and appointment.patient_id != self.patient_id:
            return False
        if self.series_id is not None and appointment.series_id != self.series_id:
            return False
        if self.statuses is not None and appointment.status not in self.statuses:
            return False
        if self.exclude_statuses and appointment.status in self.exclude_statuses:
            return False
        if appointment.id in self.exclude_ids:
            return False
        if self.overlaps is not None and not appointment.interval.overlaps(self.overlaps):
            return False
        return True


class AppointmentTypeSettings(BaseModel):
    duration_minutes: int = Field(30, gt=0)
    buffer_minutes: int = Field(0, ge=0, le=120)


class SettingsCatalog(BaseModel):
    """
    Duration and buffer lookup keyed explicitly by practitioner.

    Resolution order: practitioner override for the type, then the type
    default, then the caller's fallback (the policy-wide default).
    """

    type_defaults: Dict[str, AppointmentTypeSettings] = Field(default_factory=dict)
    practitioner_overrides: Dict[str, Dict[str, AppointmentTypeSettings]] = Field(default_factory=dict)

    def resolve(
        self,
        practitioner_id: str,
        appointment_type_id: Optional[str],
        fallback: AppointmentTypeSettings,
    ) -> AppointmentTypeSettings:
        if appointment_type_id is None:
            return fallback
        overrides = self.practitioner_overrides.get(practitioner_id, {})
        if appointment_type_id in overrides:
            return overrides[appointment_type_id]
        return self.type_defaults.get(appointment_type_id, fallback)

    def max_buffer_minutes(self, fallback: AppointmentTypeSettings) -> int:
        """Largest buffer any appointment can carry; bounds conflict lookups."""
        buffers = [fallback.buffer_minutes]
        buffers.extend(s.buffer_minutes for s in self.type_defaults.values())
        for per_practitioner in self.practitioner_overrides.values():
            buffers.extend(s.buffer_minutes for s in per_practitioner.values())
        return max(buffers)
