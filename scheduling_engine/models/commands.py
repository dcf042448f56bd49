"""
Command objects.

Every change to an appointment or series is expressed as one of these
validated commands and applied atomically; nothing is a free-form field merge.
"""

from datetime import date, time
from typing import Dict, List, Optional

from pydantic import AwareDatetime, BaseModel, Field

from ..constants import AppointmentStatus, CascadeAction, UpdateScope
from ..intervals import Interval
from .series import RecurrenceRule


class CreateAppointment(BaseModel):
    practitioner_id: str
    patient_id: str
    appointment_type_id: str
    start: AwareDatetime
    duration_minutes: int = Field(..., gt=0)
    series_id: Optional[str] = None
    occurrence_index: Optional[int] = None
    rescheduled_from_id: Optional[str] = None
    reschedule_reason: Optional[str] = None
    notes: Optional[str] = None
    actor: Optional[str] = None

    @property
    def interval(self) -> Interval:
        return Interval.of(self.start, self.duration_minutes)


class BookAppointment(CreateAppointment):
    """Booking commit for a slot previously held under lock_id."""

    lock_id: str


class TransitionAppointment(BaseModel):
    appointment_id: str
    target: AppointmentStatus
    actor: Optional[str] = None
    reason: Optional[str] = None


class UpdateAppointmentDetails(BaseModel):
    appointment_id: str
    appointment_type_id: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = None
    actor: Optional[str] = None


class RescheduleAppointment(BaseModel):
    appointment_id: str
    new_start: AwareDatetime
    new_practitioner_id: Optional[str] = None
    new_duration_minutes: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = None
    actor: Optional[str] = None
    lock_id: Optional[str] = None


class CreateSeries(BaseModel):
    practitioner_id: str
    patient_id: str
    appointment_type_id: str
    rule: RecurrenceRule
    skip_holidays: bool = True
    auto_reschedule: bool = False
    reschedule_window_days: int = Field(3, ge=0, le=14)
    exception_dates: List[date] = Field(default_factory=list)
    notes: Optional[str] = None
    actor: Optional[str] = None


class SeriesChanges(BaseModel):
    """Fields a series update may change."""

    time_of_day: Optional[time] = None
    duration_minutes: Optional[int] = Field(None, ge=5)
    appointment_type_id: Optional[str] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    notes: Optional[str] = None


class SeriesUpdate(BaseModel):
    series_id: str
    scope: UpdateScope
    changes: SeriesChanges
    # Required for THIS and THIS_AND_FUTURE
    appointment_id: Optional[str] = None
    actor: Optional[str] = None


class SeriesCancellation(BaseModel):
    series_id: str
    scope: UpdateScope
    appointment_id: Optional[str] = None
    reason: Optional[str] = None
    actor: Optional[str] = None


class CascadeDecision(BaseModel):
    action: CascadeAction
    # Start of the chosen alternative; None picks the first alternative
    new_start: Optional[AwareDatetime] = None
    new_practitioner_id: Optional[str] = None


CascadeDecisions = Dict[str, CascadeDecision]
