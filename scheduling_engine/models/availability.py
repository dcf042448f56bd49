"""
Pydantic models for practitioner availability configuration.

Models:
- Practitioner: identity, timezone and offered appointment types
- WorkingHoursEntry / WorkingHoursTemplate: recurring weekly hours
- SpecialDate: one-off override for a calendar date
- BreakTime: recurring or date-scoped subtraction (e.g. lunch)
- Leave: date range removed from availability once approved
- Holiday: organization-wide closed date
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from ..constants import BLOCKING_LEAVE_STATUSES, LeaveStatus
from ..intervals import Interval, local_datetime


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Practitioner(BaseModel):
    id: str
    name: Optional[str] = None
    timezone: str = "UTC"
    is_active: bool = True
    appointment_type_ids: List[str] = Field(default_factory=list)

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo("UTC")


class WorkingHoursEntry(BaseModel):
    """One weekday's hours. day_of_week follows date.weekday(): 0 = Monday."""

    day_of_week: int = Field(..., ge=0, le=6)
    start_time: time
    end_time: time
    updated_at: Optional[datetime] = None

    @property
    def is_well_formed(self) -> bool:
        return self.end_time > self.start_time


class WorkingHoursTemplate(BaseModel):
    practitioner_id: str
    entries: List[WorkingHoursEntry] = Field(default_factory=list)

    def entries_for(self, day_of_week: int) -> List[WorkingHoursEntry]:
        return [entry for entry in self.entries if entry.day_of_week == day_of_week]


class SpecialDate(BaseModel):
    """Override for one date; replaces the weekly template entirely."""

    id: str = Field(default_factory=new_id)
    practitioner_id: str
    day: date
    is_available: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None


class BreakTime(BaseModel):
    """
    Time subtracted from otherwise-open hours.

    Recurring when day_of_week is set, date-scoped when specific_date is set.
    effective_from / effective_to bound a recurring break.
    """

    id: str = Field(default_factory=new_id)
    practitioner_id: str
    title: str = "Break"
    start_time: time
    end_time: time
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    specific_date: Optional[date] = None
    is_active: bool = True
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None

    def applies_on(self, day: date) -> bool:
        if not self.is_active:
            return False
        if self.specific_date is not None:
            return self.specific_date == day
        if self.day_of_week is None or self.day_of_week != day.weekday():
            return False
        if self.effective_from and day < self.effective_from:
            return False
        if self.effective_to and day > self.effective_to:
            return False
        return True


class Leave(BaseModel):
    """
    Practitioner time off over [start_date, end_date] (inclusive dates).

    start_time applies on start_date and end_time on end_date for partial-day
    leave; without them the leave covers whole days.
    """

    id: str = Field(default_factory=new_id)
    practitioner_id: str
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    status: LeaveStatus = LeaveStatus.PENDING
    leave_type: str = "vacation"
    reason: Optional[str] = None
    requested_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def removes_availability(self) -> bool:
        return self.status in BLOCKING_LEAVE_STATUSES

    def window(self, tz) -> Interval:
        """The leave as a continuous interval in the practitioner's zone."""
        start = local_datetime(self.start_date, self.start_time or time.min, tz)
        if self.end_time is not None:
            end = local_datetime(self.end_date, self.end_time, tz)
        else:
            end = local_datetime(self.end_date + timedelta(days=1), time.min, tz)
        return Interval(start=start, end=end)

    @classmethod
    def from_window(cls, practitioner_id: str, window: Interval, tz, **kwargs) -> "Leave":
        """Build a leave covering exactly the given window."""
        start = window.start.astimezone(tz)
        end = window.end.astimezone(tz)
        return cls(
            practitioner_id=practitioner_id,
            start_date=start.date(),
            start_time=start.time().replace(tzinfo=None),
            end_date=end.date(),
            end_time=end.time().replace(tzinfo=None),
            **kwargs,
        )


class Holiday(BaseModel):
    day: date
    name: str
    country: Optional[str] = None
