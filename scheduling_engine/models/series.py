"""
Recurring series models.

A RecurringSeries owns its RecurrenceRule and the outcome of every anchor
date it generated (booked, unscheduled or skipped).
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field

from ..constants import MonthlyAnchor, OccurrenceOutcome, RecurrenceFrequency, SeriesStatus
from ..exceptions import InvalidRecurrenceRuleError
from .availability import new_id, utcnow


class RecurrenceRule(BaseModel):
    """
    Recurrence definition.

    weekly:  day_of_week every `interval` weeks (defaults to start_date's weekday)
    monthly: monthly_anchor is mandatory; either day_of_month, or
             week_of_month (1-5, -1 = last) + weekday, every `interval` months
    custom:  every interval_days days
    """

    frequency: RecurrenceFrequency
    interval: int = Field(1, ge=1)
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    monthly_anchor: Optional[MonthlyAnchor] = None
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    week_of_month: Optional[int] = None
    weekday: Optional[int] = Field(None, ge=0, le=6)
    interval_days: Optional[int] = None
    time_of_day: time
    duration_minutes: int = Field(..., ge=5)
    start_date: date
    end_date: Optional[date] = None
    occurrence_count: Optional[int] = None

    def validate_rule(self) -> "RecurrenceRule":
        """Raise InvalidRecurrenceRuleError for malformed combinations."""
        if self.end_date is None and self.occurrence_count is None:
            raise InvalidRecurrenceRuleError("Rule needs an end_date or an occurrence_count")
        if self.occurrence_count is not None and self.occurrence_count < 1:
            raise InvalidRecurrenceRuleError("occurrence_count must be at least 1")
        if self.end_date is not None and self.end_date < self.start_date:
            raise InvalidRecurrenceRuleError("end_date must not be before start_date")

        if self.frequency == RecurrenceFrequency.CUSTOM:
            if not self.interval_days or self.interval_days < 1:
                raise InvalidRecurrenceRuleError("custom frequency requires interval_days >= 1")
        elif self.frequency == RecurrenceFrequency.MONTHLY:
            if self.monthly_anchor is None:
                raise InvalidRecurrenceRuleError("monthly frequency requires an explicit monthly_anchor")
            if self.monthly_anchor == MonthlyAnchor.DAY_OF_MONTH and self.day_of_month is None:
                raise InvalidRecurrenceRuleError("day_of_month anchor requires day_of_month")
            if self.monthly_anchor == MonthlyAnchor.NTH_WEEKDAY:
                if self.weekday is None or self.week_of_month not in (1, 2, 3, 4, 5, -1):
                    raise InvalidRecurrenceRuleError(
                        "nth_weekday anchor requires weekday and week_of_month in 1..5 or -1"
                    )
        return self


class SeriesOccurrence(BaseModel):
    anchor_date: date
    outcome: OccurrenceOutcome
    appointment_id: Optional[str] = None
    booked_date: Optional[date] = None
    reason: Optional[str] = None


class RecurringSeries(BaseModel):
    id: str = Field(default_factory=new_id)
    practitioner_id: str
    patient_id: str
    appointment_type_id: str
    rule: RecurrenceRule
    skip_holidays: bool = True
    auto_reschedule: bool = False
    reschedule_window_days: int = Field(3, ge=0, le=14)
    exception_dates: List[date] = Field(default_factory=list)
    status: SeriesStatus = SeriesStatus.ACTIVE
    appointment_ids: List[str] = Field(default_factory=list)
    occurrences: List[SeriesOccurrence] = Field(default_factory=list)
    notes: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
