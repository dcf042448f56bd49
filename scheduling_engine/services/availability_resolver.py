"""
Availability Resolver

Computes the open intervals of a practitioner on a calendar date:

1. Weekly template entry for the weekday (none -> closed)
2. A SpecialDate replaces the template result entirely
3. An organization holiday closes the day unless a SpecialDate reopens it
4. Active breaks applicable to the date are subtracted
5. Approved and emergency leave windows are subtracted

The result is coalesced, sorted and minimal. Malformed configuration
(end <= start) is ignored with a warning and never raised.
"""

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from ..constants import BLOCKING_LEAVE_STATUSES
from ..exceptions import NotFoundError
from ..intervals import Interval, clip, day_bounds, local_datetime, merge_intervals, subtract_all
from ..models import Practitioner, WorkingHoursEntry, WorkingHoursTemplate
from ..repositories import SchedulingRepository
from .holiday_calendar import HolidayCalendar

logger = logging.getLogger(__name__)


def pick_template_entry(template: WorkingHoursTemplate, day_of_week: int) -> Optional[WorkingHoursEntry]:
    """
    Select the effective entry for a weekday.

    Conflicting entries are resolved last-write-wins by updated_at; entries
    without updated_at lose to stamped ones and later list positions win ties.
    """
    entries = template.entries_for(day_of_week)
    if not entries:
        return None
    if len(entries) == 1:
        return entries[0]

    def rank(pair):
        position, entry = pair
        stamp = entry.updated_at.timestamp() if entry.updated_at else 0.0
        return (entry.updated_at is not None, stamp, position)

    ranked = sorted(enumerate(entries), key=rank)
    winner = ranked[-1][1]
    discarded = [
        f"{e.start_time.isoformat()}-{e.end_time.isoformat()}"
        for _, e in ranked[:-1]
    ]
    logger.warning(
        "availability.template_conflict",
        extra={
            "practitioner_id": template.practitioner_id,
            "day_of_week": day_of_week,
            "kept": f"{winner.start_time.isoformat()}-{winner.end_time.isoformat()}",
            "discarded": discarded,
        },
    )
    return winner


class AvailabilityResolver:
    """Resolves open intervals from templates, overrides, breaks and leave."""

    def __init__(self, repository: SchedulingRepository, holiday_calendar: Optional[HolidayCalendar] = None):
        self.repository = repository
        self.holiday_calendar = holiday_calendar

    async def get_practitioner(self, practitioner_id: str) -> Practitioner:
        practitioner = await self.repository.get_practitioner(practitioner_id)
        if practitioner is None:
            raise NotFoundError("Practitioner", practitioner_id)
        return practitioner

    async def resolve_day(self, practitioner_id: str, day: date) -> List[Interval]:
        """
        Open intervals for one date.

        Raises:
            NotFoundError: unknown practitioner
        """
        practitioner = await self.get_practitioner(practitioner_id)
        return await self._resolve_for(practitioner, day)

    async def resolve_range(self, practitioner_id: str, start_date: date, end_date: date) -> Dict[date, List[Interval]]:
        """Open intervals for every open date in [start_date, end_date], ordered by date."""
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date")
        practitioner = await self.get_practitioner(practitioner_id)

        resolved: Dict[date, List[Interval]] = {}
        day = start_date
        while day <= end_date:
            intervals = await self._resolve_for(practitioner, day)
            if intervals:
                resolved[day] = intervals
            day += timedelta(days=1)
        return resolved

    async def is_day_closed(self, practitioner_id: str, day: date) -> bool:
        return not await self.resolve_day(practitioner_id, day)

    async def is_open(self, practitioner_id: str, interval: Interval) -> bool:
        """True when the whole interval lies inside one open interval."""
        practitioner = await self.get_practitioner(practitioner_id)
        tz = practitioner.tz
        first = interval.start.astimezone(tz).date()
        last = interval.end.astimezone(tz).date()

        open_intervals: List[Interval] = []
        day = first
        while day <= last:
            open_intervals.extend(await self._resolve_for(practitioner, day))
            day += timedelta(days=1)
        return any(candidate.contains(interval) for candidate in merge_intervals(open_intervals))

    async def _resolve_for(self, practitioner: Practitioner, day: date) -> List[Interval]:
        if not practitioner.is_active:
            return []

        tz = practitioner.tz
        base = await self._base_intervals(practitioner, day)
        if not base:
            return []

        blocks: List[Interval] = []

        for break_time in await self.repository.list_breaks(practitioner.id):
            if not break_time.applies_on(day):
                continue
            if break_time.end_time <= break_time.start_time:
                logger.warning(
                    f"Ignoring malformed break {break_time.id} for practitioner {practitioner.id}: "
                    f"{break_time.start_time}-{break_time.end_time}"
                )
                continue
            blocks.append(Interval(
                start=local_datetime(day, break_time.start_time, tz),
                end=local_datetime(day, break_time.end_time, tz),
            ))

        leaves = await self.repository.list_leaves(
            practitioner.id, day, day, statuses=BLOCKING_LEAVE_STATUSES
        )
        bounds = day_bounds(day, tz)
        for leave in leaves:
            try:
                window = leave.window(tz)
            except ValueError:
                logger.warning(f"Ignoring malformed leave {leave.id} for practitioner {practitioner.id}")
                continue
            blocks.extend(clip([window], bounds))

        return subtract_all(base, blocks)

    async def _base_intervals(self, practitioner: Practitioner, day: date) -> List[Interval]:
        tz = practitioner.tz

        special = await self.repository.get_special_date(practitioner.id, day)
        if special is not None:
            if not special.is_available:
                return []
            if special.start_time is None or special.end_time is None or special.end_time <= special.start_time:
                logger.warning(
                    f"Special date {special.id} for practitioner {practitioner.id} on {day} "
                    f"has malformed hours; treating the day as closed"
                )
                return []
            return [Interval(
                start=local_datetime(day, special.start_time, tz),
                end=local_datetime(day, special.end_time, tz),
            )]

        holiday = self.holiday_calendar.holiday_on(day) if self.holiday_calendar is not None else None
        if holiday is not None:
            logger.debug(f"{day} is {holiday.name}; practitioner {practitioner.id} closed")
            return []

        template = await self.repository.get_working_hours(practitioner.id)
        if template is None:
            return []
        entry = pick_template_entry(template, day.weekday())
        if entry is None:
            return []
        if not entry.is_well_formed:
            logger.warning(
                f"Working hours for practitioner {practitioner.id} on weekday {entry.day_of_week} "
                f"are malformed ({entry.start_time}-{entry.end_time}); treating the day as closed"
            )
            return []

        return [Interval(
            start=local_datetime(day, entry.start_time, tz),
            end=local_datetime(day, entry.end_time, tz),
        )]
