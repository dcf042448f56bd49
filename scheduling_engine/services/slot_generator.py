"""
Slot Generator

Walks open intervals on a fixed stride grid and yields candidate slots of the
requested duration, excluding any slot that overlaps the space a live
appointment blocks (see conflict_detector.blocked_interval), so every listed
slot passes the practitioner conflict check at commit.

generate_slots() is a pure generator over pre-fetched data. SlotSequence
wraps it so iterating again restarts generation from the same inputs.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from ..clock import Clock
from ..config import SchedulingPolicy
from ..intervals import Interval, day_bounds, merge_intervals
from ..models import Appointment, AppointmentFilter, AppointmentTypeSettings, SettingsCatalog, Slot
from ..repositories import SchedulingRepository
from .availability_resolver import AvailabilityResolver
from .conflict_detector import blocked_interval

logger = logging.getLogger(__name__)


def generate_slots(
    open_intervals: Iterable[Interval],
    duration: timedelta,
    busy: Iterable[Interval],
    practitioner_id: str,
    stride: Optional[timedelta] = None,
    not_before: Optional[datetime] = None,
) -> Iterator[Slot]:
    """
    Yield slots in chronological order.

    Args:
        open_intervals: open time for the day(s), any order
        duration: slot length
        busy: occupied intervals, already extended by their buffers
        practitioner_id: stamped on every slot
        stride: grid step inside each open interval (defaults to duration)
        not_before: drop slots starting earlier than this instant

    The busy list is merged once and walked with a moving pointer, so each
    open interval costs O(slots + busy intervals).
    """
    if duration <= timedelta(0):
        raise ValueError("duration must be positive")
    step = stride or duration
    if step <= timedelta(0):
        raise ValueError("stride must be positive")

    blocked = merge_intervals(busy)

    for window in merge_intervals(open_intervals):
        pointer = 0
        start = window.start
        while start + duration <= window.end:
            end = start + duration
            # Skip busy intervals that finish before this slot starts
            while pointer < len(blocked) and blocked[pointer].end <= start:
                pointer += 1
            overlapping = pointer < len(blocked) and blocked[pointer].start < end
            if not overlapping and (not_before is None or start >= not_before):
                yield Slot(practitioner_id=practitioner_id, start=start, end=end)
            start += step


class SlotSequence:
    """Restartable, side-effect free sequence of slots."""

    def __init__(self, factory: Callable[[], Iterator[Slot]]):
        self._factory = factory

    def __iter__(self) -> Iterator[Slot]:
        return self._factory()

    def first(self) -> Optional[Slot]:
        return next(iter(self), None)

    def take(self, limit: int) -> List[Slot]:
        slots = []
        for slot in self:
            if len(slots) >= limit:
                break
            slots.append(slot)
        return slots

    def to_list(self) -> List[Slot]:
        return list(self)


class SlotGenerator:
    """
    Produces slot sequences for a practitioner.

    Existing appointments are fetched once per date through a typed filter;
    the returned SlotSequence then runs purely in memory.
    """

    def __init__(
        self,
        resolver: AvailabilityResolver,
        repository: SchedulingRepository,
        clock: Optional[Clock] = None,
        policy: Optional[SchedulingPolicy] = None,
    ):
        self.resolver = resolver
        self.repository = repository
        self.clock = clock
        self.policy = policy or SchedulingPolicy()

    async def resolve_settings(self, practitioner_id: str, appointment_type_id: Optional[str]) -> AppointmentTypeSettings:
        catalog = await self.repository.get_settings_catalog()
        return catalog.resolve(practitioner_id, appointment_type_id, self.policy.fallback_settings)

    async def slots_for_day(
        self,
        practitioner_id: str,
        day: date,
        appointment_type_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        stride_minutes: Optional[int] = None,
    ) -> SlotSequence:
        return await self.slots_for_range(
            practitioner_id,
            day,
            day,
            appointment_type_id=appointment_type_id,
            duration_minutes=duration_minutes,
            stride_minutes=stride_minutes,
        )

    async def slots_for_range(
        self,
        practitioner_id: str,
        start_date: date,
        end_date: date,
        appointment_type_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        stride_minutes: Optional[int] = None,
        exclude_appointment_ids: Iterable[str] = (),
    ) -> SlotSequence:
        """
        Slots for every open date in [start_date, end_date].

        Raises:
            NotFoundError: unknown practitioner
        """
        practitioner = await self.resolver.get_practitioner(practitioner_id)
        catalog = await self.repository.get_settings_catalog()
        settings = catalog.resolve(practitioner_id, appointment_type_id, self.policy.fallback_settings)

        duration = timedelta(minutes=duration_minutes or settings.duration_minutes)
        stride = timedelta(minutes=stride_minutes) if stride_minutes else None
        not_before = self.clock.now() if self.clock else None
        excluded = list(exclude_appointment_ids)

        open_by_day = await self.resolver.resolve_range(practitioner_id, start_date, end_date)
        margin = timedelta(minutes=self.policy.practitioner_buffer_minutes)
        reach = margin + timedelta(minutes=catalog.max_buffer_minutes(self.policy.fallback_settings))

        per_day: Dict[date, tuple] = {}
        for day, open_intervals in open_by_day.items():
            existing = await self.repository.find_appointments(
                AppointmentFilter.active_for_practitioner(
                    practitioner_id,
                    day_bounds(day, practitioner.tz).expand(before=reach, after=margin),
                    exclude_ids=excluded,
                )
            )
            busy = [self._busy_interval(a, catalog) for a in existing]
            per_day[day] = (open_intervals, busy)

        logger.debug(
            f"Prepared slot generation for {practitioner_id}: {len(per_day)} open days, "
            f"duration {duration}, stride {stride or duration}"
        )

        def factory() -> Iterator[Slot]:
            for day in sorted(per_day):
                open_intervals, busy = per_day[day]
                yield from generate_slots(
                    open_intervals,
                    duration,
                    busy,
                    practitioner_id,
                    stride=stride,
                    not_before=not_before,
                )

        return SlotSequence(factory)

    def _busy_interval(self, appointment: Appointment, catalog: SettingsCatalog) -> Interval:
        settings = catalog.resolve(
            appointment.practitioner_id, appointment.appointment_type_id, self.policy.fallback_settings
        )
        return blocked_interval(
            appointment.interval, settings.buffer_minutes, self.policy.practitioner_buffer_minutes
        )
