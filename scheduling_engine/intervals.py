"""
Interval algebra for availability and conflict computations.

All intervals are half-open [start, end). Two intervals overlap iff
a.start < b.end and a.end > b.start; touching intervals do not overlap.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, List

from pydantic import AwareDatetime, BaseModel, ConfigDict, model_validator


class Interval(BaseModel):
    """Half-open time interval [start, end)."""

    model_config = ConfigDict(frozen=True)

    start: AwareDatetime
    end: AwareDatetime

    @model_validator(mode="after")
    def _check_order(self) -> "Interval":
        if self.end <= self.start:
            raise ValueError(f"Interval end {self.end} must be after start {self.start}")
        return self

    @classmethod
    def of(cls, start: datetime, minutes: int) -> "Interval":
        return cls(start=start, end=start + timedelta(minutes=minutes))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and self.end > other.start

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def expand(self, before: timedelta = timedelta(0), after: timedelta = timedelta(0)) -> "Interval":
        return Interval(start=self.start - before, end=self.end + after)


def local_datetime(day: date, at: time, tz: tzinfo) -> datetime:
    """Combine a calendar date and wall-clock time in the given zone."""
    return datetime.combine(day, at).replace(tzinfo=tz)


def day_bounds(day: date, tz: tzinfo) -> Interval:
    """The whole local day as an interval (handles DST-length days)."""
    return Interval(
        start=local_datetime(day, time.min, tz),
        end=local_datetime(day + timedelta(days=1), time.min, tz),
    )


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Coalesce overlapping or adjacent intervals.

    Args:
        intervals: intervals in any order

    Returns:
        Sorted, minimal, non-overlapping intervals
    """
    ordered = sorted(intervals, key=lambda i: (i.start, i.end))
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        # Overlapping or touching: extend the last interval
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Interval(start=last.start, end=current.end)
        else:
            merged.append(current)
    return merged


def subtract_interval(interval: Interval, block: Interval) -> List[Interval]:
    """
    Remove a block from an interval.

    Returns:
        0, 1 or 2 remaining intervals
    """
    if not interval.overlaps(block):
        return [interval]

    remaining = []
    if block.start > interval.start:
        remaining.append(Interval(start=interval.start, end=block.start))
    if block.end < interval.end:
        remaining.append(Interval(start=block.end, end=interval.end))
    return remaining


def subtract_all(intervals: Iterable[Interval], blocks: Iterable[Interval]) -> List[Interval]:
    """Remove every block from every interval and coalesce the result."""
    result = list(intervals)
    for block in blocks:
        next_result = []
        for interval in result:
            next_result.extend(subtract_interval(interval, block))
        result = next_result
    return merge_intervals(result)


def clip(intervals: Iterable[Interval], bounds: Interval) -> List[Interval]:
    """Restrict intervals to the given bounds."""
    clipped = []
    for interval in intervals:
        if not interval.overlaps(bounds):
            continue
        clipped.append(Interval(
            start=max(interval.start, bounds.start),
            end=min(interval.end, bounds.end),
        ))
    return clipped
