"""
Time-overlap conflict detection.

Intervals are half-open: ``[start, end)``. Two intervals that only touch
at an endpoint (09:00-10:00 and 10:00-11:00) never conflict.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Optional, Protocol

from booking_engine.schemas.availability_schema import AvailabilitySlot, ScheduleType
from booking_engine.scheduling.recurrence import occurrence_dates, occurs_on
from booking_engine.utils import time_to_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeInterval:
    """A half-open interval over any ordered endpoint type (minutes, datetimes)."""
    start: Any
    end: Any

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Interval end {self.end!r} is before start {self.start!r}")

    def overlaps(self, other: "TimeInterval") -> bool:
        return overlaps(self, other)


class TimedWindow(Protocol):
    """Anything with wall-clock start/end times and an optional date."""
    start_time: str
    end_time: str
    start_date: Optional[date]
    schedule_type: ScheduleType


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """Half-open overlap test; symmetric in its arguments."""
    return a.start < b.end and b.start < a.end


def wall_clock_interval(window: TimedWindow) -> TimeInterval:
    """Minutes-past-midnight interval of a slot's daily window."""
    return TimeInterval(time_to_minutes(window.start_time), time_to_minutes(window.end_time))


def slots_overlap(a: TimedWindow, b: TimedWindow) -> bool:
    """Compare two slots' wall-clock windows, ignoring dates."""
    return overlaps(wall_clock_interval(a), wall_clock_interval(b))


def _share_a_day(candidate: TimedWindow, existing: AvailabilitySlot) -> bool:
    """Decide whether two windows can fall on the same day.

    Dated one-off windows on different days never meet. A dated one-off
    window meets a recurring slot only on one of its occurrences. Two
    recurring slots are compared by time alone, without expansion.
    """
    candidate_recurring = candidate.schedule_type == ScheduleType.RECURRING
    existing_recurring = existing.schedule_type == ScheduleType.RECURRING

    if candidate_recurring and existing_recurring:
        return True
    if candidate.start_date is None or existing.start_date is None:
        return True
    if not candidate_recurring and not existing_recurring:
        return candidate.start_date == existing.start_date
    if existing_recurring:
        return occurs_on(existing, candidate.start_date)
    return occurs_on(candidate, existing.start_date)


def find_conflicts(
    candidate: TimedWindow,
    existing: Iterable[AvailabilitySlot],
    exclude_id: Optional[str] = None,
) -> list[AvailabilitySlot]:
    """Return the existing slots whose windows overlap the candidate's.

    ``existing`` should already be restricted to the candidate's owner.
    The candidate itself (matched by id) and ``exclude_id`` are skipped.
    """
    candidate_id = getattr(candidate, "id", None)
    conflicts = []
    for slot in existing:
        if slot.id in (exclude_id, candidate_id):
            continue
        if not _share_a_day(candidate, slot):
            continue
        if slots_overlap(candidate, slot):
            conflicts.append(slot)
    if conflicts:
        logger.debug(
            "Window %s-%s conflicts with %d slot(s): %s",
            candidate.start_time, candidate.end_time, len(conflicts),
            [c.id for c in conflicts],
        )
    return conflicts


def reserved_intervals(
    blocked_slots: Iterable[AvailabilitySlot],
    range_start: date,
    range_end: date,
    adapter,
) -> list[TimeInterval]:
    """Absolute UTC intervals reserved by blocked slots within a date range."""
    intervals: list[TimeInterval] = []
    for slot in blocked_slots:
        for day in occurrence_dates(slot, range_start, range_end):
            start = adapter.combine_date_time_in_timezone(day, slot.start_time, slot.time_zone)
            end = adapter.combine_date_time_in_timezone(day, slot.end_time, slot.time_zone)
            intervals.append(TimeInterval(start, end))
    intervals.sort(key=lambda i: i.start)
    return intervals
