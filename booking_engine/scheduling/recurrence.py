"""
Recurrence expansion: turns a slot into its concrete dated occurrences.

Expansion is a pure function of the slot and the requested range, so it
can be restarted or re-run at any time. Patterns are evaluated with
``dateutil.rrule`` and every expansion stops after
``RECURRENCE_MAX_ITERATIONS`` occurrences.

Usage:
    instances = expand(slot, date(2024, 3, 1), date(2024, 3, 31))
    # -> AvailabilityInstance objects ordered by (date, start_time)
"""

import logging
from datetime import date, datetime, time
from itertools import islice
from typing import Iterable, Iterator, Optional

from dateutil.rrule import DAILY, MO, MONTHLY, WEEKLY, rrule

from booking_engine.config import settings
from booking_engine.schemas.availability_schema import (
    AvailabilityFields,
    AvailabilityInstance,
    AvailabilitySlot,
    RecurrencePattern,
    RecurrenceRule,
    ScheduleType,
)

logger = logging.getLogger(__name__)

_FREQUENCIES = {
    RecurrencePattern.DAILY: DAILY,
    RecurrencePattern.WEEKLY: WEEKLY,
    RecurrencePattern.MONTHLY: MONTHLY,
}


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time())


def _build_rrule(rule: RecurrenceRule, anchor: date, last: date) -> rrule:
    """Translate a recurrence rule into an rrule anchored on the slot's start date.

    Weekly intervals count weeks starting on Monday. Monthly rules skip
    months that lack the requested day (e.g. the 31st in April).
    """
    extra = {}
    if rule.pattern == RecurrencePattern.WEEKLY:
        extra["byweekday"] = rule.days_of_week
    elif rule.pattern == RecurrencePattern.MONTHLY:
        extra["bymonthday"] = rule.day_of_month
    return rrule(
        _FREQUENCIES[rule.pattern],
        dtstart=_midnight(anchor),
        interval=rule.interval,
        wkst=MO,
        until=_midnight(last),
        **extra,
    )


def _occurrences_from(recurrence: rrule, first: date, cap: int) -> Iterator[date]:
    for occurrence in islice(recurrence.xafter(_midnight(first), inc=True), cap):
        yield occurrence.date()


def occurrence_dates(
    slot: AvailabilityFields,
    range_start: date,
    range_end: date,
    max_iterations: Optional[int] = None,
) -> Iterator[date]:
    """Yield the dates within [range_start, range_end] on which the slot occurs.

    Ignores whether the slot is blocked; callers decide what an occurrence
    means (bookable window or reserved time).
    """
    if range_start > range_end:
        return
    cap = max_iterations or settings.scheduling.recurrence_max_iterations

    if slot.schedule_type != ScheduleType.RECURRING:
        if slot.start_date is None:
            if not settings.scheduling.allow_undated_slots:
                return
            every_day = rrule(DAILY, dtstart=_midnight(range_start), until=_midnight(range_end))
            yield from _occurrences_from(every_day, range_start, cap)
            return
        if range_start <= slot.start_date <= range_end:
            yield slot.start_date
        return

    anchor = slot.start_date
    first = max(anchor, range_start)
    last = min(slot.end_date or range_end, range_end)
    if first > last:
        return
    yield from _occurrences_from(_build_rrule(slot.recurrence_rule, anchor, last), first, cap)


def occurs_on(slot: AvailabilityFields, day: date) -> bool:
    """Check whether the slot has an occurrence on a given date."""
    return next(occurrence_dates(slot, day, day), None) is not None


def _instance(slot: AvailabilitySlot, day: date) -> AvailabilityInstance:
    return AvailabilityInstance(
        date=day,
        start_time=slot.start_time,
        end_time=slot.end_time,
        parent_slot_id=slot.id,
        owner_id=slot.owner_id,
        time_zone=slot.time_zone,
        title=slot.title,
        category=slot.category,
        tags=slot.tags,
        hourly_rate=slot.hourly_rate,
        currency=slot.currency,
        max_bookings=slot.max_bookings,
        current_bookings=slot.current_bookings,
        buffer_minutes=slot.buffer_minutes,
        is_recurring_instance=slot.is_recurring,
    )


def expand(
    slot: AvailabilitySlot,
    range_start: date,
    range_end: date,
    max_iterations: Optional[int] = None,
) -> list[AvailabilityInstance]:
    """Expand a slot into bookable instances inside [range_start, range_end].

    Blocked slots never produce bookable instances. The result is ordered
    by (date, start_time).
    """
    if slot.is_blocked:
        return []
    instances = [
        _instance(slot, day)
        for day in occurrence_dates(slot, range_start, range_end, max_iterations)
    ]
    logger.debug(
        "Expanded slot %s into %d instance(s) for %s..%s",
        slot.id, len(instances), range_start, range_end,
    )
    return instances


def expand_many(
    slots: Iterable[AvailabilitySlot],
    range_start: date,
    range_end: date,
    max_iterations: Optional[int] = None,
) -> list[AvailabilityInstance]:
    """Expand several slots, merged into one (date, start_time) ordering."""
    instances: list[AvailabilityInstance] = []
    for slot in slots:
        instances.extend(expand(slot, range_start, range_end, max_iterations))
    instances.sort(key=lambda i: (i.date, i.start_time, i.parent_slot_id))
    return instances
