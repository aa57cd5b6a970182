"""
Slot search and capacity booking.

Combines recurrence expansion with the timezone adapter to turn an
owner's slots into concrete bookable windows (absolute UTC instants),
finds the next window that fits a duration, and reserves slot capacity
with an optimistic compare-and-swap on the slot's version stamp.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from booking_engine.config import SchedulingConfig, settings
from booking_engine.errors import (
    Ok,
    Result,
    business_rule,
    internal_error,
    not_found,
    validation_error,
    version_conflict,
)
from booking_engine.logging_context import get_request_logger
from booking_engine.repository.base import (
    AvailabilityRepository,
    EntityNotFoundError,
    RepositoryError,
    VersionConflictError,
)
from booking_engine.schemas.availability_schema import (
    AvailabilityInstance,
    AvailabilitySlot,
    CandidateSlot,
    SlotBookingReceipt,
    SlotStatus,
)
from booking_engine.scheduling.conflicts import TimeInterval, reserved_intervals
from booking_engine.scheduling.recurrence import expand_many, occurs_on
from booking_engine.scheduling.timezone import TimezoneAdapter, TimezoneError
from booking_engine.utils import ensure_utc, utc_now

logger = get_request_logger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class BookabilityCheck:
    """Outcome of is_bookable with the reason a slot was refused."""
    bookable: bool
    reason: Optional[str] = None
    available_slots: int = 0


def is_bookable(slot: AvailabilitySlot, now: datetime, requested_start: datetime) -> BookabilityCheck:
    """Check a slot's status and lead-time window for a requested start.

    Capacity is not checked here; callers report it as FULLY_BOOKED.
    """
    available = slot.remaining_capacity
    if slot.is_blocked:
        return BookabilityCheck(False, "This time slot is blocked", available)
    if slot.status == SlotStatus.INACTIVE:
        return BookabilityCheck(False, "This time slot is not active", available)

    lead_time = ensure_utc(requested_start) - ensure_utc(now)
    if lead_time < timedelta(hours=slot.min_advance_hours):
        return BookabilityCheck(
            False,
            f"Bookings require at least {slot.min_advance_hours} hours advance notice",
            available,
        )
    if lead_time > timedelta(days=slot.max_advance_days):
        return BookabilityCheck(
            False,
            f"Bookings cannot be made more than {slot.max_advance_days} days in advance",
            available,
        )
    return BookabilityCheck(True, None, available)


class SlotSearchEngine:
    """Finds and reserves bookable windows across an owner's slots."""

    def __init__(
        self,
        repository: AvailabilityRepository,
        timezone_adapter: Optional[TimezoneAdapter] = None,
        clock: Clock = utc_now,
        config: Optional[SchedulingConfig] = None,
    ) -> None:
        self._repo = repository
        self._tz = timezone_adapter or TimezoneAdapter()
        self._clock = clock
        self._config = config or settings.scheduling

    # --- helpers ---

    def _instance_interval(self, instance: AvailabilityInstance) -> TimeInterval:
        start = self._tz.combine_date_time_in_timezone(
            instance.date, instance.start_time, instance.time_zone
        )
        end = self._tz.combine_date_time_in_timezone(
            instance.date, instance.end_time, instance.time_zone
        )
        return TimeInterval(start, end)

    def _owner_slots(
        self, owner_id: str, category: Optional[str]
    ) -> tuple[list[AvailabilitySlot], list[AvailabilitySlot]]:
        """Split the owner's slots into (bookable active slots, blocked slots)."""
        slots = self._repo.list_slots(owner_id)
        blocked = [s for s in slots if s.is_blocked]
        active = [
            s for s in slots
            if not s.is_blocked
            and s.status == SlotStatus.ACTIVE
            and (category is None or s.category == category.strip())
        ]
        return active, blocked

    def _candidate(
        self,
        slot: AvailabilitySlot,
        instance: AvailabilityInstance,
        window: TimeInterval,
        now: datetime,
    ) -> CandidateSlot:
        return CandidateSlot(
            start=window.start,
            end=window.end,
            duration_minutes=self._tz.calculate_duration(window.start, window.end),
            availability_id=instance.parent_slot_id,
            owner_id=instance.owner_id,
            date=instance.date,
            time_zone=instance.time_zone,
            title=instance.title,
            category=instance.category,
            hourly_rate=instance.hourly_rate,
            currency=instance.currency,
            max_bookings=instance.max_bookings,
            current_bookings=instance.current_bookings,
            is_bookable=is_bookable(slot, now, window.start).bookable,
        )

    # --- operations ---

    def find_available_slots(
        self,
        owner_id: str,
        range_start: date,
        range_end: date,
        duration_minutes: int,
        buffer_minutes: int = 0,
        category: Optional[str] = None,
    ) -> Result[list[CandidateSlot]]:
        """Partition the owner's instances in range into duration-long candidates.

        Each instance is converted to absolute instants in its own zone.
        Full instances and windows overlapping blocked time are dropped.
        The result is ordered by absolute start.
        """
        if duration_minutes <= 0:
            return validation_error("INVALID_DURATION", "Duration must be positive", "duration")
        if buffer_minutes < 0:
            return validation_error("INVALID_BUFFER", "Buffer cannot be negative", "buffer")
        if range_start > range_end:
            return validation_error(
                "INVALID_DATE_RANGE", "Range start must not be after range end", "range_end"
            )

        try:
            active, blocked = self._owner_slots(owner_id, category)
        except RepositoryError:
            logger.exception("Failed to load slots for owner %s", owner_id)
            return internal_error("Failed to load availability", "STORAGE_ERROR")

        by_id = {s.id: s for s in active}
        busy = reserved_intervals(blocked, range_start, range_end, self._tz)
        now = self._clock()
        candidates: list[CandidateSlot] = []
        for instance in expand_many(active, range_start, range_end, self._config.recurrence_max_iterations):
            if not instance.has_capacity:
                continue
            interval = self._instance_interval(instance)
            windows = self._tz.generate_time_slots(
                interval.start, interval.end, duration_minutes, busy, buffer_minutes
            )
            slot = by_id[instance.parent_slot_id]
            candidates.extend(self._candidate(slot, instance, w, now) for w in windows)

        candidates.sort(key=lambda c: (c.start, c.availability_id))
        logger.info(
            "Slot search for %s (%s..%s, %d min): %d candidate(s)",
            owner_id, range_start, range_end, duration_minutes, len(candidates),
        )
        return Ok(candidates)

    def get_next_available_slot(
        self,
        owner_id: str,
        from_instant: datetime,
        duration_minutes: int,
        category: Optional[str] = None,
    ) -> Result[CandidateSlot]:
        """Earliest instance starting at or after from_instant that fits the duration."""
        if duration_minutes <= 0:
            return validation_error("INVALID_DURATION", "Duration must be positive", "duration")

        try:
            active, blocked = self._owner_slots(owner_id, category)
        except RepositoryError:
            logger.exception("Failed to load slots for owner %s", owner_id)
            return internal_error("Failed to load availability", "STORAGE_ERROR")
        if not active:
            return not_found("NO_AVAILABILITY", "No active availability found for this user")

        from_instant = ensure_utc(from_instant)
        # widen by a day each side so zones ahead of or behind UTC are covered
        range_start = from_instant.date() - timedelta(days=1)
        range_end = from_instant.date() + timedelta(days=self._config.next_slot_search_days)
        window_end = from_instant + timedelta(days=self._config.next_slot_search_days)
        by_id = {s.id: s for s in active}
        busy = reserved_intervals(blocked, range_start, range_end, self._tz)
        now = self._clock()

        best: Optional[CandidateSlot] = None
        for instance in expand_many(active, range_start, range_end, self._config.recurrence_max_iterations):
            if not instance.has_capacity:
                continue
            interval = self._instance_interval(instance)
            if interval.start < from_instant or interval.start > window_end:
                continue
            windows = self._tz.generate_time_slots(
                interval.start, interval.end, duration_minutes, busy, 0
            )
            if not windows:
                continue
            candidate = self._candidate(by_id[instance.parent_slot_id], instance, windows[0], now)
            if best is None or candidate.start < best.start:
                best = candidate

        if best is None:
            return not_found(
                "NO_SLOTS_AVAILABLE",
                f"No available slots found within {self._config.next_slot_search_days} days",
            )
        return Ok(best)

    def book_time_slot(
        self,
        slot_id: str,
        requested_start: datetime,
        requested_end: datetime,
        booked_by: str,
        notes: str = "",
    ) -> Result[SlotBookingReceipt]:
        """Reserve one unit of a slot's capacity for the requested window.

        Uses compare-and-swap on the slot version, so concurrent calls can
        never push current_bookings past max_bookings. A lost race fails
        with the retryable VERSION_CONFLICT.
        """
        try:
            slot = self._repo.get_slot(slot_id)
        except RepositoryError:
            logger.exception("Failed to load slot %s", slot_id)
            return internal_error("Failed to load availability", "STORAGE_ERROR")
        if slot is None:
            return not_found("AVAILABILITY_NOT_FOUND", "Availability slot not found")

        requested_start = ensure_utc(requested_start)
        requested_end = ensure_utc(requested_end)
        try:
            duration = self._tz.calculate_duration(requested_start, requested_end)
        except TimezoneError as exc:
            return validation_error(exc.code, str(exc), "end")

        if slot.current_bookings >= slot.max_bookings:
            return business_rule("FULLY_BOOKED", "This time slot is fully booked")

        check = is_bookable(slot, self._clock(), requested_start)
        if not check.bookable:
            return business_rule("NOT_BOOKABLE", check.reason or "Slot is not bookable")

        outside = self._outside_slot_window(slot, requested_start, requested_end)
        if outside:
            return business_rule("NOT_BOOKABLE", outside)

        current_bookings = slot.current_bookings + 1
        now = self._clock()
        updated = slot.model_copy(update={
            "current_bookings": current_bookings,
            "status": SlotStatus.BOOKED if current_bookings >= slot.max_bookings else slot.status,
            "updated_at": now,
        })
        try:
            stored = self._repo.update_slot(updated, expected_version=slot.version)
        except VersionConflictError:
            logger.info("Lost booking race on slot %s (version %d)", slot_id, slot.version)
            return version_conflict("Slot", slot_id)
        except EntityNotFoundError:
            return not_found("AVAILABILITY_NOT_FOUND", "Availability slot not found")
        except RepositoryError:
            logger.exception("Failed to reserve slot %s", slot_id)
            return internal_error("Failed to book time slot", "STORAGE_ERROR")

        receipt = SlotBookingReceipt(
            id=f"slotbk_{uuid.uuid4().hex[:12]}",
            availability_id=stored.id,
            owner_id=stored.owner_id,
            booked_by=booked_by,
            start=requested_start,
            end=requested_end,
            duration_minutes=duration,
            time_zone=stored.time_zone,
            notes=notes,
            created_at=now,
            remaining_capacity=stored.remaining_capacity,
        )
        logger.info(
            "Slot booked: %s by %s at %s (%d/%d)",
            stored.id, booked_by, requested_start.isoformat(),
            stored.current_bookings, stored.max_bookings,
        )
        return Ok(receipt)

    def _outside_slot_window(
        self, slot: AvailabilitySlot, start: datetime, end: datetime
    ) -> Optional[str]:
        """Reason the window falls outside the slot's occurrences, or None."""
        local_start = self._tz.to_local(start, slot.time_zone)
        day = local_start.date()
        if not occurs_on(slot, day):
            return f"Slot has no availability on {day.isoformat()}"
        window_start = self._tz.combine_date_time_in_timezone(day, slot.start_time, slot.time_zone)
        window_end = self._tz.combine_date_time_in_timezone(day, slot.end_time, slot.time_zone)
        if start < window_start or end > window_end:
            return (
                f"Requested time is outside the slot window "
                f"{slot.start_time}-{slot.end_time} {slot.time_zone}"
            )
        return None
