"""
Availability management: slot CRUD, listing, conflict checks, statistics
and timezone conversion, plus actor-checked access to slot search.

Owners manage their own slots; admins may act on anyone's. Every
operation returns a Result so callers can branch on the error kind.
"""

import uuid
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

from pydantic import ValidationError

from booking_engine.config import SchedulingConfig, settings
from booking_engine.errors import (
    Ok,
    Result,
    business_rule,
    from_validation_error,
    internal_error,
    not_found,
    parse_command,
    unauthorized,
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
    AvailabilityListing,
    AvailabilityQuery,
    AvailabilitySlot,
    AvailabilityStats,
    CandidateSlot,
    ConflictCheckCommand,
    ConflictReport,
    CreateAvailabilityCommand,
    ScheduleType,
    SlotBookingReceipt,
    SlotStatus,
    TimezoneConversion,
    UpdateAvailabilityCommand,
)
from booking_engine.schemas.common_schema import Actor, Page
from booking_engine.scheduling.conflicts import find_conflicts
from booking_engine.scheduling.recurrence import expand_many
from booking_engine.scheduling.slot_search import SlotSearchEngine
from booking_engine.scheduling.timezone import TimezoneAdapter, TimezoneError
from booking_engine.utils import TIME_FORMAT, utc_now

logger = get_request_logger(__name__)

_FAR_FUTURE = date.max


def _conflict_summary(conflicts: list[AvailabilitySlot]) -> list[dict[str, Any]]:
    return [
        {
            "id": c.id,
            "title": c.title,
            "start_time": c.start_time,
            "end_time": c.end_time,
            "start_date": c.start_date.isoformat() if c.start_date else None,
        }
        for c in conflicts
    ]


def _can_manage(actor: Actor, owner_id: str) -> bool:
    return actor.is_admin or actor.id == owner_id


def _in_date_range(slot: AvailabilitySlot, start: Optional[date], end: Optional[date]) -> bool:
    """Whether a slot is live at some point within [start, end]."""
    if slot.start_date is None:
        return True
    first = slot.start_date
    last = slot.end_date if slot.is_recurring else slot.start_date
    if end is not None and first > end:
        return False
    if start is not None and last is not None and last < start:
        return False
    return True


_SORT_KEYS: dict[str, Callable[[AvailabilitySlot], Any]] = {
    "start_time": lambda s: s.start_time,
    "end_time": lambda s: s.end_time,
    "date": lambda s: s.start_date or _FAR_FUTURE,
    "created_at": lambda s: s.created_at,
}


class AvailabilityService:
    """Owner-facing availability operations."""

    def __init__(
        self,
        repository: AvailabilityRepository,
        search: Optional[SlotSearchEngine] = None,
        timezone_adapter: Optional[TimezoneAdapter] = None,
        clock: Callable[[], datetime] = utc_now,
        config: Optional[SchedulingConfig] = None,
    ) -> None:
        self._repo = repository
        self._tz = timezone_adapter or TimezoneAdapter()
        self._clock = clock
        self._config = config or settings.scheduling
        self._search = search or SlotSearchEngine(repository, self._tz, clock, self._config)

    def _today_in(self, time_zone: str) -> date:
        return self._tz.to_local(self._clock(), time_zone).date()

    def _load_owned(self, actor: Actor, slot_id: str) -> Result[AvailabilitySlot]:
        try:
            slot = self._repo.get_slot(slot_id)
        except RepositoryError:
            logger.exception("Failed to load availability %s", slot_id)
            return internal_error("Failed to load availability", "STORAGE_ERROR")
        if slot is None:
            return not_found("NOT_FOUND", "Availability not found")
        if not _can_manage(actor, slot.owner_id):
            return unauthorized("ACCESS_DENIED", "Access denied")
        return Ok(slot)

    def _list_slots(self, owner_id: Optional[str]) -> Result[list[AvailabilitySlot]]:
        try:
            return Ok(self._repo.list_slots(owner_id))
        except RepositoryError:
            logger.exception("Failed to list availability for %s", owner_id or "all owners")
            return internal_error("Failed to load availability", "STORAGE_ERROR")

    # --- CRUD ---

    def create(self, actor: Actor, command: Any) -> Result[AvailabilitySlot]:
        """Publish a new slot after past-date and conflict checks."""
        parsed = parse_command(CreateAvailabilityCommand, command)
        if not parsed.is_ok:
            return parsed
        cmd: CreateAvailabilityCommand = parsed.value

        owner_id = cmd.owner_id or actor.id
        if not _can_manage(actor, owner_id):
            return unauthorized("ACCESS_DENIED", "Cannot create availability for another user")

        today = self._today_in(cmd.time_zone)
        if cmd.start_date is not None and cmd.start_date < today:
            return validation_error("INVALID_DATE", "Date cannot be in the past", "start_date")
        if cmd.is_recurring and cmd.end_date is not None and cmd.end_date <= today:
            return validation_error(
                "INVALID_DATE", "Recurrence end date must be in the future", "end_date"
            )

        try:
            existing = self._repo.list_slots(owner_id)
            conflicts = find_conflicts(cmd, existing)
            if conflicts:
                return business_rule(
                    "AVAILABILITY_CONFLICT",
                    "Availability conflicts with existing slots",
                    conflicts=_conflict_summary(conflicts),
                )

            now = self._clock()
            slot = AvailabilitySlot(
                id=f"avail_{uuid.uuid4().hex[:12]}",
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
                **cmd.model_dump(exclude={"owner_id"}),
            )
            stored = self._repo.add_slot(slot)
        except ValidationError as exc:
            return from_validation_error(exc)
        except RepositoryError:
            logger.exception("Failed to store availability for %s", owner_id)
            return internal_error("Failed to create availability", "STORAGE_ERROR")

        logger.info(
            "Availability created: %s for %s (%s %s-%s %s)",
            stored.id, owner_id, stored.schedule_type.value,
            stored.start_time, stored.end_time, stored.time_zone,
        )
        return Ok(stored)

    def get(self, actor: Actor, slot_id: str) -> Result[AvailabilitySlot]:
        return self._load_owned(actor, slot_id)

    def update(self, actor: Actor, slot_id: str, command: Any) -> Result[AvailabilitySlot]:
        """Apply a partial update, re-validating the merged slot."""
        parsed = parse_command(UpdateAvailabilityCommand, command)
        if not parsed.is_ok:
            return parsed
        loaded = self._load_owned(actor, slot_id)
        if not loaded.is_ok:
            return loaded
        slot: AvailabilitySlot = loaded.value

        merged = {**slot.model_dump(), **parsed.value.changes(), "updated_at": self._clock()}
        try:
            updated = AvailabilitySlot.model_validate(merged)
        except ValidationError as exc:
            return from_validation_error(exc)

        if updated.status == SlotStatus.BOOKED and updated.remaining_capacity > 0:
            updated = updated.model_copy(update={"status": SlotStatus.ACTIVE})
        elif updated.status == SlotStatus.ACTIVE and updated.remaining_capacity == 0:
            updated = updated.model_copy(update={"status": SlotStatus.BOOKED})

        existing = self._list_slots(slot.owner_id)
        if not existing.is_ok:
            return existing
        conflicts = find_conflicts(updated, existing.value, exclude_id=slot.id)
        if conflicts:
            return business_rule(
                "AVAILABILITY_CONFLICT",
                "Availability conflicts with existing slots",
                conflicts=_conflict_summary(conflicts),
            )

        try:
            stored = self._repo.update_slot(updated, expected_version=slot.version)
        except VersionConflictError:
            return version_conflict("Slot", slot_id)
        except EntityNotFoundError:
            return not_found("NOT_FOUND", "Availability not found")
        except RepositoryError:
            logger.exception("Failed to update availability %s", slot_id)
            return internal_error("Failed to update availability", "STORAGE_ERROR")

        logger.info("Availability updated: %s (version %d)", stored.id, stored.version)
        return Ok(stored)

    def delete(self, actor: Actor, slot_id: str) -> Result[str]:
        loaded = self._load_owned(actor, slot_id)
        if not loaded.is_ok:
            return loaded
        slot: AvailabilitySlot = loaded.value
        if slot.current_bookings > 0:
            return business_rule(
                "HAS_BOOKINGS", "Cannot delete availability with existing bookings"
            )
        try:
            self._repo.delete_slot(slot_id, expected_version=slot.version)
        except VersionConflictError:
            return version_conflict("Slot", slot_id)
        except EntityNotFoundError:
            return not_found("NOT_FOUND", "Availability not found")
        except RepositoryError:
            logger.exception("Failed to delete availability %s", slot_id)
            return internal_error("Failed to delete availability", "STORAGE_ERROR")
        logger.info("Availability deleted: %s", slot_id)
        return Ok(slot_id)

    # --- queries ---

    def list_availability(self, actor: Actor, query: Any = None) -> Result[AvailabilityListing]:
        """Filter, sort and paginate slots; optionally expand instances in range."""
        parsed = parse_command(AvailabilityQuery, query or {})
        if not parsed.is_ok:
            return parsed
        q: AvailabilityQuery = parsed.value

        if not actor.is_admin:
            if q.owner_id and q.owner_id != actor.id:
                return unauthorized("ACCESS_DENIED", "Access denied")
            owner_id: Optional[str] = actor.id
        else:
            owner_id = q.owner_id

        loaded = self._list_slots(owner_id)
        if not loaded.is_ok:
            return loaded
        slots = loaded.value
        if q.status != "all":
            slots = [s for s in slots if s.status.value == q.status]
        if q.category:
            slots = [s for s in slots if s.category == q.category]
        if q.tags:
            wanted = {t.strip().lower() for t in q.tags}
            slots = [s for s in slots if wanted & s.tags]
        if q.start_date or q.end_date:
            slots = [s for s in slots if _in_date_range(s, q.start_date, q.end_date)]

        slots.sort(key=_SORT_KEYS[q.sort_by], reverse=q.sort_order == "desc")
        limit = min(q.limit, self._config.max_page_size)
        page = Page.from_items(slots, q.page, limit)

        instances = None
        if q.include_instances:
            instances = expand_many(
                slots, q.start_date, q.end_date, self._config.recurrence_max_iterations
            )

        return Ok(AvailabilityListing(
            slots=page.items,
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
            has_next=page.has_next,
            has_prev=page.has_prev,
            instances=instances,
        ))

    def get_user_availability(
        self,
        actor: Actor,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status: str = "active",
    ) -> Result[list]:
        """One user's slots sorted by (date, start_time), or their instances in range."""
        if not _can_manage(actor, user_id):
            return unauthorized("ACCESS_DENIED", "Access denied")
        loaded = self._list_slots(user_id)
        if not loaded.is_ok:
            return loaded
        slots = [s for s in loaded.value if status == "all" or s.status.value == status]
        if start_date and end_date:
            if end_date < start_date:
                return validation_error(
                    "INVALID_DATE_RANGE", "End date cannot be before start date", "end_date"
                )
            return Ok(expand_many(slots, start_date, end_date, self._config.recurrence_max_iterations))
        slots.sort(key=lambda s: (s.start_date or _FAR_FUTURE, s.start_time))
        return Ok(slots)

    def check_conflicts(self, actor: Actor, command: Any) -> Result[ConflictReport]:
        parsed = parse_command(ConflictCheckCommand, command)
        if not parsed.is_ok:
            return parsed
        cmd: ConflictCheckCommand = parsed.value
        owner_id = cmd.owner_id or actor.id
        if not _can_manage(actor, owner_id):
            return unauthorized("ACCESS_DENIED", "Access denied")
        existing = self._list_slots(owner_id)
        if not existing.is_ok:
            return existing
        conflicts = find_conflicts(cmd, existing.value, exclude_id=cmd.exclude_id)
        return Ok(ConflictReport(has_conflicts=bool(conflicts), conflicts=conflicts))

    def get_stats(self, actor: Actor, owner_id: Optional[str] = None) -> Result[AvailabilityStats]:
        owner_id = owner_id or actor.id
        if not _can_manage(actor, owner_id):
            return unauthorized("ACCESS_DENIED", "Access denied")
        loaded = self._list_slots(owner_id)
        if not loaded.is_ok:
            return loaded
        slots = loaded.value
        statuses = Counter(s.status for s in slots)
        types = Counter(s.schedule_type for s in slots)
        total_bookings = sum(s.current_bookings for s in slots)
        total_capacity = sum(s.max_bookings for s in slots)
        utilization = round(total_bookings / total_capacity * 100, 2) if total_capacity else 0.0
        return Ok(AvailabilityStats(
            total=len(slots),
            active=statuses[SlotStatus.ACTIVE],
            inactive=statuses[SlotStatus.INACTIVE],
            booked=statuses[SlotStatus.BOOKED],
            recurring=types[ScheduleType.RECURRING],
            one_time=len(slots) - types[ScheduleType.RECURRING],
            blocked=types[ScheduleType.BLOCKED],
            total_bookings=total_bookings,
            total_capacity=total_capacity,
            categories=dict(Counter(s.category for s in slots)),
            utilization_rate=utilization,
        ))

    def convert_timezone(
        self,
        actor: Actor,
        slot_id: str,
        target_time_zone: Optional[str],
        sample_date: Optional[date] = None,
    ) -> Result[TimezoneConversion]:
        """Show a slot's daily window as wall-clock time in another zone."""
        if not target_time_zone:
            return validation_error(
                "MISSING_TIMEZONE", "Target timezone is required", "target_time_zone"
            )
        loaded = self._load_owned(actor, slot_id)
        if not loaded.is_ok:
            return loaded
        slot: AvailabilitySlot = loaded.value

        day = sample_date or slot.start_date or self._today_in(slot.time_zone)
        try:
            start = self._tz.combine_date_time_in_timezone(day, slot.start_time, slot.time_zone)
            end = self._tz.combine_date_time_in_timezone(day, slot.end_time, slot.time_zone)
            local_start = self._tz.convert_timezone(start, slot.time_zone, target_time_zone)
            local_end = self._tz.convert_timezone(end, slot.time_zone, target_time_zone)
        except TimezoneError as exc:
            return validation_error(exc.code, str(exc), "target_time_zone")

        return Ok(TimezoneConversion(
            availability_id=slot.id,
            sample_date=day,
            source_time_zone=slot.time_zone,
            target_time_zone=target_time_zone,
            original_start_time=slot.start_time,
            original_end_time=slot.end_time,
            converted_date=local_start.date(),
            converted_start_time=local_start.strftime(TIME_FORMAT),
            converted_end_time=local_end.strftime(TIME_FORMAT),
            start=start,
            end=end,
        ))

    # --- slot search ---

    def find_available_slots(
        self,
        actor: Actor,
        owner_id: str,
        range_start: date,
        range_end: date,
        duration_minutes: int = 60,
        buffer_minutes: int = 0,
        category: Optional[str] = None,
    ) -> Result[list[CandidateSlot]]:
        if not owner_id:
            return validation_error("MISSING_USER_ID", "User ID is required", "owner_id")
        if not _can_manage(actor, owner_id):
            return unauthorized("ACCESS_DENIED", "Access denied")
        if range_end - range_start > timedelta(days=self._config.recurrence_max_iterations):
            return validation_error(
                "INVALID_DATE_RANGE", "Search range is too long", "range_end"
            )
        return self._search.find_available_slots(
            owner_id, range_start, range_end, duration_minutes, buffer_minutes, category
        )

    def get_next_available_slot(
        self,
        actor: Actor,
        owner_id: str,
        duration_minutes: int = 60,
        from_instant: Optional[datetime] = None,
        category: Optional[str] = None,
    ) -> Result[CandidateSlot]:
        if not owner_id:
            return validation_error("MISSING_USER_ID", "User ID is required", "owner_id")
        if not _can_manage(actor, owner_id):
            return unauthorized("ACCESS_DENIED", "Access denied")
        return self._search.get_next_available_slot(
            owner_id, from_instant or self._clock(), duration_minutes, category
        )

    def book_time_slot(
        self,
        actor: Actor,
        slot_id: str,
        requested_start: Optional[datetime],
        requested_end: Optional[datetime],
        notes: str = "",
    ) -> Result[SlotBookingReceipt]:
        if not slot_id or requested_start is None or requested_end is None:
            return validation_error(
                "MISSING_REQUIRED_FIELDS",
                "Availability id, start time and end time are required",
            )
        return self._search.book_time_slot(slot_id, requested_start, requested_end, actor.id, notes)
