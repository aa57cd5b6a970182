"""Availability slot, recurrence and slot-search data models."""

from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from booking_engine.config import settings
from booking_engine.utils import is_valid_time, is_valid_timezone, normalize_text, time_to_minutes

Date = date


class ScheduleType(str, Enum):
    """How a slot produces bookable occurrences."""
    ONE_TIME = "one_time"
    RECURRING = "recurring"
    BLOCKED = "blocked"


class SlotStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BOOKED = "booked"


class RecurrencePattern(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _check_time(value: Optional[str], field_name: str) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not is_valid_time(value):
        raise PydanticCustomError(
            "INVALID_TIME_FORMAT",
            "{field} must be a 24-hour HH:MM time",
            {"field": field_name},
        )
    return value


def _check_time_zone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not is_valid_timezone(value):
        raise PydanticCustomError(
            "INVALID_TIMEZONE",
            "Unknown time zone '{time_zone}'",
            {"field": "time_zone", "time_zone": value},
        )
    return value


def _check_time_window(start_time: str, end_time: str) -> None:
    duration = time_to_minutes(end_time) - time_to_minutes(start_time)
    if duration <= 0:
        raise PydanticCustomError(
            "INVALID_TIME_RANGE",
            "End time must be after start time",
            {"field": "end_time"},
        )
    low = settings.scheduling.min_slot_minutes
    high = settings.scheduling.max_slot_minutes
    if not low <= duration <= high:
        raise PydanticCustomError(
            "INVALID_DURATION",
            "Slot duration must be between {low} and {high} minutes",
            {"field": "end_time", "low": low, "high": high},
        )


class RecurrenceRule(BaseModel):
    """Recurrence pattern of a recurring slot.

    ``days_of_week`` uses Python weekday numbers (0 = Monday, 6 = Sunday).
    ``interval`` counts days, weeks or months depending on the pattern.
    """
    model_config = ConfigDict(frozen=True)

    pattern: RecurrencePattern
    interval: int = Field(default=1, ge=1, le=52)
    days_of_week: tuple[int, ...] = ()
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)

    @field_validator("days_of_week")
    @classmethod
    def _normalize_days(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        for day in value:
            if not 0 <= day <= 6:
                raise PydanticCustomError(
                    "INVALID_DAY_OF_WEEK",
                    "Days of week must be between 0 (Monday) and 6 (Sunday)",
                    {"field": "days_of_week"},
                )
        return tuple(sorted(set(value)))

    @model_validator(mode="after")
    def _check_pattern_fields(self) -> "RecurrenceRule":
        if self.pattern == RecurrencePattern.WEEKLY and not self.days_of_week:
            raise PydanticCustomError(
                "MISSING_DAYS_OF_WEEK",
                "Weekly recurrence requires at least one day of week",
                {"field": "recurrence_rule.days_of_week"},
            )
        if self.pattern == RecurrencePattern.MONTHLY and self.day_of_month is None:
            raise PydanticCustomError(
                "MISSING_DAY_OF_MONTH",
                "Monthly recurrence requires a day of month",
                {"field": "recurrence_rule.day_of_month"},
            )
        return self


class AvailabilityFields(BaseModel):
    """Owner-editable slot attributes and the schedule invariants over them."""

    title: str = Field(default="", max_length=200)
    description: str = Field(default="", max_length=2000)
    schedule_type: ScheduleType = ScheduleType.ONE_TIME
    recurrence_rule: Optional[RecurrenceRule] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: str
    end_time: str
    time_zone: str = Field(default_factory=lambda: settings.scheduling.default_time_zone)
    category: str = Field(default="general", min_length=1, max_length=100)
    tags: frozenset[str] = frozenset()
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    max_bookings: int = Field(default=1, ge=1)
    buffer_minutes: int = Field(default=0, ge=0)
    min_advance_hours: int = Field(
        default_factory=lambda: settings.scheduling.default_min_advance_hours, ge=0, le=8760
    )
    max_advance_days: int = Field(
        default_factory=lambda: settings.scheduling.default_max_advance_days, ge=1, le=365
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: str, info) -> str:
        return _check_time(value, info.field_name)

    @field_validator("time_zone")
    @classmethod
    def _valid_time_zone(cls, value: str) -> str:
        return _check_time_zone(value)

    @field_validator("title", "description", "category")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        return normalize_text(value)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(normalize_text(tag).lower() for tag in value if tag.strip())

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _check_schedule(self) -> "AvailabilityFields":
        _check_time_window(self.start_time, self.end_time)

        if self.buffer_minutes > settings.scheduling.max_buffer_minutes:
            raise PydanticCustomError(
                "INVALID_BUFFER",
                "Buffer must be between 0 and {high} minutes",
                {"field": "buffer_minutes", "high": settings.scheduling.max_buffer_minutes},
            )
        if self.schedule_type == ScheduleType.RECURRING and self.recurrence_rule is None:
            raise PydanticCustomError(
                "MISSING_RECURRENCE_RULE",
                "Recurring slots require a recurrence rule",
                {"field": "recurrence_rule"},
            )
        if self.schedule_type == ScheduleType.RECURRING and self.start_date is None:
            raise PydanticCustomError(
                "MISSING_START_DATE",
                "Recurring slots require a start date to anchor the pattern",
                {"field": "start_date"},
            )
        if (
            self.schedule_type != ScheduleType.RECURRING
            and self.start_date is None
            and not settings.scheduling.allow_undated_slots
        ):
            raise PydanticCustomError(
                "MISSING_START_DATE",
                "One-time and blocked slots require a start date",
                {"field": "start_date"},
            )
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise PydanticCustomError(
                "INVALID_DATE_RANGE",
                "End date cannot be before start date",
                {"field": "end_date"},
            )
        if self.min_advance_hours >= self.max_advance_days * 24:
            raise PydanticCustomError(
                "INVALID_ADVANCE_WINDOW",
                "Minimum advance notice must be shorter than the maximum advance window",
                {"field": "min_advance_hours"},
            )
        return self

    @property
    def duration_minutes(self) -> int:
        return time_to_minutes(self.end_time) - time_to_minutes(self.start_time)

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type == ScheduleType.RECURRING


class CreateAvailabilityCommand(AvailabilityFields):
    """Request to publish a new slot; ``owner_id`` is honoured for admins only."""
    owner_id: Optional[str] = None


class UpdateAvailabilityCommand(BaseModel):
    """Partial update; unset fields keep their stored values."""
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    schedule_type: Optional[ScheduleType] = None
    recurrence_rule: Optional[RecurrenceRule] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    time_zone: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    tags: Optional[frozenset[str]] = None
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    max_bookings: Optional[int] = Field(default=None, ge=1)
    buffer_minutes: Optional[int] = Field(default=None, ge=0)
    min_advance_hours: Optional[int] = Field(default=None, ge=0, le=8760)
    max_advance_days: Optional[int] = Field(default=None, ge=1, le=365)
    status: Optional[SlotStatus] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: Optional[str], info) -> Optional[str]:
        return _check_time(value, info.field_name)

    @field_validator("time_zone")
    @classmethod
    def _valid_time_zone(cls, value: Optional[str]) -> Optional[str]:
        return _check_time_zone(value)

    @model_validator(mode="after")
    def _require_change(self) -> "UpdateAvailabilityCommand":
        if not self.model_fields_set:
            raise PydanticCustomError(
                "NO_UPDATE_FIELDS",
                "At least one field must be provided for update",
            )
        if self.status == SlotStatus.BOOKED:
            raise PydanticCustomError(
                "INVALID_STATUS",
                "Status can only be set to active or inactive",
                {"field": "status"},
            )
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class AvailabilitySlot(AvailabilityFields):
    """Persisted availability slot owned by one user."""

    id: str
    owner_id: str
    current_bookings: int = Field(default=0, ge=0)
    status: SlotStatus = SlotStatus.ACTIVE
    created_at: datetime
    updated_at: datetime
    version: int = 0

    @model_validator(mode="after")
    def _check_capacity(self) -> "AvailabilitySlot":
        if self.current_bookings > self.max_bookings:
            raise PydanticCustomError(
                "INVALID_CAPACITY",
                "Current bookings cannot exceed max bookings",
                {"field": "current_bookings"},
            )
        return self

    @property
    def remaining_capacity(self) -> int:
        return self.max_bookings - self.current_bookings

    @property
    def is_blocked(self) -> bool:
        return self.schedule_type == ScheduleType.BLOCKED


class AvailabilityInstance(BaseModel):
    """A concrete dated occurrence of a slot. Never persisted."""
    model_config = ConfigDict(frozen=True)

    date: Date
    start_time: str
    end_time: str
    parent_slot_id: str
    owner_id: str
    time_zone: str
    title: str = ""
    category: str = "general"
    tags: frozenset[str] = frozenset()
    hourly_rate: Optional[float] = None
    currency: str = "USD"
    max_bookings: int = 1
    current_bookings: int = 0
    buffer_minutes: int = 0
    is_recurring_instance: bool = False

    @property
    def id(self) -> str:
        return f"{self.parent_slot_id}_{self.date.isoformat()}"

    @property
    def has_capacity(self) -> bool:
        return self.current_bookings < self.max_bookings


class CandidateSlot(BaseModel):
    """A bookable window produced by slot search, in absolute UTC instants."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    duration_minutes: int
    availability_id: str
    owner_id: str
    date: Date
    time_zone: str
    title: str = ""
    category: str = "general"
    hourly_rate: Optional[float] = None
    currency: str = "USD"
    max_bookings: int = 1
    current_bookings: int = 0
    is_bookable: bool = True


class SlotBookingReceipt(BaseModel):
    """Confirmation that a slot's capacity was reserved."""
    id: str
    availability_id: str
    owner_id: str
    booked_by: str
    start: datetime
    end: datetime
    duration_minutes: int
    time_zone: str
    notes: str = ""
    status: str = "confirmed"
    created_at: datetime
    remaining_capacity: int


class AvailabilityQuery(BaseModel):
    """Listing filters, sorting and pagination for availability slots."""
    owner_id: Optional[str] = None
    status: Optional[Literal["active", "inactive", "booked", "all"]] = "active"
    category: Optional[str] = None
    tags: frozenset[str] = frozenset()
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    include_instances: bool = False
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["start_time", "end_time", "date", "created_at"] = "start_time"
    sort_order: Literal["asc", "desc"] = "asc"

    @model_validator(mode="after")
    def _check_range(self) -> "AvailabilityQuery":
        if self.include_instances and (self.start_date is None or self.end_date is None):
            raise PydanticCustomError(
                "MISSING_DATE_RANGE",
                "Expanding instances requires both start_date and end_date",
                {"field": "start_date"},
            )
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise PydanticCustomError(
                "INVALID_DATE_RANGE",
                "End date cannot be before start date",
                {"field": "end_date"},
            )
        return self


class AvailabilityListing(BaseModel):
    """Listing page plus optional expanded instances for the queried range."""
    slots: list[AvailabilitySlot]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool
    instances: Optional[list[AvailabilityInstance]] = None


class ConflictCheckCommand(BaseModel):
    """Proposed time window to test against an owner's existing slots."""
    start_time: str
    end_time: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    schedule_type: ScheduleType = ScheduleType.ONE_TIME
    recurrence_rule: Optional[RecurrenceRule] = None
    exclude_id: Optional[str] = None
    owner_id: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: str, info) -> str:
        return _check_time(value, info.field_name)

    @model_validator(mode="after")
    def _check_window(self) -> "ConflictCheckCommand":
        if time_to_minutes(self.end_time) <= time_to_minutes(self.start_time):
            raise PydanticCustomError(
                "INVALID_TIME_RANGE",
                "End time must be after start time",
                {"field": "end_time"},
            )
        if self.schedule_type == ScheduleType.RECURRING and (
            self.recurrence_rule is None or self.start_date is None
        ):
            raise PydanticCustomError(
                "MISSING_RECURRENCE_RULE",
                "Recurring windows require a recurrence rule and start date",
                {"field": "recurrence_rule"},
            )
        return self


class ConflictReport(BaseModel):
    has_conflicts: bool
    conflicts: list[AvailabilitySlot] = Field(default_factory=list)


class AvailabilityStats(BaseModel):
    """Aggregate counts over one owner's slots."""
    total: int = 0
    active: int = 0
    inactive: int = 0
    booked: int = 0
    recurring: int = 0
    one_time: int = 0
    blocked: int = 0
    total_bookings: int = 0
    total_capacity: int = 0
    categories: dict[str, int] = Field(default_factory=dict)
    utilization_rate: float = 0.0


class TimezoneConversion(BaseModel):
    """A slot's wall-clock window re-expressed in another time zone."""
    availability_id: str
    sample_date: Date
    source_time_zone: str
    target_time_zone: str
    original_start_time: str
    original_end_time: str
    converted_date: Date
    converted_start_time: str
    converted_end_time: str
    start: datetime
    end: datetime
