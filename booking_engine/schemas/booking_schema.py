"""Booking, booking history and lifecycle command models."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from booking_engine.config import settings
from booking_engine.utils import normalize_text


class BookingStatus(str, Enum):
    """Lifecycle states of a booking."""
    REQUEST = "request"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class EngagementType(str, Enum):
    FREELANCE = "freelance"
    CONSULTING = "consulting"
    PROJECT = "project"
    KEYNOTE = "keynote"
    MENTORING = "mentoring"


class RateType(str, Enum):
    HOURLY = "hourly"
    PROJECT = "project"
    DAILY = "daily"
    WEEKLY = "weekly"


class UrgencyLevel(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"


class ActorRole(str, Enum):
    """Role an actor plays relative to one booking."""
    CLIENT = "client"
    RETIREE = "retiree"
    ADMIN = "admin"


def _check_rate(value: Optional[float], field_name: str) -> Optional[float]:
    if value is not None and not 0 <= value <= settings.booking.max_rate:
        raise PydanticCustomError(
            "INVALID_RATE",
            "{field} must be between 0 and {high}",
            {"field": field_name, "high": settings.booking.max_rate},
        )
    return value


def _check_hours(value: Optional[int]) -> Optional[int]:
    if value is not None and not 1 <= value <= settings.booking.max_estimated_hours:
        raise PydanticCustomError(
            "INVALID_HOURS",
            "Estimated hours must be between 1 and {high}",
            {"field": "estimated_hours", "high": settings.booking.max_estimated_hours},
        )
    return value


def _check_dates(start: Optional[date], end: Optional[date]) -> None:
    if start and end and start >= end:
        raise PydanticCustomError(
            "INVALID_DATE_RANGE",
            "Start date must be before end date",
            {"field": "end_date"},
        )


def _check_reason(value: Optional[str], code: str, field_name: str) -> str:
    if value is None or not value.strip():
        raise PydanticCustomError(code, "{field} is required", {"field": field_name})
    return value


class Booking(BaseModel):
    """Engagement request between a client and a retiree."""

    id: str
    client_id: str
    retiree_id: str
    client_profile_id: Optional[str] = None
    retiree_profile_id: Optional[str] = None
    title: str
    description: str
    engagement_type: EngagementType
    service_category: Optional[str] = None
    proposed_rate: Optional[float] = None
    proposed_rate_type: Optional[RateType] = None
    currency: Currency = Currency.USD
    estimated_hours: Optional[int] = None
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    client_message: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    remote_work: bool = True
    location: Optional[str] = None
    flexible_timing: bool = False
    status: BookingStatus = BookingStatus.REQUEST
    agreed_rate: Optional[float] = None
    agreed_rate_type: Optional[RateType] = None
    retiree_response: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    status_changed_at: Optional[datetime] = None
    status_changed_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int = 0

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.client_id, self.retiree_id)

    @property
    def value(self) -> float:
        """Engagement value: agreed (or proposed) rate times estimated hours."""
        rate = self.agreed_rate if self.agreed_rate is not None else self.proposed_rate
        if rate is None:
            return 0.0
        if self.estimated_hours:
            return rate * self.estimated_hours
        return rate


class BookingHistoryEntry(BaseModel):
    """Immutable audit record of one status change."""
    model_config = ConfigDict(frozen=True)

    id: str
    booking_id: str
    event_type: str = "status_change"
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    actor_id: str
    actor_role: ActorRole
    title: str
    description: str = ""
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class CreateBookingCommand(BaseModel):
    """Client request to engage a retiree."""

    client_id: str = Field(min_length=1)
    retiree_id: str = Field(min_length=1)
    client_profile_id: Optional[str] = None
    retiree_profile_id: Optional[str] = None
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=10, max_length=5000)
    engagement_type: EngagementType
    service_category: Optional[str] = Field(default=None, max_length=100)
    proposed_rate: Optional[float] = None
    proposed_rate_type: Optional[RateType] = None
    currency: Currency = Currency.USD
    estimated_hours: Optional[int] = None
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    client_message: Optional[str] = Field(default=None, max_length=1000)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    remote_work: bool = True
    location: Optional[str] = Field(default=None, max_length=200)
    flexible_timing: bool = False

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return normalize_text(value) if isinstance(value, str) else value

    @field_validator("proposed_rate")
    @classmethod
    def _valid_rate(cls, value: Optional[float]) -> Optional[float]:
        return _check_rate(value, "proposed_rate")

    @field_validator("estimated_hours")
    @classmethod
    def _valid_hours(cls, value: Optional[int]) -> Optional[int]:
        return _check_hours(value)

    @model_validator(mode="after")
    def _check_dates(self) -> "CreateBookingCommand":
        _check_dates(self.start_date, self.end_date)
        return self


class AcceptBookingCommand(BaseModel):
    """Retiree acceptance; agreed terms default to the proposed ones."""
    agreed_rate: Optional[float] = None
    agreed_rate_type: Optional[RateType] = None
    retiree_response: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("agreed_rate")
    @classmethod
    def _valid_rate(cls, value: Optional[float]) -> Optional[float]:
        return _check_rate(value, "agreed_rate")


class RejectBookingCommand(BaseModel):
    rejection_reason: Optional[str] = Field(default=None, min_length=10, max_length=1000)

    @model_validator(mode="before")
    @classmethod
    def _require_reason(cls, data: Any) -> Any:
        reason = data.get("rejection_reason") if isinstance(data, dict) else None
        _check_reason(reason, "MISSING_REJECTION_REASON", "rejection_reason")
        return data


class CancelBookingCommand(BaseModel):
    cancellation_reason: Optional[str] = Field(default=None, min_length=10, max_length=1000)

    @model_validator(mode="before")
    @classmethod
    def _require_reason(cls, data: Any) -> Any:
        reason = data.get("cancellation_reason") if isinstance(data, dict) else None
        _check_reason(reason, "MISSING_CANCELLATION_REASON", "cancellation_reason")
        return data


# booking fields an update may change but never set to null
_NON_CLEARABLE_FIELDS = ("title", "description", "urgency_level", "remote_work", "flexible_timing")


class UpdateBookingCommand(BaseModel):
    """Client edits to a pending request. Status fields are not updatable."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=10, max_length=5000)
    client_message: Optional[str] = Field(default=None, max_length=1000)
    proposed_rate: Optional[float] = None
    proposed_rate_type: Optional[RateType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    estimated_hours: Optional[int] = None
    urgency_level: Optional[UrgencyLevel] = None
    location: Optional[str] = Field(default=None, max_length=200)
    remote_work: Optional[bool] = None
    flexible_timing: Optional[bool] = None

    @field_validator("proposed_rate")
    @classmethod
    def _valid_rate(cls, value: Optional[float]) -> Optional[float]:
        return _check_rate(value, "proposed_rate")

    @field_validator("estimated_hours")
    @classmethod
    def _valid_hours(cls, value: Optional[int]) -> Optional[int]:
        return _check_hours(value)

    @model_validator(mode="after")
    def _require_change(self) -> "UpdateBookingCommand":
        if not self.model_fields_set:
            raise PydanticCustomError(
                "NO_UPDATE_FIELDS",
                "At least one updatable field must be provided",
            )
        for name in _NON_CLEARABLE_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise PydanticCustomError(
                    "NULL_NOT_ALLOWED",
                    "{field} cannot be cleared",
                    {"field": name},
                )
        _check_dates(self.start_date, self.end_date)
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class BookingQuery(BaseModel):
    """Listing filters, sorting and pagination for bookings."""
    client_id: Optional[str] = None
    retiree_id: Optional[str] = None
    status: Optional[BookingStatus] = None
    engagement_type: Optional[EngagementType] = None
    service_category: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["created_at", "updated_at", "start_date", "status", "title"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class HistoryQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_order: Literal["asc", "desc"] = "desc"


class TransitionInfo(BaseModel):
    """What the caller may do next with a booking."""
    booking_id: str
    current_status: BookingStatus
    user_role: ActorRole
    next_possible_states: list[BookingStatus] = Field(default_factory=list)
    allowed_actions: list[str] = Field(default_factory=list)
    state_description: str = ""
    is_terminal: bool = False


class BookingDetails(BaseModel):
    """A booking with the caller's role, next states and recent history."""
    booking: Booking
    user_role: ActorRole
    next_possible_states: list[BookingStatus] = Field(default_factory=list)
    state_description: str = ""
    is_terminal: bool = False
    can_be_cancelled: bool = False
    history: list[BookingHistoryEntry] = Field(default_factory=list)


class BookingStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_engagement_type: dict[str, int] = Field(default_factory=dict)
    total_value: float = 0.0
    average_rate: float = 0.0


class UserBookingStats(BaseModel):
    user_id: str
    as_client: BookingStats = Field(default_factory=BookingStats)
    as_retiree: BookingStats = Field(default_factory=BookingStats)
    combined: BookingStats = Field(default_factory=BookingStats)


class DashboardSummary(BaseModel):
    by_status: dict[str, int] = Field(default_factory=dict)
    by_engagement_type: dict[str, int] = Field(default_factory=dict)
    upcoming: int = 0
    total_value: float = 0.0


class BookingDashboard(BaseModel):
    statistics: UserBookingStats
    recent_bookings: list[Booking] = Field(default_factory=list)
    active_bookings: list[Booking] = Field(default_factory=list)
    summary: DashboardSummary = Field(default_factory=DashboardSummary)
