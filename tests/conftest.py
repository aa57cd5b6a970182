"""Shared test fixtures and helpers."""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from booking_engine.engine import create_engine
from booking_engine.rate_limit import SlidingWindowRateLimiter
from booking_engine.repository.base import RepositoryError
from booking_engine.repository.memory import InMemoryRepository
from booking_engine.schemas.availability_schema import AvailabilitySlot, ScheduleType
from booking_engine.schemas.booking_schema import Booking, BookingHistoryEntry, BookingStatus, ActorRole
from booking_engine.schemas.common_schema import Actor

NOW = datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)

OWNER = Actor(id="owner-1")
CLIENT = Actor(id="client-a")
RETIREE = Actor(id="retiree-b")
OUTSIDER = Actor(id="someone-else")
ADMIN = Actor(id="admin-1", is_admin=True)


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def fail_with_storage_error(*args, **kwargs):
    """Stand-in for a repository read that hits a storage failure."""
    raise RepositoryError("storage unavailable")


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def repo():
    repository = InMemoryRepository()
    yield repository
    repository.close()


@pytest.fixture
def engine(repo, clock):
    with create_engine(
        repository=repo,
        clock=clock,
        rate_limiter=SlidingWindowRateLimiter(enabled=False),
    ) as eng:
        yield eng


def make_slot(**overrides: Any) -> AvailabilitySlot:
    """Helper to create an AvailabilitySlot with sensible defaults."""
    data: dict[str, Any] = {
        "id": "slot-1",
        "owner_id": OWNER.id,
        "title": "Consulting hours",
        "schedule_type": ScheduleType.ONE_TIME,
        "start_date": date(2024, 3, 1),
        "start_time": "09:00",
        "end_time": "12:00",
        "time_zone": "UTC",
        "min_advance_hours": 0,
        "max_advance_days": 365,
        "created_at": NOW,
        "updated_at": NOW,
    }
    data.update(overrides)
    return AvailabilitySlot(**data)


def slot_payload(**overrides: Any) -> dict[str, Any]:
    """Raw create-availability payload as the outer layer would send it."""
    data: dict[str, Any] = {
        "title": "Consulting hours",
        "start_date": "2024-03-01",
        "start_time": "09:00",
        "end_time": "12:00",
        "time_zone": "UTC",
        "category": "consulting",
        "hourly_rate": 120,
    }
    data.update(overrides)
    return data


def booking_payload(**overrides: Any) -> dict[str, Any]:
    """Raw create-booking payload from CLIENT to RETIREE."""
    data: dict[str, Any] = {
        "client_id": CLIENT.id,
        "retiree_id": RETIREE.id,
        "title": "Consulting",
        "description": "Need help with strategy",
        "engagement_type": "consulting",
        "proposed_rate": 120,
        "proposed_rate_type": "hourly",
    }
    data.update(overrides)
    return data


def make_booking(
    booking_id: str = "booking-1",
    status: BookingStatus = BookingStatus.REQUEST,
    **overrides: Any,
) -> Booking:
    data: dict[str, Any] = {
        "id": booking_id,
        "client_id": CLIENT.id,
        "retiree_id": RETIREE.id,
        "title": "Consulting",
        "description": "Need help with strategy",
        "engagement_type": "consulting",
        "status": status,
        "created_at": NOW,
        "updated_at": NOW,
    }
    data.update(overrides)
    return Booking(**data)


def make_history_entry(
    booking_id: str = "booking-1",
    entry_id: str = "hist-1",
    from_status: Optional[BookingStatus] = None,
    to_status: BookingStatus = BookingStatus.REQUEST,
    timestamp: datetime = NOW,
) -> BookingHistoryEntry:
    return BookingHistoryEntry(
        id=entry_id,
        booking_id=booking_id,
        from_status=from_status,
        to_status=to_status,
        actor_id=CLIENT.id,
        actor_role=ActorRole.CLIENT,
        title="Booking request created",
        timestamp=timestamp,
    )
