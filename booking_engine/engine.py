"""
Composition root wiring repository, clock, timezone adapter, rate limiter
and services into one engine with an explicit lifecycle.

Usage:
    with create_engine() as engine:
        engine.availability.create(actor, {...})
        engine.bookings.create(actor, {...})
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from booking_engine.bookings.service import BookingService
from booking_engine.config import AppConfig, settings
from booking_engine.rate_limit import SlidingWindowRateLimiter, default_rules
from booking_engine.repository.base import Repository
from booking_engine.repository.memory import InMemoryRepository
from booking_engine.scheduling.availability_service import AvailabilityService
from booking_engine.scheduling.slot_search import SlotSearchEngine
from booking_engine.scheduling.timezone import TimezoneAdapter
from booking_engine.utils import utc_now

logger = logging.getLogger(__name__)


class BookingEngine:
    """Availability, slot search and booking services over one repository."""

    def __init__(
        self,
        repository: Repository,
        clock: Callable[[], datetime] = utc_now,
        timezone_adapter: Optional[TimezoneAdapter] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        self.config = config or settings
        self.repository = repository
        self.clock = clock
        self.timezone = timezone_adapter or TimezoneAdapter()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            rules=default_rules(self.config.rate_limit),
            enabled=self.config.rate_limit.enabled,
        )
        self.search = SlotSearchEngine(repository, self.timezone, clock, self.config.scheduling)
        self.availability = AvailabilityService(
            repository, self.search, self.timezone, clock, self.config.scheduling
        )
        self.bookings = BookingService(repository, self.rate_limiter, clock, self.config.booking)

    def close(self) -> None:
        self.repository.close()
        logger.info("Booking engine closed")

    def __enter__(self) -> "BookingEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_engine(
    repository: Optional[Repository] = None,
    clock: Callable[[], datetime] = utc_now,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    config: Optional[AppConfig] = None,
) -> BookingEngine:
    """Build an engine, defaulting to the in-memory repository."""
    engine = BookingEngine(
        repository or InMemoryRepository(),
        clock=clock,
        rate_limiter=rate_limiter,
        config=config,
    )
    logger.info("Booking engine ready (%s)", type(engine.repository).__name__)
    return engine
