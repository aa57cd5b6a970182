from booking_engine.scheduling.conflicts import TimeInterval, find_conflicts, overlaps
from booking_engine.scheduling.timezone import TimezoneAdapter, TimezoneError
from booking_engine.scheduling.recurrence import expand, expand_many, occurrence_dates
from booking_engine.scheduling.slot_search import SlotSearchEngine, is_bookable
from booking_engine.scheduling.availability_service import AvailabilityService

__all__ = [
    "TimeInterval",
    "overlaps",
    "find_conflicts",
    "TimezoneAdapter",
    "TimezoneError",
    "expand",
    "expand_many",
    "occurrence_dates",
    "SlotSearchEngine",
    "is_bookable",
    "AvailabilityService",
]
