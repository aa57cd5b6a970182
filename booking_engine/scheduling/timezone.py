"""
Timezone adapter: wall-clock to absolute-instant conversion.

Slots are stored as local wall-clock times in an IANA zone; everything the
search engine compares is an aware UTC datetime. Backed by ``zoneinfo``.
Nonexistent local times inside a DST gap resolve with ``fold=0``, i.e.
using the offset in force before the transition.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from booking_engine.scheduling.conflicts import TimeInterval, overlaps
from booking_engine.utils import DATE_FORMAT, TIME_FORMAT, is_valid_timezone

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_FORMAT = f"{DATE_FORMAT} {TIME_FORMAT}"


class TimezoneError(Exception):
    """Raised for unknown zones or malformed time ranges."""

    def __init__(self, code: str, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.field = field


class TimezoneAdapter:
    """Default timezone collaborator used by slot search and availability."""

    def is_valid_timezone(self, name: str) -> bool:
        return is_valid_timezone(name)

    def zone(self, name: str) -> ZoneInfo:
        if not self.is_valid_timezone(name):
            raise TimezoneError("INVALID_TIMEZONE", f"Unknown time zone '{name}'", "time_zone")
        return ZoneInfo(name)

    def combine_date_time_in_timezone(self, day: date, wall_time: str, tz: str) -> datetime:
        """Interpret a local date + ``HH:MM`` in ``tz`` and return the UTC instant."""
        try:
            parsed = datetime.strptime(wall_time.strip(), TIME_FORMAT).time()
        except ValueError:
            raise TimezoneError(
                "INVALID_TIME_FORMAT", f"Invalid time {wall_time!r}, expected HH:MM"
            ) from None
        local = datetime.combine(day, time(parsed.hour, parsed.minute), tzinfo=self.zone(tz))
        return local.astimezone(timezone.utc)

    def convert_timezone(self, instant: datetime, from_tz: str, to_tz: str) -> datetime:
        """Re-express an instant in another zone.

        Naive datetimes are read as wall-clock time in ``from_tz``.
        """
        target = self.zone(to_tz)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.zone(from_tz))
        return instant.astimezone(target)

    def to_local(self, instant: datetime, tz: str) -> datetime:
        return self.convert_timezone(instant, "UTC", tz)

    def format_date_time(
        self, instant: datetime, tz: str, fmt: str = DEFAULT_DISPLAY_FORMAT
    ) -> str:
        return self.to_local(instant, tz).strftime(fmt)

    def calculate_duration(self, start: datetime, end: datetime) -> int:
        """Whole minutes between two instants.

        Raises:
            TimezoneError: If end is not after start.
        """
        if end <= start:
            raise TimezoneError("INVALID_TIME_RANGE", "End time must be after start time")
        return int((end - start).total_seconds() // 60)

    def generate_time_slots(
        self,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int,
        busy: Iterable[TimeInterval] = (),
        buffer_minutes: int = 0,
    ) -> list[TimeInterval]:
        """Partition a range into ``duration``-long windows stepped by duration + buffer.

        Windows overlapping any busy interval are skipped; the step is
        unchanged so the grid stays aligned to ``range_start``.
        """
        if duration_minutes <= 0:
            raise TimezoneError("INVALID_DURATION", "Duration must be positive", "duration")
        if buffer_minutes < 0:
            raise TimezoneError("INVALID_BUFFER", "Buffer cannot be negative", "buffer")

        busy = list(busy)
        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=duration_minutes + buffer_minutes)
        windows: list[TimeInterval] = []
        current = range_start
        while current + duration <= range_end:
            window = TimeInterval(current, current + duration)
            if not any(overlaps(window, interval) for interval in busy):
                windows.append(window)
            current += step
        logger.debug(
            "Generated %d window(s) of %d min between %s and %s (%d busy)",
            len(windows), duration_minutes, range_start, range_end, len(busy),
        )
        return windows
