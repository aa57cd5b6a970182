"""Tests for shared utility functions."""

from datetime import datetime, timedelta, timezone

import pytest

from booking_engine.utils import (
    ensure_utc,
    is_valid_time,
    is_valid_timezone,
    normalize_text,
    time_to_minutes,
    utc_now,
)


class TestTimes:
    @pytest.mark.parametrize("value", ["00:00", "09:30", "23:59"])
    def test_valid(self, value):
        assert is_valid_time(value)

    @pytest.mark.parametrize("value", ["9:30", "24:00", "12:60", "noon", "", None])
    def test_invalid(self, value):
        assert not is_valid_time(value)

    def test_time_to_minutes(self):
        assert time_to_minutes("09:30") == 570
        assert time_to_minutes("00:00") == 0


class TestText:
    def test_normalize(self):
        assert normalize_text("  Strategy   review \n plan ") == "Strategy review plan"


class TestTimezones:
    def test_valid_zone(self):
        assert is_valid_timezone("America/New_York")
        assert is_valid_timezone("UTC")

    @pytest.mark.parametrize("name", ["Mars/Olympus", "", None, "../etc/passwd"])
    def test_invalid_zone(self, name):
        assert not is_valid_timezone(name)


class TestUtc:
    def test_now_is_aware(self):
        assert utc_now().tzinfo == timezone.utc

    def test_naive_read_as_utc(self):
        assert ensure_utc(datetime(2024, 3, 1, 9)) == datetime(2024, 3, 1, 9, tzinfo=timezone.utc)

    def test_aware_converted(self):
        plus_two = timezone(timedelta(hours=2))
        converted = ensure_utc(datetime(2024, 3, 1, 11, tzinfo=plus_two))
        assert converted == datetime(2024, 3, 1, 9, tzinfo=timezone.utc)
        assert converted.tzinfo == timezone.utc
