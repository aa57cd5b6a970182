"""Tests for the result type, error taxonomy and envelope rendering."""

import pytest

from booking_engine.errors import (
    EngineError,
    Err,
    ErrorKind,
    Ok,
    ResultError,
    business_rule,
    internal_error,
    parse_command,
    rate_limited,
    to_envelope,
    validation_error,
    version_conflict,
)
from booking_engine.schemas.availability_schema import ConflictCheckCommand
from booking_engine.schemas.booking_schema import HistoryQuery


class TestResult:
    def test_ok(self):
        result = Ok(5)
        assert result.is_ok
        assert result.unwrap() == 5

    def test_err_unwrap_raises(self):
        result = business_rule("FULLY_BOOKED", "This time slot is fully booked")
        assert not result.is_ok
        with pytest.raises(ResultError, match="FULLY_BOOKED"):
            result.unwrap()


class TestRetryable:
    @pytest.mark.parametrize("result,retryable", [
        (validation_error("INVALID_DURATION", "bad"), False),
        (business_rule("HAS_BOOKINGS", "no"), False),
        (rate_limited("slow down", 30), True),
        (version_conflict("Slot", "slot-1"), True),
        (internal_error("boom"), True),
    ])
    def test_kinds(self, result, retryable):
        assert result.error.retryable is retryable

    def test_version_conflict_details(self):
        error = version_conflict("Booking", "booking-1").error
        assert error.kind == ErrorKind.CONFLICT
        assert error.code == "VERSION_CONFLICT"
        assert error.details == {"entity": "Booking", "id": "booking-1"}


class TestParseCommand:
    def test_valid_payload(self):
        result = parse_command(HistoryQuery, {"page": 2})
        assert result.value.page == 2

    def test_model_instance_passes_through(self):
        query = HistoryQuery()
        assert parse_command(HistoryQuery, query).value is query

    def test_custom_error_code_and_field(self):
        result = parse_command(ConflictCheckCommand, {"start_time": "10:00", "end_time": "09:00"})
        assert result.error.code == "INVALID_TIME_RANGE"
        assert result.error.field == "end_time"
        assert result.error.details["errors"][0]["field"] == "end_time"

    def test_builtin_error_mapped(self):
        result = parse_command(HistoryQuery, {"sort_order": "sideways"})
        assert result.error.code == "INVALID_ENUM_VALUE"
        assert result.error.field == "sort_order"

    def test_unmapped_builtin_error(self):
        result = parse_command(HistoryQuery, {"page": "first"})
        assert result.error.code == "INVALID_FIELD"
        assert result.error.kind == ErrorKind.VALIDATION


class TestEnvelope:
    def test_success(self):
        envelope = to_envelope(Ok(HistoryQuery()))
        assert envelope == {
            "success": True,
            "data": {"page": 1, "limit": 20, "sort_order": "desc"},
        }

    def test_success_list(self):
        assert to_envelope(Ok([HistoryQuery(page=3), "x"]))["data"][0]["page"] == 3

    def test_error(self):
        envelope = to_envelope(rate_limited("Too many requests", 12))
        assert envelope == {
            "success": False,
            "error": {
                "kind": "rate_limited",
                "code": "RATE_LIMIT_EXCEEDED",
                "message": "Too many requests",
                "retryable": True,
                "retry_after_seconds": 12,
            },
        }

    def test_error_with_field(self):
        error = Err(EngineError(ErrorKind.VALIDATION, "MISSING_TIMEZONE", "required", field="tz"))
        assert to_envelope(error)["error"]["field"] == "tz"
