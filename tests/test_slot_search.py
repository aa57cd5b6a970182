"""Tests for slot search and capacity booking."""

import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from booking_engine.errors import ErrorKind
from booking_engine.schemas.availability_schema import (
    RecurrenceRule,
    ScheduleType,
    SlotStatus,
)
from booking_engine.scheduling.slot_search import SlotSearchEngine, is_bookable
from tests.conftest import NOW, make_slot

UTC = timezone.utc


def at(day, hour, minute=0):
    return datetime(2024, 3, day, hour, minute, tzinfo=UTC)


@pytest.fixture
def search(repo, clock):
    return SlotSearchEngine(repo, clock=clock)


class TestIsBookable:
    def test_open_slot(self):
        check = is_bookable(make_slot(), NOW, at(1, 9))
        assert check.bookable
        assert check.available_slots == 1

    def test_blocked(self):
        check = is_bookable(make_slot(schedule_type=ScheduleType.BLOCKED), NOW, at(1, 9))
        assert not check.bookable
        assert "blocked" in check.reason

    def test_inactive(self):
        check = is_bookable(make_slot(status=SlotStatus.INACTIVE), NOW, at(1, 9))
        assert not check.bookable
        assert "not active" in check.reason

    def test_min_advance_notice(self):
        slot = make_slot(min_advance_hours=24)
        assert not is_bookable(slot, NOW, NOW + timedelta(hours=23)).bookable
        assert is_bookable(slot, NOW, NOW + timedelta(hours=24)).bookable

    def test_max_advance_window(self):
        slot = make_slot(max_advance_days=10)
        check = is_bookable(slot, NOW, NOW + timedelta(days=11))
        assert not check.bookable
        assert "10 days" in check.reason


class TestFindAvailableSlots:
    def test_partitions_one_time_slot(self, repo, search):
        repo.add_slot(make_slot())
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 1), 60)
        assert result.is_ok
        assert [c.start for c in result.value] == [at(1, 9), at(1, 10), at(1, 11)]
        first = result.value[0]
        assert first.availability_id == "slot-1"
        assert first.duration_minutes == 60
        assert first.is_bookable

    def test_buffer_reduces_candidates(self, repo, search):
        repo.add_slot(make_slot())
        result = search.find_available_slots(
            "owner-1", date(2024, 3, 1), date(2024, 3, 1), 60, buffer_minutes=15
        )
        assert [c.start for c in result.value] == [at(1, 9), at(1, 10, 15)]

    def test_local_zone_converted_to_utc(self, repo, search):
        repo.add_slot(make_slot(time_zone="America/New_York"))
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 1), 180)
        assert [(c.start, c.end) for c in result.value] == [(at(1, 14), at(1, 17))]

    def test_orders_across_slots_by_absolute_start(self, repo, search):
        repo.add_slot(make_slot(id="ny", time_zone="America/New_York",
                                start_time="08:00", end_time="09:00"))
        repo.add_slot(make_slot(id="utc", start_time="10:00", end_time="11:00"))
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 1), 60)
        assert [c.availability_id for c in result.value] == ["utc", "ny"]

    def test_recurring_slot_yields_each_occurrence(self, repo, search):
        repo.add_slot(make_slot(
            schedule_type=ScheduleType.RECURRING,
            recurrence_rule=RecurrenceRule(pattern="weekly", days_of_week=[0, 2]),
            start_time="09:00",
            end_time="10:00",
        ))
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 14), 60)
        assert [c.date.day for c in result.value] == [4, 6, 11, 13]

    def test_blocked_time_is_removed(self, repo, search):
        repo.add_slot(make_slot())
        repo.add_slot(make_slot(id="lunch", schedule_type=ScheduleType.BLOCKED,
                                start_time="10:00", end_time="10:30"))
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 1), 60)
        assert [c.start for c in result.value] == [at(1, 9), at(1, 11)]

    def test_full_and_inactive_slots_are_skipped(self, repo, search):
        repo.add_slot(make_slot(id="full", current_bookings=1, status=SlotStatus.BOOKED))
        repo.add_slot(make_slot(id="off", status=SlotStatus.INACTIVE,
                                start_time="13:00", end_time="14:00"))
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 1), 60)
        assert result.value == []

    def test_category_filter(self, repo, search):
        repo.add_slot(make_slot(category="consulting"))
        repo.add_slot(make_slot(id="other", category="mentoring",
                                start_time="13:00", end_time="14:00"))
        result = search.find_available_slots(
            "owner-1", date(2024, 3, 1), date(2024, 3, 1), 60, category="mentoring"
        )
        assert {c.availability_id for c in result.value} == {"other"}

    def test_other_owners_ignored(self, repo, search):
        repo.add_slot(make_slot(owner_id="someone-else"))
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 1), 60)
        assert result.value == []

    def test_candidates_outside_lead_window_flagged(self, repo, search, clock):
        repo.add_slot(make_slot(min_advance_hours=48))
        clock.now = at(1, 0)
        result = search.find_available_slots("owner-1", date(2024, 3, 1), date(2024, 3, 1), 60)
        assert result.value
        assert not any(c.is_bookable for c in result.value)

    @pytest.mark.parametrize("kwargs,code", [
        ({"duration_minutes": 0}, "INVALID_DURATION"),
        ({"duration_minutes": 30, "buffer_minutes": -1}, "INVALID_BUFFER"),
        ({"duration_minutes": 30, "range_start": date(2024, 3, 5)}, "INVALID_DATE_RANGE"),
    ])
    def test_invalid_arguments(self, search, kwargs, code):
        args = {"owner_id": "owner-1", "range_start": date(2024, 3, 1),
                "range_end": date(2024, 3, 2)}
        args.update(kwargs)
        result = search.find_available_slots(**args)
        assert not result.is_ok
        assert result.error.kind == ErrorKind.VALIDATION
        assert result.error.code == code


class TestNextAvailableSlot:
    def test_earliest_window(self, repo, search):
        repo.add_slot(make_slot())
        repo.add_slot(make_slot(id="earlier", start_date=date(2024, 2, 20),
                                start_time="15:00", end_time="16:00"))
        result = search.get_next_available_slot("owner-1", NOW, 60)
        assert result.is_ok
        assert result.value.availability_id == "earlier"
        assert result.value.start == datetime(2024, 2, 20, 15, tzinfo=UTC)

    def test_skips_instances_that_already_started(self, repo, search):
        repo.add_slot(make_slot(
            schedule_type=ScheduleType.RECURRING,
            recurrence_rule=RecurrenceRule(pattern="daily"),
            start_date=date(2024, 2, 1),
        ))
        result = search.get_next_available_slot("owner-1", NOW, 60)
        assert result.value.start == datetime(2024, 2, 2, 9, tzinfo=UTC)

    def test_instance_too_short(self, repo, search):
        repo.add_slot(make_slot(start_date=date(2024, 2, 10), end_time="09:30"))
        repo.add_slot(make_slot(id="long", start_date=date(2024, 2, 12)))
        result = search.get_next_available_slot("owner-1", NOW, 60)
        assert result.value.availability_id == "long"

    def test_no_active_slots(self, search):
        result = search.get_next_available_slot("owner-1", NOW, 60)
        assert result.error.code == "NO_AVAILABILITY"
        assert result.error.kind == ErrorKind.NOT_FOUND

    def test_nothing_within_search_window(self, repo, search):
        repo.add_slot(make_slot(start_date=date(2024, 6, 1)))
        result = search.get_next_available_slot("owner-1", NOW, 60)
        assert result.error.code == "NO_SLOTS_AVAILABLE"


class TestBookTimeSlot:
    def test_reserves_capacity(self, repo, search):
        repo.add_slot(make_slot(max_bookings=2))
        result = search.book_time_slot("slot-1", at(1, 9), at(1, 10), "client-a", "Intro")
        assert result.is_ok
        receipt = result.value
        assert receipt.id.startswith("slotbk_")
        assert receipt.duration_minutes == 60
        assert receipt.remaining_capacity == 1
        assert receipt.notes == "Intro"

        stored = repo.get_slot("slot-1")
        assert stored.current_bookings == 1
        assert stored.status == SlotStatus.ACTIVE
        assert stored.version == 2

    def test_last_unit_marks_slot_booked(self, repo, search):
        repo.add_slot(make_slot())
        assert search.book_time_slot("slot-1", at(1, 9), at(1, 10), "client-a").is_ok
        assert repo.get_slot("slot-1").status == SlotStatus.BOOKED

        again = search.book_time_slot("slot-1", at(1, 10), at(1, 11), "client-b")
        assert again.error.code == "FULLY_BOOKED"
        assert again.error.kind == ErrorKind.BUSINESS_RULE

    def test_missing_slot(self, search):
        result = search.book_time_slot("missing", at(1, 9), at(1, 10), "client-a")
        assert result.error.code == "AVAILABILITY_NOT_FOUND"

    def test_end_before_start(self, repo, search):
        repo.add_slot(make_slot())
        result = search.book_time_slot("slot-1", at(1, 10), at(1, 9), "client-a")
        assert result.error.code == "INVALID_TIME_RANGE"
        assert result.error.kind == ErrorKind.VALIDATION

    def test_blocked_slot(self, repo, search):
        repo.add_slot(make_slot(schedule_type=ScheduleType.BLOCKED))
        result = search.book_time_slot("slot-1", at(1, 9), at(1, 10), "client-a")
        assert result.error.code == "NOT_BOOKABLE"

    def test_too_little_notice(self, repo, search, clock):
        repo.add_slot(make_slot(min_advance_hours=24))
        clock.now = at(1, 0)
        result = search.book_time_slot("slot-1", at(1, 9), at(1, 10), "client-a")
        assert result.error.code == "NOT_BOOKABLE"
        assert "advance notice" in result.error.message

    def test_outside_slot_window(self, repo, search):
        repo.add_slot(make_slot())
        result = search.book_time_slot("slot-1", at(1, 11), at(1, 13), "client-a")
        assert result.error.code == "NOT_BOOKABLE"

    def test_wrong_day_for_recurring_slot(self, repo, search):
        repo.add_slot(make_slot(
            schedule_type=ScheduleType.RECURRING,
            recurrence_rule=RecurrenceRule(pattern="weekly", days_of_week=[0]),
        ))
        assert search.book_time_slot("slot-1", at(5, 9), at(5, 10), "client-a").error.code == "NOT_BOOKABLE"
        assert search.book_time_slot("slot-1", at(4, 9), at(4, 10), "client-a").is_ok

    def test_stale_read_loses_race(self, repo, search, monkeypatch):
        repo.add_slot(make_slot(max_bookings=3))
        stale = repo.get_slot("slot-1")
        assert search.book_time_slot("slot-1", at(1, 9), at(1, 10), "client-a").is_ok

        monkeypatch.setattr(repo, "get_slot", lambda slot_id: stale)
        result = search.book_time_slot("slot-1", at(1, 10), at(1, 11), "client-b")
        assert result.error.code == "VERSION_CONFLICT"
        assert result.error.retryable
        monkeypatch.undo()
        assert repo.get_slot("slot-1").current_bookings == 1

    def test_concurrent_bookings_never_exceed_capacity(self, repo, search):
        repo.add_slot(make_slot(max_bookings=3))
        outcomes = []
        barrier = threading.Barrier(12)

        def worker(n):
            barrier.wait()
            while True:
                result = search.book_time_slot("slot-1", at(1, 9), at(1, 10), f"client-{n}")
                if result.is_ok or result.error.code != "VERSION_CONFLICT":
                    outcomes.append(result)
                    return

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        successes = [r for r in outcomes if r.is_ok]
        assert len(successes) == 3
        assert all(r.error.code == "FULLY_BOOKED" for r in outcomes if not r.is_ok)
        stored = repo.get_slot("slot-1")
        assert stored.current_bookings == 3
        assert stored.status == SlotStatus.BOOKED
