"""Tests for the in-memory repository."""

from datetime import timedelta

import pytest

from booking_engine.repository.base import (
    EntityNotFoundError,
    RepositoryClosedError,
    RepositoryError,
    VersionConflictError,
)
from booking_engine.repository.memory import InMemoryRepository
from booking_engine.schemas.booking_schema import BookingStatus
from tests.conftest import NOW, make_booking, make_history_entry, make_slot


class TestSlots:
    def test_add_sets_version(self, repo):
        stored = repo.add_slot(make_slot())
        assert stored.version == 1
        assert repo.get_slot("slot-1").version == 1

    def test_duplicate_id(self, repo):
        repo.add_slot(make_slot())
        with pytest.raises(RepositoryError):
            repo.add_slot(make_slot())

    def test_reads_are_copies(self, repo):
        repo.add_slot(make_slot())
        copy = repo.get_slot("slot-1")
        copy.title = "Changed"
        assert repo.get_slot("slot-1").title == "Consulting hours"

    def test_compare_and_swap(self, repo):
        stored = repo.add_slot(make_slot())
        updated = repo.update_slot(stored.model_copy(update={"title": "New"}), expected_version=1)
        assert updated.version == 2

        with pytest.raises(VersionConflictError) as exc_info:
            repo.update_slot(stored.model_copy(update={"title": "Stale"}), expected_version=1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert repo.get_slot("slot-1").title == "New"

    def test_update_missing(self, repo):
        with pytest.raises(EntityNotFoundError):
            repo.update_slot(make_slot(id="ghost"), expected_version=1)

    def test_list_by_owner(self, repo):
        repo.add_slot(make_slot())
        repo.add_slot(make_slot(id="slot-2", owner_id="someone-else"))
        assert [s.id for s in repo.list_slots("owner-1")] == ["slot-1"]
        assert len(repo.list_slots()) == 2

    def test_delete(self, repo):
        repo.add_slot(make_slot())
        with pytest.raises(VersionConflictError):
            repo.delete_slot("slot-1", expected_version=5)
        repo.delete_slot("slot-1", expected_version=1)
        assert repo.get_slot("slot-1") is None
        with pytest.raises(EntityNotFoundError):
            repo.delete_slot("slot-1", expected_version=1)


class TestBookings:
    def test_add_records_history(self, repo):
        stored = repo.add_booking(make_booking(), make_history_entry())
        assert stored.version == 1
        assert len(repo.get_history("booking-1")) == 1

    def test_commit_appends_history(self, repo):
        repo.add_booking(make_booking(), make_history_entry())
        accepted = make_booking(status=BookingStatus.ACCEPTED)
        entry = make_history_entry(
            entry_id="hist-2",
            from_status=BookingStatus.REQUEST,
            to_status=BookingStatus.ACCEPTED,
            timestamp=NOW + timedelta(minutes=1),
        )
        stored = repo.commit_booking(accepted, expected_version=1, entry=entry)
        assert stored.version == 2
        assert [h.id for h in repo.get_history("booking-1")] == ["hist-1", "hist-2"]

    def test_conflicting_commit_leaves_history_untouched(self, repo):
        repo.add_booking(make_booking(), make_history_entry())
        entry = make_history_entry(entry_id="hist-2", to_status=BookingStatus.ACCEPTED)
        with pytest.raises(VersionConflictError):
            repo.commit_booking(make_booking(status=BookingStatus.ACCEPTED), 7, entry)
        assert len(repo.get_history("booking-1")) == 1
        assert repo.get_booking("booking-1").status == BookingStatus.REQUEST

    def test_history_timestamps_strictly_increase(self, repo):
        repo.add_booking(make_booking(), make_history_entry())
        repo.commit_booking(
            make_booking(), 1,
            make_history_entry(entry_id="hist-2", timestamp=NOW - timedelta(seconds=5)),
        )
        first, second = repo.get_history("booking-1")
        assert second.timestamp > first.timestamp

    def test_commit_without_entry(self, repo):
        repo.add_booking(make_booking(), make_history_entry())
        repo.commit_booking(make_booking(title="Edited title"), 1)
        assert len(repo.get_history("booking-1")) == 1
        assert repo.get_booking("booking-1").title == "Edited title"

    def test_list_by_participant(self, repo):
        repo.add_booking(make_booking(), make_history_entry())
        repo.add_booking(
            make_booking("booking-2", client_id="x", retiree_id="y"),
            make_history_entry("booking-2"),
        )
        assert [b.id for b in repo.list_bookings("retiree-b")] == ["booking-1"]
        assert len(repo.list_bookings()) == 2

    def test_history_of_unknown_booking_is_empty(self, repo):
        assert repo.get_history("missing") == []

    def test_history_entries_cannot_be_changed_after_append(self, repo):
        entry = make_history_entry().model_copy(update={"metadata": {"engagement_type": "one_time"}})
        repo.add_booking(make_booking(), entry)
        entry.metadata["engagement_type"] = "changed by caller"
        repo.get_history("booking-1")[0].metadata["engagement_type"] = "changed by reader"
        assert repo.get_history("booking-1")[0].metadata == {"engagement_type": "one_time"}


class TestLifecycle:
    def test_closed_repository_refuses_calls(self):
        repo = InMemoryRepository()
        repo.add_slot(make_slot())
        repo.close()
        assert repo.closed
        with pytest.raises(RepositoryClosedError):
            repo.get_slot("slot-1")
        repo.close()

    def test_context_manager(self):
        with InMemoryRepository() as repo:
            repo.add_slot(make_slot())
        assert repo.closed
