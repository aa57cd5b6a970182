"""
In-memory reference repository.

Thread-safe: each slot and booking has its own lock, taken for the whole
read-compare-write of a compare-and-swap. Reads hand out deep copies so
callers can never mutate stored state in place.
"""

import logging
import threading
from collections import defaultdict
from datetime import timedelta
from typing import Optional

from booking_engine.repository.base import (
    EntityNotFoundError,
    Repository,
    RepositoryClosedError,
    RepositoryError,
    VersionConflictError,
)
from booking_engine.schemas.availability_schema import AvailabilitySlot
from booking_engine.schemas.booking_schema import Booking, BookingHistoryEntry

logger = logging.getLogger(__name__)

HISTORY_TIMESTAMP_STEP = timedelta(microseconds=1)


class InMemoryRepository(Repository):
    """Dictionary-backed storage for slots, bookings and booking history."""

    def __init__(self) -> None:
        self._slots: dict[str, AvailabilitySlot] = {}
        self._bookings: dict[str, Booking] = {}
        self._history: dict[str, list[BookingHistoryEntry]] = defaultdict(list)
        self._slot_locks: dict[str, threading.Lock] = {}
        self._booking_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._closed = False

    # --- lifecycle ---

    def close(self) -> None:
        with self._registry_lock:
            if self._closed:
                return
            self._closed = True
            self._slots.clear()
            self._bookings.clear()
            self._history.clear()
        logger.debug("In-memory repository closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise RepositoryClosedError("Repository has been closed")

    def _lock_for(self, locks: dict[str, threading.Lock], key: str) -> threading.Lock:
        with self._registry_lock:
            lock = locks.get(key)
            if lock is None:
                lock = locks[key] = threading.Lock()
            return lock

    # --- availability ---

    def add_slot(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        self._ensure_open()
        with self._lock_for(self._slot_locks, slot.id):
            if slot.id in self._slots:
                raise RepositoryError(f"Slot {slot.id} already exists")
            stored = slot.model_copy(update={"version": 1}, deep=True)
            self._slots[slot.id] = stored
        return stored.model_copy(deep=True)

    def get_slot(self, slot_id: str) -> Optional[AvailabilitySlot]:
        self._ensure_open()
        slot = self._slots.get(slot_id)
        return slot.model_copy(deep=True) if slot is not None else None

    def list_slots(self, owner_id: Optional[str] = None) -> list[AvailabilitySlot]:
        self._ensure_open()
        slots = list(self._slots.values())
        return [
            s.model_copy(deep=True) for s in slots
            if owner_id is None or s.owner_id == owner_id
        ]

    def update_slot(self, slot: AvailabilitySlot, expected_version: int) -> AvailabilitySlot:
        self._ensure_open()
        with self._lock_for(self._slot_locks, slot.id):
            current = self._slots.get(slot.id)
            if current is None:
                raise EntityNotFoundError("Slot", slot.id)
            if current.version != expected_version:
                raise VersionConflictError("Slot", slot.id, expected_version, current.version)
            stored = slot.model_copy(update={"version": current.version + 1}, deep=True)
            self._slots[slot.id] = stored
        return stored.model_copy(deep=True)

    def delete_slot(self, slot_id: str, expected_version: int) -> None:
        self._ensure_open()
        with self._lock_for(self._slot_locks, slot_id):
            current = self._slots.get(slot_id)
            if current is None:
                raise EntityNotFoundError("Slot", slot_id)
            if current.version != expected_version:
                raise VersionConflictError("Slot", slot_id, expected_version, current.version)
            del self._slots[slot_id]

    # --- bookings ---

    def add_booking(self, booking: Booking, entry: BookingHistoryEntry) -> Booking:
        self._ensure_open()
        with self._lock_for(self._booking_locks, booking.id):
            if booking.id in self._bookings:
                raise RepositoryError(f"Booking {booking.id} already exists")
            stored = booking.model_copy(update={"version": 1}, deep=True)
            self._bookings[booking.id] = stored
            self._append_history(booking.id, entry)
        return stored.model_copy(deep=True)

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        self._ensure_open()
        booking = self._bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking is not None else None

    def list_bookings(self, participant_id: Optional[str] = None) -> list[Booking]:
        self._ensure_open()
        bookings = list(self._bookings.values())
        return [
            b.model_copy(deep=True) for b in bookings
            if participant_id is None or b.is_participant(participant_id)
        ]

    def commit_booking(
        self,
        booking: Booking,
        expected_version: int,
        entry: Optional[BookingHistoryEntry] = None,
    ) -> Booking:
        self._ensure_open()
        with self._lock_for(self._booking_locks, booking.id):
            current = self._bookings.get(booking.id)
            if current is None:
                raise EntityNotFoundError("Booking", booking.id)
            if current.version != expected_version:
                raise VersionConflictError(
                    "Booking", booking.id, expected_version, current.version
                )
            stored = booking.model_copy(update={"version": current.version + 1}, deep=True)
            self._bookings[booking.id] = stored
            if entry is not None:
                self._append_history(booking.id, entry)
        return stored.model_copy(deep=True)

    def get_history(self, booking_id: str) -> list[BookingHistoryEntry]:
        self._ensure_open()
        return [e.model_copy(deep=True) for e in self._history.get(booking_id, ())]

    def _append_history(self, booking_id: str, entry: BookingHistoryEntry) -> None:
        """Append under the booking lock, keeping timestamps strictly increasing."""
        entries = self._history[booking_id]
        update = {}
        if entries and entry.timestamp <= entries[-1].timestamp:
            update["timestamp"] = entries[-1].timestamp + HISTORY_TIMESTAMP_STEP
        entries.append(entry.model_copy(update=update, deep=True))
