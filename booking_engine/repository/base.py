"""
Storage interfaces for availability slots and bookings.

Every write is a compare-and-swap against the entity's ``version`` stamp:
callers read an entity, build the modified copy, and hand both back with
the version they read. A stale version raises VersionConflictError instead
of overwriting a concurrent change.
"""

from abc import ABC, abstractmethod
from typing import Optional

from booking_engine.schemas.availability_schema import AvailabilitySlot
from booking_engine.schemas.booking_schema import Booking, BookingHistoryEntry


class RepositoryError(Exception):
    """Base class for storage failures."""


class EntityNotFoundError(RepositoryError):
    """Raised when a write targets an entity that does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class VersionConflictError(RepositoryError):
    """Raised when the stored version differs from the expected one."""

    def __init__(self, entity: str, entity_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"{entity} {entity_id}: expected version {expected}, found {actual}"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual


class RepositoryClosedError(RepositoryError):
    """Raised when a closed repository is used."""


class AvailabilityRepository(ABC):
    """Persistence for availability slots."""

    @abstractmethod
    def add_slot(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        """Store a new slot.

        Returns:
            The stored slot stamped with version 1.
        """

    @abstractmethod
    def get_slot(self, slot_id: str) -> Optional[AvailabilitySlot]:
        """Return a copy of the slot, or None if it does not exist."""

    @abstractmethod
    def list_slots(self, owner_id: Optional[str] = None) -> list[AvailabilitySlot]:
        """Return copies of all slots, optionally restricted to one owner."""

    @abstractmethod
    def update_slot(self, slot: AvailabilitySlot, expected_version: int) -> AvailabilitySlot:
        """Replace a slot if its stored version still equals expected_version.

        Raises:
            EntityNotFoundError: If the slot does not exist.
            VersionConflictError: If another write got there first.
        """

    @abstractmethod
    def delete_slot(self, slot_id: str, expected_version: int) -> None:
        """Remove a slot under the same compare-and-swap rule as updates."""


class BookingRepository(ABC):
    """Persistence for bookings and their append-only history."""

    @abstractmethod
    def add_booking(self, booking: Booking, entry: BookingHistoryEntry) -> Booking:
        """Store a new booking together with its creation history entry."""

    @abstractmethod
    def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Return a copy of the booking, or None if it does not exist."""

    @abstractmethod
    def list_bookings(self, participant_id: Optional[str] = None) -> list[Booking]:
        """Return bookings where participant_id is client or retiree (all if None)."""

    @abstractmethod
    def commit_booking(
        self,
        booking: Booking,
        expected_version: int,
        entry: Optional[BookingHistoryEntry] = None,
    ) -> Booking:
        """Atomically replace a booking and append its history entry.

        Either both the new booking state and the entry become visible,
        or neither does.

        Raises:
            EntityNotFoundError: If the booking does not exist.
            VersionConflictError: If another write got there first.
        """

    @abstractmethod
    def get_history(self, booking_id: str) -> list[BookingHistoryEntry]:
        """Return the booking's history entries, oldest first."""


class Repository(AvailabilityRepository, BookingRepository):
    """Combined storage used by the engine, with explicit lifecycle."""

    def close(self) -> None:
        """Release held resources. Further calls raise RepositoryClosedError."""

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
