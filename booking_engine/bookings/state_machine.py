"""
Finite state machine for the booking lifecycle.

Bookings start in REQUEST and move to ACCEPTED, REJECTED or CANCELLED.
REJECTED and CANCELLED are terminal; ACCEPTED can only be cancelled.
Each transition names the roles allowed to fire it, so "what can this
user do next" is a lookup in the table rather than scattered checks.

Usage:
    sm = BookingStateMachine(BookingStatus.REQUEST)
    sm.transition(BookingAction.ACCEPT, ActorRole.RETIREE)
    assert sm.current_status == BookingStatus.ACCEPTED
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from booking_engine.schemas.booking_schema import ActorRole, Booking, BookingStatus
from booking_engine.schemas.common_schema import Actor

logger = logging.getLogger(__name__)


class BookingAction(str, Enum):
    """Operations that may move a booking between states."""
    CREATE = "create"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    UPDATE = "update"


@dataclass(frozen=True)
class Transition:
    """A single valid state transition and the roles allowed to fire it."""
    from_status: Optional[BookingStatus]
    to_status: BookingStatus
    action: BookingAction
    roles: frozenset[ActorRole]
    records_history: bool = True


class InvalidTransitionError(Exception):
    """Raised when an action is not valid from the current status for a role."""

    def __init__(self, message: str, code: str = "INVALID_TRANSITION") -> None:
        super().__init__(message)
        self.code = code


STATE_DESCRIPTIONS: dict[BookingStatus, str] = {
    BookingStatus.REQUEST: "Booking request created",
    BookingStatus.ACCEPTED: "Booking accepted by retiree",
    BookingStatus.REJECTED: "Booking declined by retiree",
    BookingStatus.CANCELLED: "Booking cancelled",
}

TERMINAL_STATES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED})

_CLIENT = frozenset({ActorRole.CLIENT})
_RETIREE = frozenset({ActorRole.RETIREE})
_CANCELLERS = frozenset({ActorRole.CLIENT, ActorRole.ADMIN})


class BookingStateMachine:
    """
    Deterministic lifecycle for a single booking.

    Every transition must be listed in TRANSITIONS. An action without a
    matching entry for the current status and role is rejected with an
    error naming the actions that are allowed.
    """

    TRANSITIONS: list[Transition] = [
        # --- Creation ---
        Transition(None, BookingStatus.REQUEST, BookingAction.CREATE, _CLIENT),

        # --- Retiree response ---
        Transition(BookingStatus.REQUEST, BookingStatus.ACCEPTED, BookingAction.ACCEPT, _RETIREE),
        Transition(BookingStatus.REQUEST, BookingStatus.REJECTED, BookingAction.REJECT, _RETIREE),

        # --- Cancellation ---
        Transition(BookingStatus.REQUEST, BookingStatus.CANCELLED, BookingAction.CANCEL, _CANCELLERS),
        Transition(BookingStatus.ACCEPTED, BookingStatus.CANCELLED, BookingAction.CANCEL, _CANCELLERS),

        # --- Edits to a pending request ---
        Transition(BookingStatus.REQUEST, BookingStatus.REQUEST, BookingAction.UPDATE, _CLIENT,
                   records_history=False),
    ]

    def __init__(self, status: Optional[BookingStatus] = None) -> None:
        self._current_status = status

    @property
    def current_status(self) -> Optional[BookingStatus]:
        return self._current_status

    def find(self, action: BookingAction, role: ActorRole) -> Optional[Transition]:
        """Look up the transition for an action and role from the current status."""
        for t in self.TRANSITIONS:
            if t.from_status == self._current_status and t.action == action and role in t.roles:
                return t
        return None

    def transition(self, action: BookingAction, role: ActorRole) -> Transition:
        """
        Fire an action as the given role.

        Args:
            action: The lifecycle operation being attempted.
            role: The caller's role relative to the booking.

        Returns:
            The matching transition; current_status is advanced to its target.

        Raises:
            InvalidTransitionError: If no transition matches.
        """
        t = self.find(action, role)
        if t is None:
            current = self._current_status.value if self._current_status else "none"
            if action == BookingAction.CANCEL and self._current_status in TERMINAL_STATES:
                raise InvalidTransitionError(
                    f"Booking in '{current}' status cannot be cancelled",
                    code="CANCELLATION_NOT_ALLOWED",
                )
            valid = [a.value for a in self.get_valid_actions(role)]
            raise InvalidTransitionError(
                f"Cannot {action.value} a booking in '{current}' status as {role.value}. "
                f"Valid actions: {valid}"
            )

        old_status = self._current_status
        self._current_status = t.to_status
        logger.debug(
            "Booking transition: %s -> %s (action: %s, role: %s)",
            old_status.value if old_status else None, t.to_status.value,
            action.value, role.value,
        )
        return t

    def get_valid_actions(self, role: ActorRole) -> list[BookingAction]:
        """Return all actions the role may take from the current status."""
        return [
            t.action for t in self.TRANSITIONS
            if t.from_status == self._current_status and role in t.roles
        ]

    def next_possible_states(self, role: ActorRole) -> list[BookingStatus]:
        """Distinct states the role can move the booking to, excluding self-loops."""
        states: list[BookingStatus] = []
        for t in self.TRANSITIONS:
            if (
                t.from_status == self._current_status
                and role in t.roles
                and t.to_status != self._current_status
                and t.to_status not in states
            ):
                states.append(t.to_status)
        return states

    def describe(self) -> str:
        if self._current_status is None:
            return ""
        return STATE_DESCRIPTIONS[self._current_status]

    def is_terminal(self) -> bool:
        return self._current_status in TERMINAL_STATES

    def can_be_cancelled(self) -> bool:
        return any(
            t.from_status == self._current_status and t.action == BookingAction.CANCEL
            for t in self.TRANSITIONS
        )


def role_for_actor(booking: Booking, actor: Actor) -> Optional[ActorRole]:
    """The role an actor plays on a booking, or None for outsiders."""
    if actor.id == booking.client_id:
        return ActorRole.CLIENT
    if actor.id == booking.retiree_id:
        return ActorRole.RETIREE
    if actor.is_admin:
        return ActorRole.ADMIN
    return None
