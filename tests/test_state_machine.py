"""Tests for the booking lifecycle state machine."""

import pytest

from booking_engine.bookings.state_machine import (
    BookingAction,
    BookingStateMachine,
    InvalidTransitionError,
    TERMINAL_STATES,
    role_for_actor,
)
from booking_engine.schemas.booking_schema import ActorRole, BookingStatus
from tests.conftest import ADMIN, CLIENT, OUTSIDER, RETIREE, make_booking


@pytest.fixture
def state_machine():
    return BookingStateMachine(BookingStatus.REQUEST)


class TestCreation:
    def test_client_creates_request(self):
        sm = BookingStateMachine()
        t = sm.transition(BookingAction.CREATE, ActorRole.CLIENT)
        assert t.to_status == BookingStatus.REQUEST
        assert sm.current_status == BookingStatus.REQUEST

    def test_retiree_cannot_create(self):
        with pytest.raises(InvalidTransitionError):
            BookingStateMachine().transition(BookingAction.CREATE, ActorRole.RETIREE)

    def test_describe_without_status(self):
        assert BookingStateMachine().describe() == ""


class TestRetireeResponse:
    def test_accept(self, state_machine):
        state_machine.transition(BookingAction.ACCEPT, ActorRole.RETIREE)
        assert state_machine.current_status == BookingStatus.ACCEPTED
        assert not state_machine.is_terminal()

    def test_reject_is_terminal(self, state_machine):
        state_machine.transition(BookingAction.REJECT, ActorRole.RETIREE)
        assert state_machine.current_status == BookingStatus.REJECTED
        assert state_machine.is_terminal()

    def test_client_cannot_accept(self, state_machine):
        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.transition(BookingAction.ACCEPT, ActorRole.CLIENT)
        assert exc_info.value.code == "INVALID_TRANSITION"
        assert "Valid actions" in str(exc_info.value)
        assert state_machine.current_status == BookingStatus.REQUEST


class TestCancellation:
    @pytest.mark.parametrize("status", [BookingStatus.REQUEST, BookingStatus.ACCEPTED])
    @pytest.mark.parametrize("role", [ActorRole.CLIENT, ActorRole.ADMIN])
    def test_cancellable_states(self, status, role):
        sm = BookingStateMachine(status)
        sm.transition(BookingAction.CANCEL, role)
        assert sm.current_status == BookingStatus.CANCELLED

    def test_retiree_cannot_cancel(self, state_machine):
        with pytest.raises(InvalidTransitionError):
            state_machine.transition(BookingAction.CANCEL, ActorRole.RETIREE)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_report_cancellation_not_allowed(self, status):
        sm = BookingStateMachine(status)
        assert not sm.can_be_cancelled()
        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.transition(BookingAction.CANCEL, ActorRole.CLIENT)
        assert exc_info.value.code == "CANCELLATION_NOT_ALLOWED"


class TestUpdate:
    def test_update_is_self_loop_without_history(self, state_machine):
        t = state_machine.transition(BookingAction.UPDATE, ActorRole.CLIENT)
        assert t.to_status == BookingStatus.REQUEST
        assert not t.records_history

    def test_no_update_after_acceptance(self):
        with pytest.raises(InvalidTransitionError):
            BookingStateMachine(BookingStatus.ACCEPTED).transition(
                BookingAction.UPDATE, ActorRole.CLIENT
            )


class TestIntrospection:
    def test_valid_actions_per_role(self, state_machine):
        assert state_machine.get_valid_actions(ActorRole.RETIREE) == [
            BookingAction.ACCEPT, BookingAction.REJECT,
        ]
        assert state_machine.get_valid_actions(ActorRole.CLIENT) == [
            BookingAction.CANCEL, BookingAction.UPDATE,
        ]
        assert state_machine.get_valid_actions(ActorRole.ADMIN) == [BookingAction.CANCEL]

    def test_next_states_exclude_self_loops(self, state_machine):
        assert state_machine.next_possible_states(ActorRole.CLIENT) == [BookingStatus.CANCELLED]

    def test_terminal_has_no_next_states(self):
        for status in TERMINAL_STATES:
            sm = BookingStateMachine(status)
            for role in ActorRole:
                assert sm.next_possible_states(role) == []

    def test_every_status_described(self):
        for status in BookingStatus:
            assert BookingStateMachine(status).describe()

    def test_transition_table_is_closed(self):
        # every action target is itself a known status with a description
        for t in BookingStateMachine.TRANSITIONS:
            assert t.to_status in BookingStatus
            assert t.roles


class TestRoleForActor:
    def test_roles(self):
        booking = make_booking()
        assert role_for_actor(booking, CLIENT) == ActorRole.CLIENT
        assert role_for_actor(booking, RETIREE) == ActorRole.RETIREE
        assert role_for_actor(booking, ADMIN) == ActorRole.ADMIN
        assert role_for_actor(booking, OUTSIDER) is None
