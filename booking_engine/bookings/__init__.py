from booking_engine.bookings.state_machine import (
    BookingAction,
    BookingStateMachine,
    InvalidTransitionError,
    role_for_actor,
)
from booking_engine.bookings.service import BookingService

__all__ = [
    "BookingAction",
    "BookingStateMachine",
    "InvalidTransitionError",
    "role_for_actor",
    "BookingService",
]
