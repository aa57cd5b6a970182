"""
Booking engine demo entry point.

Runs a scripted walk through the engine against the in-memory repository:
publish a weekly slot, search it, reserve capacity, then take a booking
request through acceptance.

Usage:
    Demo run:     python main.py demo
    Slot search:  python main.py search
"""

import json
import logging
import sys
from datetime import timedelta

from booking_engine.config import settings
from booking_engine.engine import BookingEngine, create_engine
from booking_engine.errors import to_envelope
from booking_engine.logging_context import request_context
from booking_engine.schemas.common_schema import Actor

logger = logging.getLogger(__name__)

RETIREE = Actor(id="retiree-ada")
CLIENT = Actor(id="client-grace")


def _show(label: str, result) -> None:
    print(f"\n== {label}")
    print(json.dumps(to_envelope(result), indent=2, default=str))


def _publish_slot(engine: BookingEngine):
    start = engine.clock().date() + timedelta(days=2)
    result = engine.availability.create(RETIREE, {
        "title": "Strategy consulting hours",
        "schedule_type": "recurring",
        "recurrence_rule": {"pattern": "weekly", "days_of_week": [0, 2, 4]},
        "start_date": start.isoformat(),
        "start_time": "09:00",
        "end_time": "12:00",
        "time_zone": "America/New_York",
        "category": "consulting",
        "hourly_rate": 120,
        "max_bookings": 2,
        "min_advance_hours": 1,
    })
    _show("Publish weekly availability", result)
    return result


def _run_search(engine: BookingEngine) -> None:
    slot = _publish_slot(engine)
    if not slot.is_ok:
        return
    today = engine.clock().date()
    _show(
        "Find 60-minute slots over the next week",
        engine.availability.find_available_slots(
            RETIREE, RETIREE.id, today, today + timedelta(days=7), 60, 15
        ),
    )
    _show(
        "Next available 90-minute slot",
        engine.availability.get_next_available_slot(RETIREE, RETIREE.id, 90),
    )


def _run_demo(engine: BookingEngine) -> None:
    slot = _publish_slot(engine)
    if not slot.is_ok:
        return
    nxt = engine.availability.get_next_available_slot(RETIREE, RETIREE.id, 60)
    _show("Next available slot", nxt)
    if nxt.is_ok:
        candidate = nxt.value
        _show(
            "Reserve the slot",
            engine.availability.book_time_slot(
                CLIENT, candidate.availability_id, candidate.start, candidate.end,
                "Intro call",
            ),
        )

    booking = engine.bookings.create(CLIENT, {
        "client_id": CLIENT.id,
        "retiree_id": RETIREE.id,
        "title": "Go-to-market strategy review",
        "description": "Need help reviewing our go-to-market plan for Q3.",
        "engagement_type": "consulting",
        "proposed_rate": 120,
        "proposed_rate_type": "hourly",
        "estimated_hours": 10,
    })
    _show("Create booking request", booking)
    if not booking.is_ok:
        return
    booking_id = booking.value.id
    _show("Accept booking", engine.bookings.accept(RETIREE, booking_id, {"agreed_rate": 130}))
    _show("Booking history", engine.bookings.get_history(CLIENT, booking_id, {"sort_order": "asc"}))
    _show("Client dashboard", engine.bookings.get_dashboard(CLIENT))


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else "demo"
    logger.info("Starting %s in %s mode", settings.service_name, mode)
    with create_engine() as engine, request_context():
        if mode == "search":
            _run_search(engine)
        else:
            _run_demo(engine)
