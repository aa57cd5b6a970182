"""
Booking lifecycle service.

Creates booking requests and moves them through the state machine on
behalf of clients, retirees and admins. Every status change is committed
together with its history entry in one compare-and-swap, so the audit
trail always matches the booking state.
"""

import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Optional

from booking_engine.config import BookingConfig, settings
from booking_engine.errors import (
    Ok,
    Result,
    business_rule,
    internal_error,
    not_found,
    parse_command,
    unauthorized,
    validation_error,
    version_conflict,
)
from booking_engine.logging_context import get_request_logger
from booking_engine.rate_limit import SlidingWindowRateLimiter
from booking_engine.repository.base import (
    BookingRepository,
    EntityNotFoundError,
    RepositoryError,
    VersionConflictError,
)
from booking_engine.schemas.booking_schema import (
    AcceptBookingCommand,
    ActorRole,
    Booking,
    BookingDashboard,
    BookingDetails,
    BookingHistoryEntry,
    BookingQuery,
    BookingStats,
    BookingStatus,
    CancelBookingCommand,
    CreateBookingCommand,
    DashboardSummary,
    HistoryQuery,
    RejectBookingCommand,
    TransitionInfo,
    UpdateBookingCommand,
    UserBookingStats,
)
from booking_engine.schemas.common_schema import Actor, Page
from booking_engine.bookings.state_machine import (
    STATE_DESCRIPTIONS,
    BookingAction,
    BookingStateMachine,
    InvalidTransitionError,
    role_for_actor,
)
from booking_engine.utils import utc_now

logger = get_request_logger(__name__)

DEFAULT_ACCEPT_RESPONSE = "Booking accepted"


def _sorted(items: list, field: str, order: str) -> list:
    """Sort by an attribute; entries where it is None always go last."""
    present = [i for i in items if getattr(i, field) is not None]
    missing = [i for i in items if getattr(i, field) is None]
    present.sort(key=lambda i: getattr(i, field), reverse=order == "desc")
    return present + missing


def compute_stats(bookings: list[Booking]) -> BookingStats:
    """Counts by status and engagement type, total value and average rate."""
    rates = [
        b.agreed_rate if b.agreed_rate is not None else b.proposed_rate
        for b in bookings
        if b.agreed_rate is not None or b.proposed_rate is not None
    ]
    return BookingStats(
        total=len(bookings),
        by_status=dict(Counter(b.status.value for b in bookings)),
        by_engagement_type=dict(Counter(b.engagement_type.value for b in bookings)),
        total_value=round(sum(b.value for b in bookings), 2),
        average_rate=round(sum(rates) / len(rates), 2) if rates else 0.0,
    )


class BookingService:
    """Booking requests, responses, cancellations and their audit trail."""

    def __init__(
        self,
        repository: BookingRepository,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        clock: Callable[[], datetime] = utc_now,
        config: Optional[BookingConfig] = None,
    ) -> None:
        self._repo = repository
        self._limiter = rate_limiter or SlidingWindowRateLimiter()
        self._clock = clock
        self._config = config or settings.booking

    # --- helpers ---

    def _load(self, booking_id: str) -> Result[Booking]:
        try:
            booking = self._repo.get_booking(booking_id)
        except RepositoryError:
            logger.exception("Failed to load booking %s", booking_id)
            return internal_error("Failed to load booking", "STORAGE_ERROR")
        if booking is None:
            return not_found("BOOKING_NOT_FOUND", "Booking not found")
        return Ok(booking)

    def _load_history(self, booking_id: str) -> Result[list[BookingHistoryEntry]]:
        try:
            return Ok(self._repo.get_history(booking_id))
        except RepositoryError:
            logger.exception("Failed to load history of booking %s", booking_id)
            return internal_error("Failed to load booking history", "STORAGE_ERROR")

    def _load_bookings(self, participant_id: Optional[str]) -> Result[list[Booking]]:
        try:
            return Ok(self._repo.list_bookings(participant_id))
        except RepositoryError:
            logger.exception("Failed to list bookings for %s", participant_id or "all users")
            return internal_error("Failed to load bookings", "STORAGE_ERROR")

    def _history_entry(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        actor: Actor,
        role: ActorRole,
        timestamp: datetime,
        metadata: Optional[dict[str, Any]] = None,
    ) -> BookingHistoryEntry:
        if from_status is None:
            description = f"Booking '{booking.title}' requested"
        else:
            description = f"Status changed from {from_status.value} to {to_status.value}"
        return BookingHistoryEntry(
            id=f"hist_{uuid.uuid4().hex[:12]}",
            booking_id=booking.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor.id,
            actor_role=role,
            title=STATE_DESCRIPTIONS[to_status],
            description=description,
            timestamp=timestamp,
            metadata=metadata or {},
        )

    def _commit(
        self,
        booking: Booking,
        expected_version: int,
        entry: Optional[BookingHistoryEntry] = None,
    ) -> Result[Booking]:
        try:
            return Ok(self._repo.commit_booking(booking, expected_version, entry))
        except VersionConflictError:
            logger.info("Concurrent modification of booking %s", booking.id)
            return version_conflict("Booking", booking.id)
        except EntityNotFoundError:
            return not_found("BOOKING_NOT_FOUND", "Booking not found")
        except RepositoryError:
            logger.exception("Failed to store booking %s", booking.id)
            return internal_error("Failed to save booking", "STORAGE_ERROR")

    def _change_status(
        self,
        actor: Actor,
        booking: Booking,
        role: ActorRole,
        action: BookingAction,
        changes: dict[str, Any],
        metadata: dict[str, Any],
    ) -> Result[Booking]:
        """Run a status transition and commit the booking with its history entry."""
        limited = self._limiter.acquire("state_change", actor.id)
        if not limited.is_ok:
            return limited

        machine = BookingStateMachine(booking.status)
        try:
            transition = machine.transition(action, role)
        except InvalidTransitionError as exc:
            return business_rule(exc.code, str(exc), current_status=booking.status.value)

        now = self._clock()
        updated = booking.model_copy(update={
            **changes,
            "status": transition.to_status,
            "status_changed_at": now,
            "status_changed_by": actor.id,
            "updated_at": now,
        })
        entry = self._history_entry(
            updated, booking.status, transition.to_status, actor, role, now, metadata
        )
        committed = self._commit(updated, booking.version, entry)
        if committed.is_ok:
            logger.info(
                "Booking %s: %s -> %s by %s (%s)",
                booking.id, booking.status.value, transition.to_status.value,
                actor.id, role.value,
            )
        return committed

    # --- lifecycle ---

    def create(self, actor: Actor, command: Any) -> Result[Booking]:
        """Create a booking request on behalf of the client."""
        parsed = parse_command(CreateBookingCommand, command)
        if not parsed.is_ok:
            return parsed
        cmd: CreateBookingCommand = parsed.value

        if actor.id != cmd.client_id:
            return unauthorized(
                "UNAUTHORIZED_CREATION", "Only the client can create a booking request"
            )
        if cmd.client_id == cmd.retiree_id:
            return business_rule("SAME_USER", "Client and retiree cannot be the same user")

        limited = self._limiter.acquire("create", actor.id)
        if not limited.is_ok:
            return limited

        transition = BookingStateMachine().transition(BookingAction.CREATE, ActorRole.CLIENT)
        now = self._clock()
        booking = Booking(
            id=f"booking_{uuid.uuid4().hex[:12]}",
            status=transition.to_status,
            status_changed_at=now,
            status_changed_by=actor.id,
            created_at=now,
            updated_at=now,
            **cmd.model_dump(),
        )
        entry = self._history_entry(
            booking, None, transition.to_status, actor, ActorRole.CLIENT, now,
            {"engagement_type": booking.engagement_type.value},
        )
        try:
            stored = self._repo.add_booking(booking, entry)
        except RepositoryError:
            logger.exception("Failed to store booking for client %s", actor.id)
            return internal_error("Failed to create booking", "STORAGE_ERROR")

        logger.info(
            "Booking created: %s from %s to %s (%s)",
            stored.id, stored.client_id, stored.retiree_id, stored.engagement_type.value,
        )
        return Ok(stored)

    def accept(self, actor: Actor, booking_id: str, command: Any = None) -> Result[Booking]:
        """Retiree accepts a request; agreed terms default to the proposed ones."""
        parsed = parse_command(AcceptBookingCommand, command or {})
        if not parsed.is_ok:
            return parsed
        cmd: AcceptBookingCommand = parsed.value
        loaded = self._load(booking_id)
        if not loaded.is_ok:
            return loaded
        booking: Booking = loaded.value
        if actor.id != booking.retiree_id:
            return unauthorized(
                "UNAUTHORIZED_ACCEPTANCE", "Only the retiree can accept this booking"
            )

        agreed_rate = cmd.agreed_rate if cmd.agreed_rate is not None else booking.proposed_rate
        agreed_rate_type = cmd.agreed_rate_type or booking.proposed_rate_type
        changes = {
            "agreed_rate": agreed_rate,
            "agreed_rate_type": agreed_rate_type,
            "retiree_response": cmd.retiree_response or DEFAULT_ACCEPT_RESPONSE,
        }
        metadata = {
            "agreed_rate": agreed_rate,
            "agreed_rate_type": agreed_rate_type.value if agreed_rate_type else None,
        }
        return self._change_status(
            actor, booking, ActorRole.RETIREE, BookingAction.ACCEPT, changes, metadata
        )

    def reject(self, actor: Actor, booking_id: str, command: Any) -> Result[Booking]:
        """Retiree declines a request with a reason."""
        parsed = parse_command(RejectBookingCommand, command or {})
        if not parsed.is_ok:
            return parsed
        reason = parsed.value.rejection_reason
        loaded = self._load(booking_id)
        if not loaded.is_ok:
            return loaded
        booking: Booking = loaded.value
        if actor.id != booking.retiree_id:
            return unauthorized(
                "UNAUTHORIZED_REJECTION", "Only the retiree can reject this booking"
            )
        return self._change_status(
            actor, booking, ActorRole.RETIREE, BookingAction.REJECT,
            {"rejection_reason": reason, "retiree_response": reason},
            {"reason": reason},
        )

    def cancel(self, actor: Actor, booking_id: str, command: Any) -> Result[Booking]:
        """Client (or an admin) cancels a pending or accepted booking."""
        parsed = parse_command(CancelBookingCommand, command or {})
        if not parsed.is_ok:
            return parsed
        reason = parsed.value.cancellation_reason
        loaded = self._load(booking_id)
        if not loaded.is_ok:
            return loaded
        booking: Booking = loaded.value

        if actor.id == booking.client_id:
            role = ActorRole.CLIENT
        elif actor.is_admin:
            role = ActorRole.ADMIN
        else:
            return unauthorized(
                "UNAUTHORIZED_CANCELLATION", "Only the client or an admin can cancel this booking"
            )
        return self._change_status(
            actor, booking, role, BookingAction.CANCEL,
            {"cancellation_reason": reason},
            {"reason": reason, "cancelled_by_role": role.value},
        )

    def update(self, actor: Actor, booking_id: str, command: Any) -> Result[Booking]:
        """Client edits a pending request. Does not add a history entry."""
        parsed = parse_command(UpdateBookingCommand, command)
        if not parsed.is_ok:
            return parsed
        changes = parsed.value.changes()
        loaded = self._load(booking_id)
        if not loaded.is_ok:
            return loaded
        booking: Booking = loaded.value
        if actor.id != booking.client_id:
            return unauthorized("UNAUTHORIZED_UPDATE", "Only the client can update this booking")

        limited = self._limiter.acquire("update", actor.id)
        if not limited.is_ok:
            return limited

        try:
            BookingStateMachine(booking.status).transition(BookingAction.UPDATE, ActorRole.CLIENT)
        except InvalidTransitionError as exc:
            return business_rule(exc.code, str(exc), current_status=booking.status.value)

        start = changes.get("start_date", booking.start_date)
        end = changes.get("end_date", booking.end_date)
        if start and end and start >= end:
            return validation_error(
                "INVALID_DATE_RANGE", "Start date must be before end date", "end_date"
            )

        updated = booking.model_copy(update={**changes, "updated_at": self._clock()})
        committed = self._commit(updated, booking.version)
        if committed.is_ok:
            logger.info("Booking updated: %s fields=%s", booking_id, sorted(changes))
        return committed

    # --- queries ---

    def get_booking(self, actor: Actor, booking_id: str) -> Result[BookingDetails]:
        """Booking with the caller's role, next states and recent history."""
        loaded = self._load(booking_id)
        if not loaded.is_ok:
            return loaded
        booking: Booking = loaded.value
        role = role_for_actor(booking, actor)
        if role is None:
            return unauthorized("UNAUTHORIZED_VIEW", "Not authorized to view this booking")

        history = self._load_history(booking_id)
        if not history.is_ok:
            return history
        machine = BookingStateMachine(booking.status)
        recent = list(reversed(history.value))[: self._config.details_history_limit]
        return Ok(BookingDetails(
            booking=booking,
            user_role=role,
            next_possible_states=machine.next_possible_states(role),
            state_description=machine.describe(),
            is_terminal=machine.is_terminal(),
            can_be_cancelled=machine.can_be_cancelled(),
            history=recent,
        ))

    def list_bookings(self, actor: Actor, query: Any = None) -> Result[Page[Booking]]:
        """Bookings the caller takes part in, filtered, sorted and paginated."""
        parsed = parse_command(BookingQuery, query or {})
        if not parsed.is_ok:
            return parsed
        q: BookingQuery = parsed.value

        if not actor.is_admin:
            for other in (q.client_id, q.retiree_id):
                if other is not None and other != actor.id:
                    return unauthorized(
                        "UNAUTHORIZED_SEARCH", "Cannot search other users' bookings"
                    )
        loaded = self._load_bookings(None if actor.is_admin else actor.id)
        if not loaded.is_ok:
            return loaded
        bookings = loaded.value

        if q.client_id:
            bookings = [b for b in bookings if b.client_id == q.client_id]
        if q.retiree_id:
            bookings = [b for b in bookings if b.retiree_id == q.retiree_id]
        if q.status:
            bookings = [b for b in bookings if b.status == q.status]
        if q.engagement_type:
            bookings = [b for b in bookings if b.engagement_type == q.engagement_type]
        if q.service_category:
            bookings = [b for b in bookings if b.service_category == q.service_category]

        bookings = _sorted(bookings, q.sort_by, q.sort_order)
        return Ok(Page[Booking].from_items(bookings, q.page, q.limit))

    def get_transitions(self, actor: Actor, booking_id: str) -> Result[TransitionInfo]:
        loaded = self._load(booking_id)
        if not loaded.is_ok:
            return loaded
        booking: Booking = loaded.value
        role = role_for_actor(booking, actor)
        if role is None:
            return unauthorized("UNAUTHORIZED_VIEW", "Not authorized to view this booking")
        machine = BookingStateMachine(booking.status)
        return Ok(TransitionInfo(
            booking_id=booking.id,
            current_status=booking.status,
            user_role=role,
            next_possible_states=machine.next_possible_states(role),
            allowed_actions=[a.value for a in machine.get_valid_actions(role)],
            state_description=machine.describe(),
            is_terminal=machine.is_terminal(),
        ))

    def get_history(
        self, actor: Actor, booking_id: str, query: Any = None
    ) -> Result[Page[BookingHistoryEntry]]:
        """Paginated audit trail, newest first unless sort_order is asc."""
        parsed = parse_command(HistoryQuery, query or {})
        if not parsed.is_ok:
            return parsed
        q: HistoryQuery = parsed.value
        loaded = self._load(booking_id)
        if not loaded.is_ok:
            return loaded
        if role_for_actor(loaded.value, actor) is None:
            return unauthorized("UNAUTHORIZED_VIEW", "Not authorized to view this booking")

        loaded_history = self._load_history(booking_id)
        if not loaded_history.is_ok:
            return loaded_history
        history = loaded_history.value
        if q.sort_order == "desc":
            history.reverse()
        limit = min(q.limit, self._config.history_page_limit)
        return Ok(Page[BookingHistoryEntry].from_items(history, q.page, limit))

    def get_user_stats(
        self, actor: Actor, user_id: Optional[str] = None
    ) -> Result[UserBookingStats]:
        user_id = user_id or actor.id
        if user_id != actor.id and not actor.is_admin:
            return unauthorized("UNAUTHORIZED_VIEW", "Cannot view another user's statistics")
        loaded = self._load_bookings(user_id)
        if not loaded.is_ok:
            return loaded
        bookings = loaded.value
        return Ok(UserBookingStats(
            user_id=user_id,
            as_client=compute_stats([b for b in bookings if b.client_id == user_id]),
            as_retiree=compute_stats([b for b in bookings if b.retiree_id == user_id]),
            combined=compute_stats(bookings),
        ))

    def get_dashboard(self, actor: Actor) -> Result[BookingDashboard]:
        """Stats plus recent and active bookings for the caller."""
        stats = self.get_user_stats(actor)
        if not stats.is_ok:
            return stats
        loaded = self._load_bookings(actor.id)
        if not loaded.is_ok:
            return loaded
        bookings = loaded.value
        recent = _sorted(bookings, "updated_at", "desc")[: self._config.dashboard_recent_limit]
        accepted = [b for b in bookings if b.status == BookingStatus.ACCEPTED]
        active = _sorted(accepted, "start_date", "asc")[: self._config.dashboard_active_limit]
        today = self._clock().date()
        combined = stats.value.combined
        return Ok(BookingDashboard(
            statistics=stats.value,
            recent_bookings=recent,
            active_bookings=active,
            summary=DashboardSummary(
                by_status=combined.by_status,
                by_engagement_type=combined.by_engagement_type,
                upcoming=sum(1 for b in accepted if b.start_date and b.start_date >= today),
                total_value=combined.total_value,
            ),
        ))
