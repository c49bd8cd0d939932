"""Booking lifecycle state machine.

Every (state, event) pair that is allowed appears in TRANSITIONS; anything
else is an InvalidTransition. Nothing leaves a completed or cancelled state.
"""
from datetime import datetime, timedelta
from enum import Enum

from clinic_scheduling.core.errors import InvalidTransition
from clinic_scheduling.core.security import Role
from clinic_scheduling.models.booking import Booking, BookingState, PaymentStatus


class BookingEvent(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SESSION_JOINED = "session_joined"
    SESSION_ENDED = "session_ended"
    WAIVE_PAYMENT = "waive_payment"
    CANCEL = "cancel"


S = BookingState
E = BookingEvent

TRANSITIONS: dict[tuple[BookingState, BookingEvent], BookingState] = {
    (S.SCHEDULED_PENDING, E.PAYMENT_SUCCEEDED): S.CONFIRMED_PAID,
    (S.SCHEDULED_PAYMENT_FAILED, E.PAYMENT_SUCCEEDED): S.CONFIRMED_PAID,
    (S.SCHEDULED_PENDING, E.PAYMENT_FAILED): S.SCHEDULED_PAYMENT_FAILED,
    (S.SCHEDULED_PENDING, E.WAIVE_PAYMENT): S.CONFIRMED_WAIVED,
    (S.SCHEDULED_PAYMENT_FAILED, E.WAIVE_PAYMENT): S.CONFIRMED_WAIVED,
    (S.CONFIRMED_PAID, E.WAIVE_PAYMENT): S.CONFIRMED_WAIVED,
    (S.SCHEDULED_PENDING, E.CANCEL): S.CANCELLED_PENDING,
    (S.SCHEDULED_PAYMENT_FAILED, E.CANCEL): S.CANCELLED_PAYMENT_FAILED,
    (S.CONFIRMED_PAID, E.CANCEL): S.CANCELLED_PAID,
    (S.CONFIRMED_WAIVED, E.CANCEL): S.CANCELLED_WAIVED,
    (S.CONFIRMED_PAID, E.SESSION_JOINED): S.IN_PROGRESS_PAID,
    (S.CONFIRMED_WAIVED, E.SESSION_JOINED): S.IN_PROGRESS_WAIVED,
    (S.IN_PROGRESS_PAID, E.SESSION_ENDED): S.COMPLETED_PAID,
    (S.IN_PROGRESS_WAIVED, E.SESSION_ENDED): S.COMPLETED_WAIVED,
}

# Repeated deliveries that leave the booking where it is
NO_OPS: frozenset[tuple[BookingState, BookingEvent]] = frozenset({
    (S.IN_PROGRESS_PAID, E.SESSION_JOINED),
    (S.IN_PROGRESS_WAIVED, E.SESSION_JOINED),
    (S.CONFIRMED_PAID, E.PAYMENT_SUCCEEDED),
    (S.SCHEDULED_PAYMENT_FAILED, E.PAYMENT_FAILED),
    (S.CONFIRMED_WAIVED, E.WAIVE_PAYMENT),
})

EVENT_ROLES: dict[BookingEvent, frozenset[Role]] = {
    BookingEvent.PAYMENT_SUCCEEDED: frozenset({Role.SYSTEM, Role.ADMIN}),
    BookingEvent.PAYMENT_FAILED: frozenset({Role.SYSTEM, Role.ADMIN}),
    BookingEvent.SESSION_JOINED: frozenset({Role.PROVIDER, Role.ADMIN}),
    BookingEvent.SESSION_ENDED: frozenset({Role.PROVIDER, Role.ADMIN, Role.SYSTEM}),
    BookingEvent.WAIVE_PAYMENT: frozenset({Role.ADMIN}),
    BookingEvent.CANCEL: frozenset({Role.PATIENT, Role.PROVIDER, Role.ADMIN}),
}


def next_state(state: BookingState, event: BookingEvent) -> BookingState:
    """Return the state after applying event, or raise InvalidTransition."""
    state = BookingState(state)
    event = BookingEvent(event)
    if (state, event) in NO_OPS:
        return state
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(
            f"Cannot apply {event.value} to a booking that is "
            f"{state.status.value} (payment {state.payment_status.value})."
        ) from None


def is_refund_eligible(booking: Booking, now: datetime, window_hours: int) -> bool:
    """A paid booking cancelled at least window_hours before its start qualifies for a refund."""
    if booking.payment_status != PaymentStatus.PAID:
        return False
    return booking.scheduled_start - now >= timedelta(hours=window_hours)
