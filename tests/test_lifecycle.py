from datetime import datetime, timedelta

import pytest

from clinic_scheduling.core.errors import InvalidTransition
from clinic_scheduling.models.booking import (
    Booking,
    BookingState,
    BookingStatus,
    PaymentStatus,
)
from clinic_scheduling.services.lifecycle import (
    TRANSITIONS,
    BookingEvent,
    is_refund_eligible,
    next_state,
)

STATUS_ORDER = [
    BookingStatus.SCHEDULED,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
]


def test_happy_path_to_completed() -> None:
    state = BookingState.SCHEDULED_PENDING
    for event in (BookingEvent.PAYMENT_SUCCEEDED, BookingEvent.SESSION_JOINED, BookingEvent.SESSION_ENDED):
        state = next_state(state, event)

    assert state == BookingState.COMPLETED_PAID


def test_failed_payment_stays_scheduled_and_can_be_retried() -> None:
    failed = next_state(BookingState.SCHEDULED_PENDING, BookingEvent.PAYMENT_FAILED)

    assert failed.status == BookingStatus.SCHEDULED
    assert failed.payment_status == PaymentStatus.FAILED
    assert next_state(failed, BookingEvent.PAYMENT_SUCCEEDED) == BookingState.CONFIRMED_PAID


def test_waive_confirms_with_waived_payment() -> None:
    assert next_state(BookingState.SCHEDULED_PENDING, BookingEvent.WAIVE_PAYMENT) == BookingState.CONFIRMED_WAIVED
    assert next_state(BookingState.CONFIRMED_PAID, BookingEvent.WAIVE_PAYMENT) == BookingState.CONFIRMED_WAIVED


def test_waive_is_rejected_once_session_started() -> None:
    with pytest.raises(InvalidTransition):
        next_state(BookingState.IN_PROGRESS_PAID, BookingEvent.WAIVE_PAYMENT)


def test_rejoining_in_progress_session_is_a_no_op() -> None:
    assert next_state(BookingState.IN_PROGRESS_PAID, BookingEvent.SESSION_JOINED) == BookingState.IN_PROGRESS_PAID


def test_cancel_keeps_payment_axis() -> None:
    assert next_state(BookingState.CONFIRMED_PAID, BookingEvent.CANCEL) == BookingState.CANCELLED_PAID
    assert next_state(BookingState.SCHEDULED_PENDING, BookingEvent.CANCEL) == BookingState.CANCELLED_PENDING


@pytest.mark.parametrize("state", [s for s in BookingState if s.is_terminal])
@pytest.mark.parametrize("event", list(BookingEvent))
def test_terminal_states_accept_no_events(state: BookingState, event: BookingEvent) -> None:
    with pytest.raises(InvalidTransition):
        next_state(state, event)


def test_session_cannot_start_before_payment() -> None:
    with pytest.raises(InvalidTransition):
        next_state(BookingState.SCHEDULED_PENDING, BookingEvent.SESSION_JOINED)


def test_transitions_never_move_status_backwards() -> None:
    for (source, _event), target in TRANSITIONS.items():
        if target.status == BookingStatus.CANCELLED:
            continue
        assert STATUS_ORDER.index(target.status) >= STATUS_ORDER.index(source.status)


def test_confirmed_and_later_states_are_paid_or_waived() -> None:
    for state in BookingState:
        if state.status in (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED):
            assert state.payment_status in (PaymentStatus.PAID, PaymentStatus.WAIVED)


def test_state_of_rejects_invalid_combination() -> None:
    assert BookingState.of(BookingStatus.CONFIRMED, PaymentStatus.PAID) == BookingState.CONFIRMED_PAID
    with pytest.raises(ValueError):
        BookingState.of(BookingStatus.COMPLETED, PaymentStatus.PENDING)


def test_event_accepts_raw_values() -> None:
    assert next_state("scheduled_pending", "payment_succeeded") == BookingState.CONFIRMED_PAID


def _paid_booking(start: datetime, state: BookingState = BookingState.CANCELLED_PAID) -> Booking:
    return Booking(
        patient_id=1,
        provider_id=2,
        scheduled_start=start,
        scheduled_end=start + timedelta(minutes=45),
        duration_minutes=45,
        state=state,
        idempotency_token="refund",
    )


def test_refund_eligibility_window() -> None:
    now = datetime(2026, 1, 5, 8, 0)

    assert is_refund_eligible(_paid_booking(now + timedelta(hours=12)), now, 12)
    assert not is_refund_eligible(_paid_booking(now + timedelta(hours=11, minutes=59)), now, 12)
    assert not is_refund_eligible(_paid_booking(now + timedelta(days=2), BookingState.CANCELLED_WAIVED), now, 12)
