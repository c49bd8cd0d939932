"""Booking commit coordination and lifecycle operations.

book_or_retry is the only way a booking row gets created. A caller that lost
the response (payment initiation failed, client timeout) calls it again with
the same idempotency token or booking id and gets the held booking back
instead of a second row.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core.config import settings
from clinic_scheduling.core.db import store_errors
from clinic_scheduling.core.errors import (
    BookingNotFound,
    InvalidBookingRequest,
    InvalidTransition,
    NoAvailability,
    NotPermitted,
    SlotExpired,
    SlotTaken,
)
from clinic_scheduling.core.security import Actor, Role
from clinic_scheduling.models.booking import (
    RETRYABLE_STATES,
    Booking,
    BookingState,
    BookingStatus,
)
from clinic_scheduling.services.availability_service import get_windows_for_date
from clinic_scheduling.services.booking_store import (
    find_overlapping_booking,
    get_booking,
    get_booking_by_token,
    list_bookings_for_patient,
    list_bookings_for_provider,
    to_naive_utc,
    utc_naive_now,
)
from clinic_scheduling.services.conflict_guard import try_commit_booking
from clinic_scheduling.services.lifecycle import (
    EVENT_ROLES,
    BookingEvent,
    is_refund_eligible,
    next_state,
)
from clinic_scheduling.services.session_service import SessionCollaborator
from clinic_scheduling.services.slot_service import fits_window

logger = logging.getLogger(__name__)

# Re-reads allowed when a concurrent event changes the booking first
TRANSITION_ATTEMPTS = 3


class NextAction(str, Enum):
    INITIATE_PAYMENT = "initiate_payment"
    NONE = "none"


@dataclass
class BookingAttempt:
    booking: Booking
    next_action: NextAction
    # True when an existing booking was returned instead of a new one
    reused: bool = False


@dataclass
class CancellationResult:
    booking: Booking
    refund_eligible: bool


def _resume(booking: Booking, patient_id: int, provider_id: int, start: datetime) -> BookingAttempt:
    if booking.patient_id != patient_id:
        raise BookingNotFound()
    if booking.provider_id != provider_id or booking.scheduled_start != start:
        raise InvalidBookingRequest(
            "The booking token belongs to a different provider or time slot."
        )
    state = BookingState(booking.state)
    if state in RETRYABLE_STATES:
        return BookingAttempt(booking, NextAction.INITIATE_PAYMENT, reused=True)
    if state.status == BookingStatus.CANCELLED:
        raise InvalidTransition("This booking was cancelled. Please book a new slot.")
    return BookingAttempt(booking, NextAction.NONE, reused=True)


async def _find_existing(
    session: AsyncSession,
    patient_id: int,
    idempotency_token: str | None,
    booking_id: int | None,
) -> Booking | None:
    if booking_id is not None:
        existing = await get_booking(session, booking_id)
        if existing is None or existing.patient_id != patient_id:
            raise BookingNotFound()
        return existing
    if idempotency_token:
        existing = await get_booking_by_token(session, idempotency_token)
        if existing is not None and existing.patient_id != patient_id:
            raise BookingNotFound()
        return existing
    return None


async def _reuse(
    session: AsyncSession,
    existing: Booking,
    patient_id: int,
    provider_id: int,
    start: datetime,
    waive_payment: bool,
) -> BookingAttempt:
    attempt = _resume(existing, patient_id, provider_id, start)
    logger.info("Reusing booking %s (%s)", existing.id, BookingState(existing.state).value)
    if waive_payment and attempt.next_action == NextAction.INITIATE_PAYMENT:
        return BookingAttempt(await _waive(session, existing), NextAction.NONE, reused=True)
    return attempt


async def _compare_and_set(
    session: AsyncSession,
    booking: Booking,
    current: BookingState,
    target: BookingState,
    **values,
) -> bool:
    """Move booking from current to target only if it is still in current.

    Commits and refreshes booking on success. Returns False, with the
    transaction left open, when another request changed the state first.
    """
    with store_errors("compare_and_set"):
        result = await session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.state == current)
            .values(state=target, updated_at=utc_naive_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await session.commit()
        await session.refresh(booking)
    return True


async def _waive(session: AsyncSession, booking: Booking) -> Booking:
    current = BookingState(booking.state)
    target = next_state(current, BookingEvent.WAIVE_PAYMENT)
    if not await _compare_and_set(session, booking, current, target):
        await session.rollback()
        raise InvalidTransition("The booking was changed by another request. Please retry.")
    logger.info("Payment waived for booking %s", booking.id)
    return booking


async def book_or_retry(
    session: AsyncSession,
    *,
    patient_id: int,
    provider_id: int,
    slot_start: datetime,
    duration_minutes: int,
    amount: Decimal,
    currency: str | None = None,
    buffer_minutes: int = 0,
    idempotency_token: str | None = None,
    booking_id: int | None = None,
    waive_payment: bool = False,
    chief_complaint: str | None = None,
    symptoms_description: str | None = None,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> BookingAttempt:
    """Hold slot_start for the patient, or return the booking already held for this token/id.

    New bookings are revalidated (window membership, not in the past, buffer
    against current bookings) and then committed through the conflict guard.
    SlotTaken is raised as-is; the caller picks another slot.
    """
    if duration_minutes <= 0:
        raise InvalidBookingRequest("duration_minutes must be positive.")
    tz = tz or settings.schedule_tz
    start = to_naive_utc(slot_start)

    existing = await _find_existing(session, patient_id, idempotency_token, booking_id)
    if existing is not None:
        return await _reuse(session, existing, patient_id, provider_id, start, waive_payment)

    now = to_naive_utc(now) if now else utc_naive_now()
    if start <= now:
        raise SlotExpired()
    end = start + timedelta(minutes=duration_minutes)

    local_day = start.replace(tzinfo=UTC).astimezone(tz).date()
    windows = await get_windows_for_date(session, provider_id, local_day)
    if not fits_window(start, duration_minutes, windows, tz):
        raise NoAvailability()

    clash = await find_overlapping_booking(session, provider_id, start, end, buffer_minutes)
    if clash is not None:
        # A request with the same token may have committed since the lookup
        existing = await _find_existing(session, patient_id, idempotency_token, None)
        if existing is not None:
            return await _reuse(session, existing, patient_id, provider_id, start, waive_payment)
        logger.info("Revalidation: provider %s %s-%s clashes with booking %s", provider_id, start, end, clash.id)
        raise SlotTaken()

    candidate = Booking(
        patient_id=patient_id,
        provider_id=provider_id,
        scheduled_start=start,
        scheduled_end=end,
        duration_minutes=duration_minutes,
        state=BookingState.SCHEDULED_PENDING,
        amount=amount,
        currency=currency or settings.currency,
        chief_complaint=chief_complaint,
        symptoms_description=symptoms_description,
        idempotency_token=idempotency_token or uuid.uuid4().hex,
    )
    guard_buffer = buffer_minutes if settings.enforce_buffer_on_commit else 0
    booking, created = await try_commit_booking(session, candidate, guard_buffer)
    if not created:
        # Same token committed concurrently by another request
        return await _reuse(session, booking, patient_id, provider_id, start, waive_payment)

    if waive_payment:
        return BookingAttempt(await _waive(session, booking), NextAction.NONE)
    return BookingAttempt(booking, NextAction.INITIATE_PAYMENT)


def _check_visible(booking: Booking, actor: Actor) -> None:
    if actor.role == Role.PATIENT and booking.patient_id != actor.id:
        raise BookingNotFound()
    if actor.role == Role.PROVIDER and booking.provider_id != actor.id:
        raise BookingNotFound()


def _authorize_event(booking: Booking, event: BookingEvent, actor: Actor) -> None:
    _check_visible(booking, actor)
    if actor.role not in EVENT_ROLES[event]:
        raise NotPermitted(f"A {actor.role.value} cannot apply {event.value}.")


async def get_booking_for_actor(session: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    booking = await get_booking(session, booking_id)
    if booking is None:
        raise BookingNotFound()
    _check_visible(booking, actor)
    return booking


async def get_booking_by_token_for_actor(session: AsyncSession, token: str, actor: Actor) -> Booking:
    booking = await get_booking_by_token(session, token)
    if booking is None:
        raise BookingNotFound()
    _check_visible(booking, actor)
    return booking


async def list_bookings_for_actor(
    session: AsyncSession, actor: Actor, from_date=None, provider_id: int | None = None
) -> list[Booking]:
    if actor.role == Role.PROVIDER:
        return await list_bookings_for_provider(session, actor.id, from_date)
    if actor.role in (Role.ADMIN, Role.SYSTEM):
        if provider_id is None:
            raise InvalidBookingRequest("provider_id is required to list bookings.")
        return await list_bookings_for_provider(session, provider_id, from_date)
    return await list_bookings_for_patient(session, actor.id, from_date)


async def transition_booking(
    session: AsyncSession,
    booking_id: int,
    event: BookingEvent,
    actor: Actor,
    sessions: SessionCollaborator | None = None,
) -> Booking:
    """Apply event to the booking. Invalid events leave it unchanged.

    The write only lands if the booking is still in the state the event was
    checked against. When a concurrent event got there first, the booking is
    re-read and the event re-checked against the new state.
    """
    event = BookingEvent(event)
    for _ in range(TRANSITION_ATTEMPTS):
        booking = await get_booking(session, booking_id, for_update=True)
        if booking is None:
            raise BookingNotFound()
        _authorize_event(booking, event, actor)

        current = BookingState(booking.state)
        target = next_state(current, event)
        if target == current:
            # Release the row lock; nothing changed
            await session.commit()
            logger.info("Booking %s: %s is a no-op in %s", booking.id, event.value, current.value)
            return booking

        values = {}
        if event == BookingEvent.CANCEL:
            values = {"cancelled_by_role": actor.role.value, "cancelled_at": utc_naive_now()}
        if await _compare_and_set(session, booking, current, target, **values):
            break
        await session.rollback()
        logger.info("Booking %s changed during %s; re-reading", booking_id, event.value)
    else:
        raise InvalidTransition("The booking was changed by another request. Please retry.")

    logger.info(
        "Booking %s: %s -> %s on %s by %s %s",
        booking.id, current.value, target.value, event.value, actor.role.value, actor.id,
    )

    if sessions is not None:
        if target.status == BookingStatus.IN_PROGRESS:
            await sessions.session_started(booking)
        elif target.status == BookingStatus.COMPLETED:
            await sessions.session_completed(booking)
    return booking


async def cancel_booking(
    session: AsyncSession, booking_id: int, actor: Actor, now: datetime | None = None
) -> CancellationResult:
    booking = await transition_booking(session, booking_id, BookingEvent.CANCEL, actor)
    now = to_naive_utc(now) if now else utc_naive_now()
    refund_eligible = is_refund_eligible(booking, now, settings.refund_window_hours)
    return CancellationResult(booking=booking, refund_eligible=refund_eligible)
