import logging
from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.api.deps import (
    get_current_actor,
    get_payment_collaborator,
    get_session,
    get_session_collaborator,
)
from clinic_scheduling.api.schemas.booking import (
    BookRequest,
    BookResponse,
    CancelResponse,
    PaymentInfo,
    TransitionRequest,
)
from clinic_scheduling.core.config import settings
from clinic_scheduling.core.errors import PaymentInitiationFailed
from clinic_scheduling.core.security import Actor, Role
from clinic_scheduling.models.booking import Booking, BookingPublic
from clinic_scheduling.services.booking_service import (
    NextAction,
    book_or_retry,
    cancel_booking,
    get_booking_by_token_for_actor,
    get_booking_for_actor,
    list_bookings_for_actor,
    transition_booking,
)
from clinic_scheduling.services.payment_service import PaymentCollaborator, record_payment_reference
from clinic_scheduling.services.session_service import SessionCollaborator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _public(booking: Booking) -> BookingPublic:
    return BookingPublic.model_validate(booking)


def _resolve_patient(body: BookRequest, actor: Actor) -> int:
    if actor.role == Role.PATIENT:
        if body.patient_id is not None and body.patient_id != actor.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patients can only book for themselves")
        if body.waive_payment:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can waive payment")
        return actor.id
    if actor.role == Role.ADMIN:
        if body.patient_id is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="patient_id is required")
        return body.patient_id
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only patients and admins can book")


@router.post("", response_model=BookResponse)
async def book(
    body: BookRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    payments: PaymentCollaborator = Depends(get_payment_collaborator),
):
    """Hold a slot and start payment. Retry with the same Idempotency-Key (or booking_id) after any failure."""
    patient_id = _resolve_patient(body, actor)
    attempt = await book_or_retry(
        session,
        patient_id=patient_id,
        provider_id=body.provider_id,
        slot_start=body.slot_start_utc,
        duration_minutes=settings.consultation_duration_minutes,
        amount=settings.consultation_price,
        currency=settings.currency,
        buffer_minutes=settings.booking_buffer_minutes,
        idempotency_token=idempotency_key or body.idempotency_token,
        booking_id=body.booking_id,
        waive_payment=body.waive_payment,
        chief_complaint=body.chief_complaint,
        symptoms_description=body.symptoms_description,
    )
    booking = attempt.booking
    response = BookResponse(booking=_public(booking), next_action=attempt.next_action, reused=attempt.reused)
    if attempt.next_action != NextAction.INITIATE_PAYMENT:
        return response

    try:
        if not actor.email:
            raise PaymentInitiationFailed("An email address is required to start payment.")
        initiation = await payments.initiate(booking, actor.email)
    except PaymentInitiationFailed as exc:
        # The slot stays held; the client retries with the returned token
        logger.warning("Payment initiation failed for booking %s: %s", booking.id, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "code": exc.code,
                "booking_id": booking.id,
                "idempotency_token": booking.idempotency_token,
            },
        )
    booking = await record_payment_reference(session, booking, initiation)
    response.booking = _public(booking)
    response.payment = PaymentInfo(reference=initiation.reference, authorization_url=initiation.authorization_url)
    return response


@router.get("", response_model=list[BookingPublic])
async def list_bookings(
    from_date: date | None = Query(None),
    provider_id: int | None = Query(None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    bookings = await list_bookings_for_actor(session, actor, from_date, provider_id)
    return [_public(b) for b in bookings]


@router.get("/by-token/{token}", response_model=BookingPublic)
async def get_by_token(
    token: str,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    return _public(await get_booking_by_token_for_actor(session, token, actor))


@router.get("/{booking_id}", response_model=BookingPublic)
async def get_one(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    return _public(await get_booking_for_actor(session, booking_id, actor))


@router.post("/{booking_id}/events", response_model=BookingPublic)
async def post_event(
    booking_id: int,
    body: TransitionRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    sessions: SessionCollaborator = Depends(get_session_collaborator),
):
    booking = await transition_booking(session, booking_id, body.event, actor, sessions)
    return _public(booking)


@router.post("/{booking_id}/cancel", response_model=CancelResponse)
async def cancel(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    result = await cancel_booking(session, booking_id, actor)
    return CancelResponse(booking=_public(result.booking), refund_eligible=result.refund_eligible)
