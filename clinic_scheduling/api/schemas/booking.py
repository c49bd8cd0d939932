from datetime import datetime

from pydantic import BaseModel, Field

from clinic_scheduling.models.booking import BookingPublic
from clinic_scheduling.services.booking_service import NextAction
from clinic_scheduling.services.lifecycle import BookingEvent


class BookRequest(BaseModel):
    provider_id: int
    slot_start_utc: datetime
    # Admins book on behalf of a patient; patients always book for themselves
    patient_id: int | None = None
    idempotency_token: str | None = Field(default=None, max_length=64)
    booking_id: int | None = None
    waive_payment: bool = False
    chief_complaint: str | None = None
    symptoms_description: str | None = None


class PaymentInfo(BaseModel):
    reference: str
    authorization_url: str


class BookResponse(BaseModel):
    booking: BookingPublic
    next_action: NextAction
    reused: bool = False
    payment: PaymentInfo | None = None


class TransitionRequest(BaseModel):
    event: BookingEvent


class CancelResponse(BaseModel):
    booking: BookingPublic
    refund_eligible: bool
