"""Error taxonomy for the scheduling core.

Business-rule errors are terminal for the current attempt and are returned to
the caller as-is. ``UpstreamUnavailable`` is the only retryable one, and the
core retries it itself only for reads.
"""
from fastapi import status


class SchedulingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "scheduling_error"
    default_detail: str = "Scheduling request failed."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NoAvailability(SchedulingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "no_availability"
    default_detail = "The provider has no availability at the selected time. Please choose another date."


class SlotExpired(SchedulingError):
    status_code = status.HTTP_410_GONE
    code = "slot_expired"
    default_detail = "The selected time is in the past. Please refresh the available slots."


class SlotTaken(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_taken"
    default_detail = "This time slot was just booked. Please refresh the available slots and choose another time."


class InvalidTransition(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"
    default_detail = "This action is not allowed for the booking in its current state."


class UpstreamUnavailable(SchedulingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "upstream_unavailable"
    default_detail = "Scheduling storage is temporarily unavailable. Please try again."


class BookingNotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "booking_not_found"
    default_detail = "Booking not found."


class NotPermitted(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_permitted"
    default_detail = "You are not allowed to perform this action."


class InvalidBookingRequest(SchedulingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "invalid_booking_request"
    default_detail = "Invalid booking request."


class PaymentInitiationFailed(SchedulingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payment_initiation_failed"
    default_detail = "Could not start the payment. Your booking is held; please retry with the same booking token."
