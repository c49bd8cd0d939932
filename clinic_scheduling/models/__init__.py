from clinic_scheduling.models.availability import (
    AvailabilityWindow,
    AvailabilityWindowIn,
    AvailabilityWindowPublic,
    ScheduleClosure,
    ScheduleClosureCreate,
    ScheduleClosurePublic,
)
from clinic_scheduling.models.booking import (
    ACTIVE_STATES,
    Booking,
    BookingPublic,
    BookingState,
    BookingStatus,
    PaymentStatus,
    ProviderScheduleLock,
)

__all__ = [
    "AvailabilityWindow",
    "AvailabilityWindowIn",
    "AvailabilityWindowPublic",
    "ScheduleClosure",
    "ScheduleClosureCreate",
    "ScheduleClosurePublic",
    "ACTIVE_STATES",
    "Booking",
    "BookingPublic",
    "BookingState",
    "BookingStatus",
    "PaymentStatus",
    "ProviderScheduleLock",
]
