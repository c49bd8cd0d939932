from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Column, Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class BookingStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"
    FAILED = "failed"


class BookingState(str, Enum):
    """Valid (status, payment_status) combinations, stored as one column so that
    e.g. completed + pending cannot be represented."""

    SCHEDULED_PENDING = "scheduled_pending"
    SCHEDULED_PAYMENT_FAILED = "scheduled_payment_failed"
    CONFIRMED_PAID = "confirmed_paid"
    CONFIRMED_WAIVED = "confirmed_waived"
    IN_PROGRESS_PAID = "in_progress_paid"
    IN_PROGRESS_WAIVED = "in_progress_waived"
    COMPLETED_PAID = "completed_paid"
    COMPLETED_WAIVED = "completed_waived"
    CANCELLED_PENDING = "cancelled_pending"
    CANCELLED_PAYMENT_FAILED = "cancelled_payment_failed"
    CANCELLED_PAID = "cancelled_paid"
    CANCELLED_WAIVED = "cancelled_waived"

    @property
    def status(self) -> BookingStatus:
        return _STATE_AXES[self][0]

    @property
    def payment_status(self) -> PaymentStatus:
        return _STATE_AXES[self][1]

    @property
    def is_active(self) -> bool:
        """Counts toward the per-provider no-overlap invariant."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

    @classmethod
    def of(cls, status: BookingStatus, payment_status: PaymentStatus) -> "BookingState":
        for state, axes in _STATE_AXES.items():
            if axes == (status, payment_status):
                return state
        raise ValueError(f"{status.value}/{payment_status.value} is not a valid booking state")


_STATE_AXES: dict[BookingState, tuple[BookingStatus, PaymentStatus]] = {
    BookingState.SCHEDULED_PENDING: (BookingStatus.SCHEDULED, PaymentStatus.PENDING),
    BookingState.SCHEDULED_PAYMENT_FAILED: (BookingStatus.SCHEDULED, PaymentStatus.FAILED),
    BookingState.CONFIRMED_PAID: (BookingStatus.CONFIRMED, PaymentStatus.PAID),
    BookingState.CONFIRMED_WAIVED: (BookingStatus.CONFIRMED, PaymentStatus.WAIVED),
    BookingState.IN_PROGRESS_PAID: (BookingStatus.IN_PROGRESS, PaymentStatus.PAID),
    BookingState.IN_PROGRESS_WAIVED: (BookingStatus.IN_PROGRESS, PaymentStatus.WAIVED),
    BookingState.COMPLETED_PAID: (BookingStatus.COMPLETED, PaymentStatus.PAID),
    BookingState.COMPLETED_WAIVED: (BookingStatus.COMPLETED, PaymentStatus.WAIVED),
    BookingState.CANCELLED_PENDING: (BookingStatus.CANCELLED, PaymentStatus.PENDING),
    BookingState.CANCELLED_PAYMENT_FAILED: (BookingStatus.CANCELLED, PaymentStatus.FAILED),
    BookingState.CANCELLED_PAID: (BookingStatus.CANCELLED, PaymentStatus.PAID),
    BookingState.CANCELLED_WAIVED: (BookingStatus.CANCELLED, PaymentStatus.WAIVED),
}

ACTIVE_STATUSES = (BookingStatus.SCHEDULED, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)
ACTIVE_STATES = tuple(s for s in BookingState if s.is_active)
# Reusable by the commit coordinator: the slot is held but payment has not gone through
RETRYABLE_STATES = (BookingState.SCHEDULED_PENDING, BookingState.SCHEDULED_PAYMENT_FAILED)


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (sa.Index("ix_bookings_provider_start", "provider_id", "scheduled_start"),)

    id: int | None = Field(default=None, primary_key=True)
    patient_id: int = Field(index=True)
    provider_id: int = Field(index=True)
    # Naive UTC; scheduled_end is stored for range queries and the exclusion constraint
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    state: BookingState = Field(
        default=BookingState.SCHEDULED_PENDING,
        sa_column=Column(
            sa.Enum(
                BookingState,
                name="booking_state",
                native_enum=False,
                length=32,
                values_callable=lambda e: [m.value for m in e],
            ),
            nullable=False,
            index=True,
        ),
    )
    amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str = "NGN"
    chief_complaint: str | None = None
    symptoms_description: str | None = None
    idempotency_token: str = Field(unique=True, index=True)
    payment_reference: str | None = Field(default=None, index=True)
    cancelled_by_role: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)

    @property
    def status(self) -> BookingStatus:
        return BookingState(self.state).status

    @property
    def payment_status(self) -> PaymentStatus:
        return BookingState(self.state).payment_status

    def overlaps(self, start: datetime, end: datetime, buffer_minutes: int = 0) -> bool:
        """Half-open overlap of [start, end) with this booking widened by the buffer on both sides."""
        pad = timedelta(minutes=buffer_minutes)
        return start < self.scheduled_end + pad and end + pad > self.scheduled_start


class ProviderScheduleLock(SQLModel, table=True):
    """One row per provider; updating it inside the commit transaction
    serializes writers for that provider only."""

    __tablename__ = "provider_schedule_locks"
    provider_id: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    version: int = 0


class BookingPublic(SQLModel):
    id: int
    patient_id: int
    provider_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    status: BookingStatus
    payment_status: PaymentStatus
    amount: Decimal
    currency: str
    chief_complaint: str | None = None
    symptoms_description: str | None = None
    idempotency_token: str
    created_at: datetime
