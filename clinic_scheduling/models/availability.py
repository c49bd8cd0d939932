from datetime import UTC, date, datetime, time

from pydantic import model_validator
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class AvailabilityWindow(SQLModel, table=True):
    """Recurring weekly window in the provider's wall-clock time.

    day_of_week follows 0=Sunday .. 6=Saturday. Windows for the same day may
    overlap; the slot generator de-duplicates.
    """

    __tablename__ = "availability_windows"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(index=True)
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    active: bool = True
    created_at: datetime = Field(default_factory=_utc_naive_now)


class ScheduleClosure(SQLModel, table=True):
    """Date-level override: the provider takes no bookings on closed_on."""

    __tablename__ = "schedule_closures"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(index=True)
    closed_on: date = Field(index=True)
    reason: str | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now)


class AvailabilityWindowIn(SQLModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    active: bool = True

    @model_validator(mode="after")
    def check_window_order(self) -> "AvailabilityWindowIn":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityWindowPublic(SQLModel):
    id: int
    provider_id: int
    day_of_week: int
    start_time: time
    end_time: time
    active: bool


class ScheduleClosureCreate(SQLModel):
    closed_on: date
    reason: str | None = None


class ScheduleClosurePublic(SQLModel):
    id: int
    provider_id: int
    closed_on: date
    reason: str | None = None
