from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core.db import store_errors
from clinic_scheduling.models.booking import ACTIVE_STATES, Booking


def to_naive_utc(dt: datetime) -> datetime:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    if dt.tzinfo is not None:
        return dt.astimezone(UTC).replace(tzinfo=None)
    return dt


def utc_naive_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def local_day_bounds(d: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """[start, end) of a local calendar day as naive UTC."""
    start = datetime.combine(d, time.min, tzinfo=tz)
    end = datetime.combine(d + timedelta(days=1), time.min, tzinfo=tz)
    return to_naive_utc(start), to_naive_utc(end)


async def get_booking(
    session: AsyncSession, booking_id: int, for_update: bool = False
) -> Booking | None:
    q = select(Booking).where(Booking.id == booking_id)
    if for_update:
        q = q.with_for_update()
    with store_errors("get_booking"):
        result = await session.execute(q)
        return result.scalar_one_or_none()


async def get_booking_by_token(session: AsyncSession, token: str) -> Booking | None:
    with store_errors("get_booking_by_token"):
        result = await session.execute(select(Booking).where(Booking.idempotency_token == token))
        return result.scalar_one_or_none()


async def get_bookings_for_provider_on_date(
    session: AsyncSession, provider_id: int, d: date, tz: ZoneInfo
) -> list[Booking]:
    """Active bookings that can affect slots on the provider's local day d.

    The range is padded by a day on each side so bookings straddling midnight
    and buffer spill-over are included.
    """
    day_start, day_end = local_day_bounds(d, tz)
    pad = timedelta(days=1)
    with store_errors("get_bookings_for_provider_on_date"):
        result = await session.execute(
            select(Booking)
            .where(
                Booking.provider_id == provider_id,
                Booking.state.in_(ACTIVE_STATES),
                Booking.scheduled_start < day_end + pad,
                Booking.scheduled_end > day_start - pad,
            )
            .order_by(Booking.scheduled_start)
        )
        return list(result.scalars().all())


async def find_overlapping_booking(
    session: AsyncSession,
    provider_id: int,
    start: datetime,
    end: datetime,
    buffer_minutes: int = 0,
) -> Booking | None:
    """First active booking whose interval, widened by the buffer, overlaps [start, end)."""
    pad = timedelta(minutes=buffer_minutes)
    with store_errors("find_overlapping_booking"):
        result = await session.execute(
            select(Booking)
            .where(
                Booking.provider_id == provider_id,
                Booking.state.in_(ACTIVE_STATES),
                Booking.scheduled_start < end + pad,
                Booking.scheduled_end > start - pad,
            )
            .limit(1)
        )
        return result.scalars().first()


async def list_bookings_for_patient(
    session: AsyncSession, patient_id: int, from_date: date | None = None
) -> list[Booking]:
    q = select(Booking).where(Booking.patient_id == patient_id).order_by(Booking.scheduled_start)
    if from_date:
        q = q.where(Booking.scheduled_start >= datetime.combine(from_date, time.min))
    with store_errors("list_bookings_for_patient"):
        result = await session.execute(q)
        return list(result.scalars().all())


async def list_bookings_for_provider(
    session: AsyncSession, provider_id: int, from_date: date | None = None
) -> list[Booking]:
    q = select(Booking).where(Booking.provider_id == provider_id).order_by(Booking.scheduled_start)
    if from_date:
        q = q.where(Booking.scheduled_start >= datetime.combine(from_date, time.min))
    with store_errors("list_bookings_for_provider"):
        result = await session.execute(q)
        return list(result.scalars().all())
