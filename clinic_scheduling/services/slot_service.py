import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core.config import settings
from clinic_scheduling.core.errors import UpstreamUnavailable
from clinic_scheduling.models.availability import AvailabilityWindow
from clinic_scheduling.models.booking import Booking, BookingState
from clinic_scheduling.services.availability_service import get_windows_for_date
from clinic_scheduling.services.booking_store import (
    get_bookings_for_provider_on_date,
    to_naive_utc,
    utc_naive_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def day_of_week(d: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (d.weekday() + 1) % 7


def windows_for_day(d: date, windows: Iterable[AvailabilityWindow]) -> list[AvailabilityWindow]:
    dow = day_of_week(d)
    return [w for w in windows if w.active and w.day_of_week == dow]


def window_bounds(d: date, window: AvailabilityWindow, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Window start/end on date d as naive UTC."""
    start = datetime.combine(d, window.start_time, tzinfo=tz)
    end = datetime.combine(d, window.end_time, tzinfo=tz)
    return to_naive_utc(start), to_naive_utc(end)


def conflicts_with(
    start: datetime, end: datetime, bookings: Iterable[Booking], buffer_minutes: int
) -> bool:
    return any(
        BookingState(b.state).is_active and b.overlaps(start, end, buffer_minutes)
        for b in bookings
    )


def generate_slots(
    d: date,
    windows: Iterable[AvailabilityWindow],
    bookings: Iterable[Booking],
    duration_minutes: int,
    buffer_minutes: int,
    now: datetime,
    tz: ZoneInfo = UTC,
) -> list[datetime]:
    """Offerable slot starts (naive UTC, ascending) for the provider's local day d.

    Candidates step by duration from each window's start up to end - duration
    inclusive. A candidate is dropped if it starts at or before now, or if it
    overlaps an active booking widened by buffer_minutes on both sides.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if buffer_minutes < 0:
        raise ValueError("buffer_minutes must not be negative")

    day_windows = windows_for_day(d, windows)
    if not day_windows:
        return []

    now = to_naive_utc(now)
    bookings = list(bookings)
    step = timedelta(minutes=duration_minutes)
    starts: set[datetime] = set()
    for window in day_windows:
        current, window_end = window_bounds(d, window, tz)
        while current + step <= window_end:
            if current > now and not conflicts_with(current, current + step, bookings, buffer_minutes):
                starts.add(current)
            current += step
    return sorted(starts)


def fits_window(
    start: datetime, duration_minutes: int, windows: Iterable[AvailabilityWindow], tz: ZoneInfo
) -> bool:
    """True if [start, start + duration) lies inside one active window of start's local day."""
    start = to_naive_utc(start)
    local_day = start.replace(tzinfo=UTC).astimezone(tz).date()
    end = start + timedelta(minutes=duration_minutes)
    for window in windows_for_day(local_day, windows):
        window_start, window_end = window_bounds(local_day, window, tz)
        if window_start <= start and end <= window_end:
            return True
    return False


@dataclass
class SlotListing:
    provider_id: int
    date: date
    duration_minutes: int
    slots: list[datetime] = field(default_factory=list)
    # No active window on this date; the caller decides the fallback UX
    no_availability: bool = False


async def with_read_retries(
    session: AsyncSession,
    read: Callable[[], Awaitable[T]],
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Retry a read on UpstreamUnavailable with exponential backoff. Reads only."""
    attempts = attempts or settings.slot_read_attempts
    backoff = settings.slot_read_backoff_seconds if backoff_seconds is None else backoff_seconds
    for attempt in range(1, attempts + 1):
        try:
            return await read()
        except UpstreamUnavailable:
            if attempt == attempts:
                raise
            await session.rollback()
            delay = backoff * (2 ** (attempt - 1))
            logger.warning("Slot read failed (attempt %d/%d), retrying in %.2fs", attempt, attempts, delay)
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")


async def list_available_slots(
    session: AsyncSession,
    provider_id: int,
    d: date,
    duration_minutes: int,
    buffer_minutes: int,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> SlotListing:
    tz = tz or settings.schedule_tz
    now = now or utc_naive_now()

    async def read() -> tuple[list[AvailabilityWindow], list[Booking]]:
        windows = await get_windows_for_date(session, provider_id, d)
        if not windows_for_day(d, windows):
            return windows, []
        bookings = await get_bookings_for_provider_on_date(session, provider_id, d, tz)
        return windows, bookings

    windows, bookings = await with_read_retries(session, read)
    listing = SlotListing(provider_id=provider_id, date=d, duration_minutes=duration_minutes)
    if not windows_for_day(d, windows):
        listing.no_availability = True
        return listing
    listing.slots = generate_slots(d, windows, bookings, duration_minutes, buffer_minutes, now, tz)
    return listing
