import asyncio
import os
from datetime import UTC, date, datetime, time, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["SCHEDULE_TIMEZONE"] = "UTC"
os.environ["PAYSTACK_SECRET_KEY"] = ""
os.environ["ENFORCE_BUFFER_ON_COMMIT"] = "false"

from clinic_scheduling.core.db import build_session_maker, init_db  # noqa: E402
from clinic_scheduling.models.availability import AvailabilityWindow  # noqa: E402
from clinic_scheduling.models.booking import Booking, BookingState  # noqa: E402
from clinic_scheduling.services.slot_service import day_of_week  # noqa: E402

PROVIDER_ID = 7
PATIENT_ID = 11


def next_weekday(weekday: int) -> date:
    """Next date strictly after today with the given Python weekday (0=Monday)."""
    today = datetime.now(UTC).date()
    days = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days)


@pytest.fixture
def session_maker(tmp_path):
    # File database so concurrent sessions use separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    yield build_session_maker(engine)
    asyncio.run(engine.dispose())


@pytest.fixture
def add_window(session_maker):
    def _add(d: date, start: time, end: time, provider_id: int = PROVIDER_ID, active: bool = True) -> None:
        async def go() -> None:
            async with session_maker() as session:
                session.add(
                    AvailabilityWindow(
                        provider_id=provider_id,
                        day_of_week=day_of_week(d),
                        start_time=start,
                        end_time=end,
                        active=active,
                    )
                )
                await session.commit()

        asyncio.run(go())

    return _add


@pytest.fixture
def add_booking(session_maker):
    def _add(
        start: datetime,
        minutes: int = 30,
        state: BookingState = BookingState.CONFIRMED_PAID,
        provider_id: int = PROVIDER_ID,
        patient_id: int = PATIENT_ID,
        token: str | None = None,
    ) -> Booking:
        booking = Booking(
            patient_id=patient_id,
            provider_id=provider_id,
            scheduled_start=start,
            scheduled_end=start + timedelta(minutes=minutes),
            duration_minutes=minutes,
            state=state,
            idempotency_token=token or f"seed-{provider_id}-{start.isoformat()}",
        )

        async def go() -> Booking:
            async with session_maker() as session:
                session.add(booking)
                await session.commit()
                return booking

        return asyncio.run(go())

    return _add


@pytest.fixture
def count_bookings(session_maker):
    def _count(provider_id: int = PROVIDER_ID) -> int:
        async def go() -> int:
            async with session_maker() as session:
                result = await session.execute(
                    select(func.count()).select_from(Booking).where(Booking.provider_id == provider_id)
                )
                return result.scalar_one()

        return asyncio.run(go())

    return _count


@pytest.fixture
def monday() -> date:
    return next_weekday(0)
