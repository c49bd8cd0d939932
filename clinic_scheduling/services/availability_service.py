from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core.db import store_errors
from clinic_scheduling.models.availability import (
    AvailabilityWindow,
    AvailabilityWindowIn,
    ScheduleClosure,
    ScheduleClosureCreate,
)


async def get_active_windows(session: AsyncSession, provider_id: int) -> list[AvailabilityWindow]:
    with store_errors("get_active_windows"):
        result = await session.execute(
            select(AvailabilityWindow).where(
                AvailabilityWindow.provider_id == provider_id,
                AvailabilityWindow.active == True,  # noqa: E712
            )
        )
        return list(result.scalars().all())


async def is_closed_on(session: AsyncSession, provider_id: int, d: date) -> bool:
    with store_errors("is_closed_on"):
        result = await session.execute(
            select(ScheduleClosure.id).where(
                ScheduleClosure.provider_id == provider_id,
                ScheduleClosure.closed_on == d,
            ).limit(1)
        )
        return result.first() is not None


async def get_windows_for_date(
    session: AsyncSession, provider_id: int, d: date
) -> list[AvailabilityWindow]:
    """Active weekly windows materialized for one date; a closure empties the list."""
    if await is_closed_on(session, provider_id, d):
        return []
    return await get_active_windows(session, provider_id)


async def list_windows(session: AsyncSession, provider_id: int) -> list[AvailabilityWindow]:
    with store_errors("list_windows"):
        result = await session.execute(
            select(AvailabilityWindow)
            .where(AvailabilityWindow.provider_id == provider_id)
            .order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time)
        )
        return list(result.scalars().all())


async def replace_windows(
    session: AsyncSession, provider_id: int, windows: list[AvailabilityWindowIn]
) -> list[AvailabilityWindow]:
    """Swap the provider's weekly schedule for a new one. Existing bookings are untouched."""
    with store_errors("replace_windows"):
        await session.execute(
            delete(AvailabilityWindow).where(AvailabilityWindow.provider_id == provider_id)
        )
        rows = [
            AvailabilityWindow(
                provider_id=provider_id,
                day_of_week=w.day_of_week,
                start_time=w.start_time,
                end_time=w.end_time,
                active=w.active,
            )
            for w in windows
        ]
        session.add_all(rows)
        await session.flush()
    return await list_windows(session, provider_id)


async def add_closure(
    session: AsyncSession, provider_id: int, data: ScheduleClosureCreate
) -> ScheduleClosure:
    closure = ScheduleClosure(provider_id=provider_id, closed_on=data.closed_on, reason=data.reason)
    with store_errors("add_closure"):
        session.add(closure)
        await session.flush()
        await session.refresh(closure)
    return closure


async def list_closures(
    session: AsyncSession, provider_id: int, from_date: date | None = None
) -> list[ScheduleClosure]:
    q = (
        select(ScheduleClosure)
        .where(ScheduleClosure.provider_id == provider_id)
        .order_by(ScheduleClosure.closed_on)
    )
    if from_date:
        q = q.where(ScheduleClosure.closed_on >= from_date)
    with store_errors("list_closures"):
        result = await session.execute(q)
        return list(result.scalars().all())
