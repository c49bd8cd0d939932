from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.api.deps import get_current_actor, get_session, require_schedule_owner
from clinic_scheduling.core.security import Actor
from clinic_scheduling.models.availability import (
    AvailabilityWindowIn,
    AvailabilityWindowPublic,
    ScheduleClosureCreate,
    ScheduleClosurePublic,
)
from clinic_scheduling.services.availability_service import (
    add_closure,
    list_closures,
    list_windows,
    replace_windows,
)

router = APIRouter(prefix="/providers", tags=["availability"])


@router.get("/{provider_id}/availability", response_model=list[AvailabilityWindowPublic])
async def get_availability(
    provider_id: int,
    session: AsyncSession = Depends(get_session),
):
    windows = await list_windows(session, provider_id)
    return [AvailabilityWindowPublic.model_validate(w) for w in windows]


@router.put("/{provider_id}/availability", response_model=list[AvailabilityWindowPublic])
async def put_availability(
    provider_id: int,
    body: list[AvailabilityWindowIn],
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Replace the provider's weekly windows. Existing bookings are not touched."""
    require_schedule_owner(provider_id, actor)
    windows = await replace_windows(session, provider_id, body)
    return [AvailabilityWindowPublic.model_validate(w) for w in windows]


@router.get("/{provider_id}/closures", response_model=list[ScheduleClosurePublic])
async def get_closures(
    provider_id: int,
    from_date: date | None = Query(None),
    session: AsyncSession = Depends(get_session),
):
    closures = await list_closures(session, provider_id, from_date)
    return [ScheduleClosurePublic.model_validate(c) for c in closures]


@router.post("/{provider_id}/closures", response_model=ScheduleClosurePublic, status_code=201)
async def post_closure(
    provider_id: int,
    body: ScheduleClosureCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    require_schedule_owner(provider_id, actor)
    closure = await add_closure(session, provider_id, body)
    return ScheduleClosurePublic.model_validate(closure)
