from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.api.deps import get_session
from clinic_scheduling.api.schemas.slot import AvailableSlotsResponse, SlotInfo
from clinic_scheduling.core.config import settings
from clinic_scheduling.services.slot_service import list_available_slots

router = APIRouter(prefix="/providers", tags=["slots"])


@router.get("/{provider_id}/slots", response_model=AvailableSlotsResponse)
async def available_slots(
    provider_id: int,
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
) -> AvailableSlotsResponse:
    """Bookable slot starts (UTC) on the provider's local date. Duration and buffer come from server config."""
    listing = await list_available_slots(
        session,
        provider_id,
        date_param,
        settings.consultation_duration_minutes,
        settings.booking_buffer_minutes,
    )
    step = timedelta(minutes=listing.duration_minutes)
    return AvailableSlotsResponse(
        provider_id=provider_id,
        date=date_param,
        duration_minutes=listing.duration_minutes,
        no_availability=listing.no_availability,
        slots=[SlotInfo(start_utc=s, end_utc=s + step) for s in listing.slots],
    )
