from datetime import date, datetime

from pydantic import BaseModel


class SlotInfo(BaseModel):
    start_utc: datetime
    end_utc: datetime


class AvailableSlotsResponse(BaseModel):
    provider_id: int
    date: date
    duration_minutes: int
    no_availability: bool
    slots: list[SlotInfo]
