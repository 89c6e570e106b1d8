from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from app.api.schemas.booking import Pagination
from app.models.provider import BlockedDateCreate, ProviderPublic, TimeSlot, WorkingDayCreate


class ProviderSearchResponse(BaseModel):
    providers: list[ProviderPublic]
    pagination: Pagination


class DayAvailability(BaseModel):
    date: date
    slots: list[TimeSlot]


class AvailabilityResponse(BaseModel):
    provider_id: int
    timezone: str
    days: list[DayAvailability]


class AvailabilityUpdate(BaseModel):
    working_days: list[WorkingDayCreate] | None = None
    blocked_dates: list[BlockedDateCreate] | None = None


class ProviderStats(BaseModel):
    total_bookings: int
    completed_bookings: int
    upcoming_bookings: int
    total_revenue: Decimal
    average_rating: float
    total_reviews: int
