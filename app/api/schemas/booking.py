from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.booking import BookingPublic, BookingStatus


class CreateBookingRequest(BaseModel):
    provider_id: int
    service_name: str = Field(min_length=1)
    appointment_date: date
    start_time: str  # HH:MM in the provider's timezone
    notes: str | None = Field(default=None, max_length=500)


class UpdateStatusRequest(BaseModel):
    status: BookingStatus
    provider_notes: str | None = Field(default=None, max_length=500)


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=200)


class RescheduleRequest(BaseModel):
    new_date: date
    new_start_time: str
    reason: str | None = Field(default=None, max_length=200)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PaginatedBookings(BaseModel):
    bookings: list[BookingPublic]
    pagination: Pagination


class PolicyQuote(BaseModel):
    booking_id: int
    hours_until_appointment: float
    can_cancel: bool
    can_reschedule: bool
    refund_amount: Decimal


def make_pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)
