"""Cancellation, reschedule and refund windows for confirmed bookings."""

from datetime import UTC, date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.models.booking import Booking, BookingStatus
from app.services.slot_service import parse_hhmm

_CENTS = Decimal("0.01")


def local_datetime(d: date, hhmm: str, tz_name: str) -> datetime:
    """Timezone-aware datetime for a wall-clock date and HH:MM in `tz_name`."""
    minutes = parse_hhmm(hhmm)
    return datetime.combine(d, time(minutes // 60, minutes % 60), tzinfo=ZoneInfo(tz_name))


def appointment_datetime(booking: Booking) -> datetime:
    return local_datetime(booking.appointment_date, booking.start_time, booking.timezone or "UTC")


def aware_now(now: datetime | None = None) -> datetime:
    """`now` as an aware datetime; the current time when None, naive values read as UTC."""
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


def hours_until(booking: Booking, now: datetime | None = None) -> float:
    delta = appointment_datetime(booking) - aware_now(now)
    return delta.total_seconds() / 3600


def can_cancel(booking: Booking, now: datetime | None = None) -> bool:
    return booking.status == BookingStatus.CONFIRMED and hours_until(booking, now) > settings.cancel_window_hours


def can_reschedule(booking: Booking, now: datetime | None = None) -> bool:
    return (
        booking.status == BookingStatus.CONFIRMED
        and hours_until(booking, now) > settings.reschedule_window_hours
    )


def refund_amount(booking: Booking, now: datetime | None = None) -> Decimal:
    """Full refund beyond 24h, half inside (2h, 24h], nothing at 2h or less."""
    hours = hours_until(booking, now)
    amount = Decimal(booking.payment_amount)
    if hours > settings.full_refund_window_hours:
        refund = amount
    elif hours > settings.cancel_window_hours:
        refund = amount * Decimal(str(settings.partial_refund_ratio))
    else:
        refund = Decimal("0")
    return refund.quantize(_CENTS, rounding=ROUND_HALF_UP)
