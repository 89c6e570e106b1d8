from collections.abc import Iterable, Sequence
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ValidationError
from app.models.booking import ACTIVE_BOOKING_STATUSES, Booking
from app.models.provider import HHMM_RE, BlockedDate, TimeSlot, Weekday, WorkingDay


def parse_hhmm(value: str) -> int:
    """Minutes since midnight for an HH:MM wall-clock string."""
    m = HHMM_RE.match(value or "")
    if not m:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    return int(m.group(1)) * 60 + int(m.group(2))


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_hhmm(value: str) -> str:
    """'9:05' -> '09:05'."""
    return format_hhmm(parse_hhmm(value))


def add_minutes(value: str, minutes: int) -> str:
    """Shift an HH:MM time forward; wraps past midnight like a wall clock."""
    return format_hhmm((parse_hhmm(value) + minutes) % (24 * 60))


def _working_day_for(working_days: Iterable[WorkingDay], d: date) -> WorkingDay | None:
    day_name = Weekday.of(d)
    for wd in working_days:
        if wd.day == day_name:
            return wd
    return None


def is_blocked(blocked_dates: Iterable[BlockedDate], d: date) -> bool:
    return any(b.blocked_date == d for b in blocked_dates)


def compute_slots(
    working_days: Sequence[WorkingDay],
    blocked_dates: Sequence[BlockedDate],
    d: date,
    slot_duration_minutes: int | None = None,
) -> list[TimeSlot]:
    """Fixed-length slots for `d` from the provider's weekly template.

    Empty when the weekday has no template entry, the entry is marked
    unavailable, or the date is blocked. A trailing partial slot that would
    run past the end of the working day is dropped.
    """
    step = settings.slot_duration_minutes if slot_duration_minutes is None else slot_duration_minutes
    if isinstance(step, bool) or not isinstance(step, int) or step <= 0:
        raise ValidationError("Slot duration must be a positive number of minutes")
    wd = _working_day_for(working_days, d)
    if wd is None or not wd.is_available or is_blocked(blocked_dates, d):
        return []
    start = parse_hhmm(wd.start_time)
    end = parse_hhmm(wd.end_time)
    slots: list[TimeSlot] = []
    current = start
    while current + step <= end:
        slots.append(TimeSlot(start_time=format_hhmm(current), end_time=format_hhmm(current + step)))
        current += step
    return slots


def is_available_at(
    working_days: Sequence[WorkingDay],
    blocked_dates: Sequence[BlockedDate],
    d: date,
    time: str,
) -> bool:
    """True iff `time` falls in [start, end) of an available, unblocked working day."""
    wd = _working_day_for(working_days, d)
    if wd is None or not wd.is_available:
        return False
    if is_blocked(blocked_dates, d):
        return False
    requested = parse_hhmm(time)
    return parse_hhmm(wd.start_time) <= requested < parse_hhmm(wd.end_time)


async def has_conflict(
    session: AsyncSession,
    provider_id: int,
    d: date,
    start_time: str,
    exclude_booking_id: int | None = None,
) -> bool:
    """Another pending/confirmed booking starts at exactly this provider slot.

    Matching is on start time only; bookings of different lengths that
    overlap without sharing a start time are not reported.
    """
    q = select(Booking.id).where(
        Booking.provider_id == provider_id,
        Booking.appointment_date == d,
        Booking.start_time == normalize_hhmm(start_time),
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        q = q.where(Booking.id != exclude_booking_id)
    result = await session.execute(q.limit(1))
    return result.first() is not None


async def get_working_days(session: AsyncSession, provider_id: int) -> list[WorkingDay]:
    result = await session.execute(select(WorkingDay).where(WorkingDay.provider_id == provider_id))
    return list(result.scalars().all())


async def get_blocked_dates(session: AsyncSession, provider_id: int) -> list[BlockedDate]:
    result = await session.execute(
        select(BlockedDate).where(BlockedDate.provider_id == provider_id).order_by(BlockedDate.blocked_date)
    )
    return list(result.scalars().all())


async def get_booked_slot_starts(
    session: AsyncSession, provider_id: int, start_inclusive: date, end_inclusive: date
) -> set[tuple[date, str]]:
    result = await session.execute(
        select(Booking.appointment_date, Booking.start_time).where(
            Booking.provider_id == provider_id,
            Booking.appointment_date >= start_inclusive,
            Booking.appointment_date <= end_inclusive,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    )
    return {(row[0], row[1]) for row in result.all()}


async def get_provider_availability(
    session: AsyncSession, provider_id: int, start_date: date, end_date: date
) -> dict[date, list[TimeSlot]]:
    """Slots per day in [start_date, end_date]; slots holding an active booking are marked booked."""
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    if (end_date - start_date).days >= settings.max_availability_range_days:
        raise ValidationError(
            f"Date range may span at most {settings.max_availability_range_days} days"
        )
    working_days = await get_working_days(session, provider_id)
    blocked = await get_blocked_dates(session, provider_id)
    booked = await get_booked_slot_starts(session, provider_id, start_date, end_date)
    out: dict[date, list[TimeSlot]] = {}
    d = start_date
    while d <= end_date:
        slots = compute_slots(working_days, blocked, d)
        for s in slots:
            s.booked = (d, s.start_time) in booked
        out[d] = slots
        d += timedelta(days=1)
    return out
