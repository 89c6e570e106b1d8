"""Tests for slot generation and the availability / conflict checks."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.errors import ValidationError
from app.models.booking import Booking, BookingStatus
from app.models.provider import BlockedDate, WorkingDay
from app.services.slot_service import (
    add_minutes,
    compute_slots,
    get_provider_availability,
    has_conflict,
    is_available_at,
    normalize_hhmm,
    parse_hhmm,
)

MONDAY = date(2024, 6, 10)
TUESDAY = date(2024, 6, 11)
SUNDAY = date(2024, 6, 16)
APPOINTMENT_DATE = MONDAY


def monday(start="09:00", end="17:00", is_available=True):
    return WorkingDay(provider_id=1, day="monday", start_time=start, end_time=end, is_available=is_available)


class TestTimeHelpers:
    def test_parse_and_format(self):
        assert parse_hhmm("09:30") == 570
        assert normalize_hhmm("9:05") == "09:05"

    def test_invalid_time_rejected(self):
        for bad in ("24:00", "9am", "12:60", ""):
            with pytest.raises(ValidationError):
                parse_hhmm(bad)

    def test_add_minutes_wraps_midnight(self):
        assert add_minutes("10:00", 60) == "11:00"
        assert add_minutes("23:30", 60) == "00:30"


class TestComputeSlots:
    def test_full_working_day(self):
        """Monday 09:00-17:00 yields sixteen 30 minute slots."""
        slots = compute_slots([monday()], [], MONDAY, 30)
        assert len(slots) == 16
        assert (slots[0].start_time, slots[0].end_time) == ("09:00", "09:30")
        assert (slots[-1].start_time, slots[-1].end_time) == ("16:30", "17:00")
        assert not any(s.booked for s in slots)

    def test_default_duration_from_settings(self):
        assert len(compute_slots([monday()], [], MONDAY)) == 16

    def test_blocked_date_has_no_slots(self):
        blocked = [BlockedDate(provider_id=1, blocked_date=MONDAY, reason="Holiday")]
        assert compute_slots([monday()], blocked, MONDAY, 30) == []

    def test_unavailable_day_has_no_slots(self):
        assert compute_slots([monday(is_available=False)], [], MONDAY, 30) == []

    def test_missing_template_has_no_slots(self):
        assert compute_slots([monday()], [], TUESDAY, 30) == []
        assert compute_slots([], [], SUNDAY, 30) == []

    def test_trailing_partial_slot_dropped(self):
        slots = compute_slots([monday("09:00", "10:45")], [], MONDAY, 30)
        assert [s.start_time for s in slots] == ["09:00", "09:30", "10:00"]
        assert slots[-1].end_time == "10:30"

    def test_window_shorter_than_slot(self):
        assert compute_slots([monday("09:00", "09:20")], [], MONDAY, 30) == []

    @pytest.mark.parametrize("bad", [0, -30, True, 15.0])
    def test_invalid_duration_rejected(self, bad):
        with pytest.raises(ValidationError):
            compute_slots([monday()], [], MONDAY, bad)


class TestIsAvailableAt:
    def test_inside_window(self):
        assert is_available_at([monday()], [], MONDAY, "09:00")
        assert is_available_at([monday()], [], MONDAY, "16:59")

    def test_end_time_is_exclusive(self):
        assert not is_available_at([monday()], [], MONDAY, "17:00")

    def test_before_start(self):
        assert not is_available_at([monday()], [], MONDAY, "08:59")

    def test_blocked_or_unavailable(self):
        blocked = [BlockedDate(provider_id=1, blocked_date=MONDAY)]
        assert not is_available_at([monday()], blocked, MONDAY, "10:00")
        assert not is_available_at([monday(is_available=False)], [], MONDAY, "10:00")
        assert not is_available_at([monday()], [], TUESDAY, "10:00")


def _booking(provider_id, customer_id, start="10:00", status=BookingStatus.PENDING):
    return Booking(
        customer_id=customer_id,
        provider_id=provider_id,
        service_name="Deep Clean",
        service_duration_minutes=60,
        service_price=Decimal("80.00"),
        appointment_date=APPOINTMENT_DATE,
        start_time=start,
        end_time=add_minutes(start, 60),
        status=status,
        payment_amount=Decimal("80.00"),
    )


class TestConflicts:
    async def test_active_booking_conflicts_until_cancelled(self, session, provider, customer):
        booking = _booking(provider.id, customer.id)
        session.add(booking)
        await session.commit()
        assert await has_conflict(session, provider.id, APPOINTMENT_DATE, "10:00")

        booking.status = BookingStatus.CONFIRMED
        await session.commit()
        assert await has_conflict(session, provider.id, APPOINTMENT_DATE, "10:00")

        booking.status = BookingStatus.CANCELLED
        await session.commit()
        assert not await has_conflict(session, provider.id, APPOINTMENT_DATE, "10:00")

    async def test_exclude_own_booking(self, session, provider, customer):
        booking = _booking(provider.id, customer.id)
        session.add(booking)
        await session.commit()
        assert not await has_conflict(
            session, provider.id, APPOINTMENT_DATE, "10:00", exclude_booking_id=booking.id
        )

    async def test_overlap_with_different_start_is_not_a_conflict(self, session, provider, customer):
        """Only an identical start time counts; a 10:30 request over a 10:00-11:00 booking passes."""
        session.add(_booking(provider.id, customer.id, start="10:00"))
        await session.commit()
        assert not await has_conflict(session, provider.id, APPOINTMENT_DATE, "10:30")

    async def test_unique_index_rejects_second_active_booking(self, session, provider, customer, other_customer):
        session.add(_booking(provider.id, customer.id))
        await session.commit()
        session.add(_booking(provider.id, other_customer.id))
        with pytest.raises(IntegrityError):
            await session.commit()


class TestProviderAvailability:
    async def test_booked_slot_marked(self, session, provider, customer):
        session.add(_booking(provider.id, customer.id, start="10:00"))
        await session.commit()
        by_day = await get_provider_availability(session, provider.id, MONDAY, TUESDAY)
        assert list(by_day) == [MONDAY, TUESDAY]
        booked = [s.start_time for s in by_day[MONDAY] if s.booked]
        assert booked == ["10:00"]
        assert not any(s.booked for s in by_day[TUESDAY])

    async def test_weekend_empty(self, session, provider):
        by_day = await get_provider_availability(session, provider.id, SUNDAY, SUNDAY)
        assert by_day == {SUNDAY: []}

    async def test_reversed_range_rejected(self, session, provider):
        with pytest.raises(ValidationError):
            await get_provider_availability(session, provider.id, TUESDAY, MONDAY)

    async def test_range_too_long_rejected(self, session, provider):
        with pytest.raises(ValidationError):
            await get_provider_availability(session, provider.id, date(2024, 6, 1), date(2024, 7, 15))
