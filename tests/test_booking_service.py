"""Tests for the booking lifecycle at the service layer."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from app.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PolicyViolationError,
    ProviderUnavailableError,
    SlotTakenError,
    ValidationError,
)
from app.models.booking import ActorRole, Booking, BookingStatus, PaymentStatus, RefundStatus
from app.services import booking_service
from app.services.slot_service import has_conflict

MONDAY = date(2024, 6, 10)
TUESDAY = date(2024, 6, 11)
SUNDAY = date(2024, 6, 16)
NOW = datetime(2024, 6, 8, 12, 0, tzinfo=UTC)


async def _book(session, customer, provider, d=MONDAY, start="10:00", now=NOW):
    return await booking_service.create_booking(
        session, customer, provider.id, "Deep Clean", d, start, notes="Ring the bell", now=now
    )


async def _confirmed(session, customer, provider, gateway, d=MONDAY, start="10:00"):
    booking = await _book(session, customer, provider, d, start)
    booking, _ = await booking_service.attach_payment_intent(session, booking.id, customer, gateway)
    return await booking_service.confirm_payment(session, booking.payment_intent_id, actor_id=customer.id, now=NOW)


class TestCreateBooking:
    async def test_snapshot_and_defaults(self, session, customer, provider):
        booking = await _book(session, customer, provider, start="9:30")
        assert booking.status == BookingStatus.PENDING
        assert booking.start_time == "09:30"
        assert booking.end_time == "10:30"
        assert booking.service.name == "Deep Clean"
        assert booking.service.duration_minutes == 60
        assert booking.payment.amount == Decimal("80.00")
        assert booking.payment.status == PaymentStatus.PENDING
        assert booking.timezone == "UTC"
        assert booking.cancellation is None

    async def test_past_appointment_rejected(self, session, customer, provider):
        with pytest.raises(ValidationError):
            await _book(session, customer, provider, now=datetime(2024, 6, 10, 10, 0, tzinfo=UTC))

    @pytest.mark.parametrize("d,start", [(MONDAY, "08:00"), (MONDAY, "17:00"), (SUNDAY, "10:00")])
    async def test_outside_working_hours(self, session, customer, provider, d, start):
        with pytest.raises(ProviderUnavailableError):
            await _book(session, customer, provider, d=d, start=start)

    async def test_unknown_service(self, session, customer, provider):
        with pytest.raises(NotFoundError):
            await booking_service.create_booking(session, customer, provider.id, "Window Wash", MONDAY, "10:00", now=NOW)

    async def test_unknown_provider(self, session, customer):
        with pytest.raises(NotFoundError):
            await booking_service.create_booking(session, customer, 999, "Deep Clean", MONDAY, "10:00", now=NOW)

    async def test_same_start_time_is_taken(self, session, customer, other_customer, provider):
        await _book(session, customer, provider)
        with pytest.raises(SlotTakenError):
            await _book(session, other_customer, provider)

    async def test_overlapping_different_start_is_accepted(self, session, customer, other_customer, provider):
        """Conflicts are matched on start time only, so 10:30 is bookable over a 10:00-11:00 booking."""
        await _book(session, customer, provider, start="10:00")
        second = await _book(session, other_customer, provider, start="10:30")
        assert second.start_time == "10:30"


class TestBookCancelRebook:
    async def test_slot_frees_up_after_cancellation(self, session, customer, other_customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        assert booking.status == BookingStatus.CONFIRMED

        with pytest.raises(SlotTakenError):
            await _book(session, other_customer, provider)

        cancelled = await booking_service.cancel_booking(session, booking.id, customer, reason="Plans changed", now=NOW)
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation.cancelled_by == ActorRole.CUSTOMER
        assert cancelled.cancellation.refund_amount == Decimal("80.00")
        assert cancelled.cancellation.refund_status == RefundStatus.PENDING
        assert not await has_conflict(session, provider.id, MONDAY, "10:00")

        rebooked = await _book(session, other_customer, provider)
        assert rebooked.id != booking.id


class TestPayments:
    async def test_confirm_payment(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        assert booking.payment_status == PaymentStatus.SUCCEEDED
        assert booking.paid_at is not None
        assert gateway.intents[booking.payment_intent_id] == Decimal("80.00")

    async def test_confirm_twice_rejected(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        with pytest.raises(InvalidTransitionError):
            await booking_service.confirm_payment(session, booking.payment_intent_id)

    async def test_confirm_by_other_user_forbidden(self, session, customer, other_customer, provider, gateway):
        booking = await _book(session, customer, provider)
        booking, _ = await booking_service.attach_payment_intent(session, booking.id, customer, gateway)
        with pytest.raises(ForbiddenError):
            await booking_service.confirm_payment(session, booking.payment_intent_id, actor_id=other_customer.id)

    async def test_unknown_reference(self, session):
        with pytest.raises(NotFoundError):
            await booking_service.confirm_payment(session, "pi_missing")

    async def test_intent_only_for_own_pending_booking(self, session, customer, other_customer, provider, gateway):
        booking = await _book(session, customer, provider)
        with pytest.raises(ForbiddenError):
            await booking_service.attach_payment_intent(session, booking.id, other_customer, gateway)
        _, secret = await booking_service.attach_payment_intent(session, booking.id, customer, gateway)
        assert secret.endswith("_secret")

    async def test_failed_payment_cancels_booking(self, session, customer, provider, gateway):
        booking = await _book(session, customer, provider)
        booking, _ = await booking_service.attach_payment_intent(session, booking.id, customer, gateway)
        failed = await booking_service.fail_payment(session, booking.payment_intent_id, now=NOW)
        assert failed.status == BookingStatus.CANCELLED
        assert failed.payment_status == PaymentStatus.FAILED
        assert failed.cancellation.cancelled_by == ActorRole.SYSTEM
        assert await booking_service.fail_payment(session, booking.payment_intent_id) is None


class TestCancel:
    async def test_pending_booking_cannot_be_cancelled(self, session, customer, provider):
        booking = await _book(session, customer, provider)
        with pytest.raises(PolicyViolationError):
            await booking_service.cancel_booking(session, booking.id, customer, now=NOW)

    async def test_inside_two_hours_rejected(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        late = datetime(2024, 6, 10, 8, 30, tzinfo=UTC)
        with pytest.raises(PolicyViolationError):
            await booking_service.cancel_booking(session, booking.id, customer, now=late)

    async def test_partial_refund_recorded(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        cancelled = await booking_service.cancel_booking(
            session, booking.id, customer, now=datetime(2024, 6, 10, 0, 0, tzinfo=UTC)
        )
        assert cancelled.refund_amount == Decimal("40.00")

    async def test_stranger_cannot_cancel(self, session, customer, other_customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        with pytest.raises(ForbiddenError):
            await booking_service.cancel_booking(session, booking.id, other_customer, now=NOW)

    async def test_provider_can_cancel(self, session, customer, provider_user, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        cancelled = await booking_service.cancel_booking(session, booking.id, provider_user, now=NOW)
        assert cancelled.cancelled_by == ActorRole.PROVIDER

    async def test_unpaid_booking_records_no_refund(self, session, customer, provider):
        booking = await _book(session, customer, provider)
        await booking_service.update_status(session, booking.id, provider, "confirmed", now=NOW)
        assert booking_service.policy_quote(booking, NOW)["refund_amount"] == Decimal("0.00")
        cancelled = await booking_service.cancel_booking(session, booking.id, customer, now=NOW)
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.refund_amount is None
        assert cancelled.refund_status is None


class TestReschedule:
    async def test_moves_booking_and_records_history(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        moved = await booking_service.reschedule_booking(
            session, booking.id, customer, TUESDAY, "11:00", reason="Conflict at work", now=NOW
        )
        assert (moved.appointment_date, moved.start_time, moved.end_time) == (TUESDAY, "11:00", "12:00")
        history = await booking_service.get_reschedule_history(session, booking.id)
        assert len(history) == 1
        entry = history[0]
        assert (entry.original_date, entry.original_start_time, entry.original_end_time) == (MONDAY, "10:00", "11:00")
        assert (entry.new_date, entry.new_start_time) == (TUESDAY, "11:00")
        assert entry.rescheduled_by == ActorRole.CUSTOMER
        assert not await has_conflict(session, provider.id, MONDAY, "10:00")

    async def test_inside_four_hours_rejected(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        with pytest.raises(PolicyViolationError):
            await booking_service.reschedule_booking(
                session, booking.id, customer, TUESDAY, "11:00", now=datetime(2024, 6, 10, 7, 0, tzinfo=UTC)
            )

    async def test_target_slot_taken(self, session, customer, other_customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        await _book(session, other_customer, provider, d=TUESDAY, start="11:00")
        with pytest.raises(SlotTakenError):
            await booking_service.reschedule_booking(session, booking.id, customer, TUESDAY, "11:00", now=NOW)

    async def test_target_outside_hours(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        with pytest.raises(ProviderUnavailableError):
            await booking_service.reschedule_booking(session, booking.id, customer, SUNDAY, "11:00", now=NOW)


class TestUpdateStatus:
    async def test_happy_path(self, session, customer, provider):
        booking = await _book(session, customer, provider)
        booking, previous = await booking_service.update_status(session, booking.id, provider, "confirmed", now=NOW)
        assert previous == BookingStatus.PENDING
        await booking_service.update_status(session, booking.id, provider, "in-progress", now=NOW)
        booking, _ = await booking_service.update_status(
            session, booking.id, provider, "completed", notes="All done", now=NOW
        )
        assert booking.status == BookingStatus.COMPLETED
        assert booking.provider_notes == "All done"

    async def test_illegal_transitions(self, session, customer, provider):
        booking = await _book(session, customer, provider)
        with pytest.raises(InvalidTransitionError):
            await booking_service.update_status(session, booking.id, provider, "completed")
        with pytest.raises(ValidationError):
            await booking_service.update_status(session, booking.id, provider, "pending")
        with pytest.raises(ValidationError):
            await booking_service.update_status(session, booking.id, provider, "archived")

    async def test_terminal_status_is_final(self, session, customer, provider):
        booking = await _book(session, customer, provider)
        await booking_service.update_status(session, booking.id, provider, "cancelled", now=NOW)
        with pytest.raises(InvalidTransitionError):
            await booking_service.update_status(session, booking.id, provider, "confirmed")

    async def test_provider_cancel_records_actor(self, session, customer, provider):
        booking = await _book(session, customer, provider)
        booking, _ = await booking_service.update_status(session, booking.id, provider, "cancelled", now=NOW)
        assert booking.cancellation.cancelled_by == ActorRole.PROVIDER
        assert booking.refund_status is None

    async def test_other_provider_forbidden(self, session, customer, provider, user_factory, provider_factory):
        other = await provider_factory(await user_factory("olga@example.com", "+15550000004"))
        booking = await _book(session, customer, provider)
        with pytest.raises(ForbiddenError):
            await booking_service.update_status(session, booking.id, other, "confirmed")


class TestRefund:
    async def test_provider_processes_refund(self, session, customer, provider_user, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        await booking_service.cancel_booking(session, booking.id, customer, now=NOW)
        refunded = await booking_service.process_refund(session, booking.id, provider_user, gateway)
        assert refunded.refund_status == RefundStatus.PROCESSED
        assert refunded.refund_id == "re_test_1"
        assert gateway.refunds == [(booking.payment_intent_id, Decimal("80.00"))]

        with pytest.raises(InvalidTransitionError):
            await booking_service.process_refund(session, booking.id, provider_user, gateway)

    async def test_refund_after_provider_cancels_paid_booking(
        self, session, customer, provider_user, provider, gateway
    ):
        booking = await _confirmed(session, customer, provider, gateway)
        booking, _ = await booking_service.update_status(session, booking.id, provider, "cancelled", now=NOW)
        assert booking.refund_amount == Decimal("80.00")
        assert booking.refund_status == RefundStatus.PENDING

        refunded = await booking_service.process_refund(session, booking.id, provider_user, gateway)
        assert refunded.refund_status == RefundStatus.PROCESSED
        assert gateway.refunds == [(booking.payment_intent_id, Decimal("80.00"))]

    async def test_customer_cannot_issue_refund(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        await booking_service.cancel_booking(session, booking.id, customer, now=NOW)
        with pytest.raises(ForbiddenError):
            await booking_service.process_refund(session, booking.id, customer, gateway)

    async def test_unpaid_booking_has_nothing_to_refund(self, session, customer, provider_user, provider, gateway):
        booking = await _book(session, customer, provider)
        with pytest.raises(PolicyViolationError):
            await booking_service.process_refund(session, booking.id, provider_user, gateway)


class TestQueries:
    async def test_listings(self, session, customer, other_customer, provider, gateway):
        await _confirmed(session, customer, provider, gateway)
        await _book(session, customer, provider, d=TUESDAY)
        await _book(session, other_customer, provider, start="12:00")

        mine, total = await booking_service.list_bookings_for_customer(session, customer.id)
        assert total == 2
        assert [b.appointment_date for b in mine] == [TUESDAY, MONDAY]

        confirmed, total = await booking_service.list_bookings_for_customer(session, customer.id, status="confirmed")
        assert total == 1 and confirmed[0].status == BookingStatus.CONFIRMED

        page, total = await booking_service.list_bookings_for_provider(session, provider.id, page=2, limit=2)
        assert total == 3 and len(page) == 1

        paid, total = await booking_service.list_payment_history(session, customer)
        assert total == 1

    async def test_reminders_due(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        due = await booking_service.bookings_due_for_reminder(
            session, 24, now=datetime(2024, 6, 9, 12, 0, tzinfo=UTC)
        )
        assert [(b.id, c.id) for b, c in due] == [(booking.id, customer.id)]
        assert await booking_service.bookings_due_for_reminder(session, 24, now=NOW) == []

    async def test_policy_quote(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        quote = booking_service.policy_quote(booking, NOW)
        assert quote["can_cancel"] and quote["can_reschedule"]
        assert quote["refund_amount"] == Decimal("80.00")
        assert quote["hours_until_appointment"] == 46.0


class TestPersistence:
    async def test_naive_utc_timestamps_are_stored(self, session, customer, provider, gateway):
        booking = await _confirmed(session, customer, provider, gateway)
        await booking_service.cancel_booking(session, booking.id, customer, now=NOW)
        await session.commit()
        session.expunge_all()

        stored = await session.get(Booking, booking.id)
        assert stored.paid_at == datetime(2024, 6, 8, 12, 0)
        assert stored.cancelled_at == datetime(2024, 6, 8, 12, 0)
        assert stored.created_at.tzinfo is None
