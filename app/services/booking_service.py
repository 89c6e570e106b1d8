"""Booking lifecycle: create, pay, confirm, cancel, reschedule, refund.

Every operation mutates only the session it is given; the request-scoped
session commits on success and rolls back on any raised error, so a failed
operation leaves nothing behind.
"""

import logging
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PolicyViolationError,
    ProviderUnavailableError,
    SlotTakenError,
    ValidationError,
)
from app.models.booking import (
    ActorRole,
    Booking,
    BookingPublic,
    BookingStatus,
    PaymentStatus,
    RefundStatus,
    RescheduleEntry,
    RescheduleEntryPublic,
)
from app.models.provider import Provider
from app.models.user import User, UserRole
from app.services import cancellation_policy
from app.services.payment_service import StripeGateway
from app.services.provider_service import get_active_service, get_provider, get_provider_for_user
from app.services.slot_service import (
    add_minutes,
    get_blocked_dates,
    get_working_days,
    has_conflict,
    is_available_at,
    normalize_hhmm,
)

logger = logging.getLogger(__name__)

# Targets a provider may set through update_status, keyed by current status.
ALLOWED_TRANSITIONS: dict[str, tuple[BookingStatus, ...]] = {
    BookingStatus.PENDING: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    BookingStatus.CONFIRMED: (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.NO_SHOW),
    BookingStatus.IN_PROGRESS: (BookingStatus.COMPLETED,),
    BookingStatus.COMPLETED: (),
    BookingStatus.CANCELLED: (),
    BookingStatus.NO_SHOW: (),
}


def _naive_utc(dt: datetime) -> datetime:
    """For TIMESTAMP WITHOUT TIME ZONE: store as naive UTC."""
    return dt.astimezone(UTC).replace(tzinfo=None)


async def get_booking(session: AsyncSession, booking_id: int) -> Booking:
    booking = await session.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


async def get_booking_by_payment_reference(session: AsyncSession, reference: str) -> Booking | None:
    result = await session.execute(select(Booking).where(Booking.payment_intent_id == reference))
    return result.scalars().first()


async def get_reschedule_history(session: AsyncSession, booking_id: int) -> list[RescheduleEntry]:
    result = await session.execute(
        select(RescheduleEntry).where(RescheduleEntry.booking_id == booking_id).order_by(RescheduleEntry.id)
    )
    return list(result.scalars().all())


async def actor_role(session: AsyncSession, booking: Booking, user: User) -> ActorRole | None:
    """CUSTOMER or PROVIDER when `user` is a party to the booking, else None."""
    if booking.customer_id == user.id:
        return ActorRole.CUSTOMER
    if user.role == UserRole.PROVIDER:
        provider = await get_provider_for_user(session, user.id)
        if provider and provider.id == booking.provider_id:
            return ActorRole.PROVIDER
    return None


async def get_booking_for_user(session: AsyncSession, booking_id: int, user: User) -> Booking:
    booking = await get_booking(session, booking_id)
    if user.role != UserRole.ADMIN and await actor_role(session, booking, user) is None:
        raise ForbiddenError("Access denied")
    return booking


async def _ensure_slot_bookable(
    session: AsyncSession,
    provider: Provider,
    d: date,
    start_time: str,
    now: datetime,
    exclude_booking_id: int | None = None,
) -> None:
    starts_at = cancellation_policy.local_datetime(d, start_time, provider.timezone)
    if starts_at <= now:
        raise ValidationError("Appointment date cannot be in the past")
    working_days = await get_working_days(session, provider.id)
    blocked = await get_blocked_dates(session, provider.id)
    if not is_available_at(working_days, blocked, d, start_time):
        raise ProviderUnavailableError("Provider is not available at the requested time")
    if await has_conflict(session, provider.id, d, start_time, exclude_booking_id=exclude_booking_id):
        raise SlotTakenError("Time slot is already booked")


async def _flush_slot(session: AsyncSession) -> None:
    """Flush, mapping a hit on the active-slot unique index to SlotTakenError."""
    try:
        await session.flush()
    except IntegrityError as e:
        raise SlotTakenError("Time slot is already booked") from e


async def create_booking(
    session: AsyncSession,
    customer: User,
    provider_id: int,
    service_name: str,
    appointment_date: date,
    start_time: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> Booking:
    now = cancellation_policy.aware_now(now)
    provider = await get_provider(session, provider_id)
    if not provider.is_active:
        raise NotFoundError("Provider not found")
    service = await get_active_service(session, provider.id, service_name)
    if not service:
        raise NotFoundError("Service not found or inactive")
    start = normalize_hhmm(start_time)
    await _ensure_slot_bookable(session, provider, appointment_date, start, now)

    booking = Booking(
        customer_id=customer.id,
        provider_id=provider.id,
        service_name=service.name,
        service_description=service.description,
        service_duration_minutes=service.duration_minutes,
        service_price=service.price,
        appointment_date=appointment_date,
        start_time=start,
        end_time=add_minutes(start, service.duration_minutes),
        timezone=provider.timezone,
        status=BookingStatus.PENDING,
        notes=notes,
        payment_amount=service.price,
        payment_currency=settings.payment_currency,
        payment_status=PaymentStatus.PENDING,
    )
    session.add(booking)
    await _flush_slot(session)
    await session.refresh(booking)
    logger.info(
        "Booking %s created: provider=%s date=%s start=%s",
        booking.id, provider.id, appointment_date, start,
    )
    return booking


async def attach_payment_intent(
    session: AsyncSession,
    booking_id: int,
    customer: User,
    gateway: StripeGateway,
) -> tuple[Booking, str | None]:
    """Create a gateway payment intent for a pending booking; returns (booking, client_secret)."""
    booking = await get_booking(session, booking_id)
    if booking.customer_id != customer.id:
        raise ForbiddenError("Access denied")
    if booking.payment_status != PaymentStatus.PENDING:
        raise InvalidTransitionError("Payment already processed")
    if booking.status != BookingStatus.PENDING:
        raise InvalidTransitionError(f"Cannot pay for a {booking.status} booking")
    provider = await get_provider(session, booking.provider_id)
    intent = await gateway.create_payment_intent(
        amount=booking.payment_amount,
        currency=booking.payment_currency,
        metadata={
            "booking_id": str(booking.id),
            "customer_id": str(booking.customer_id),
            "provider_id": str(booking.provider_id),
        },
        description=f"Payment for {booking.service_name} with {provider.business_name}",
        receipt_email=customer.email,
    )
    booking.payment_intent_id = intent.id
    booking.updated_at = _naive_utc(cancellation_policy.aware_now())
    session.add(booking)
    await session.flush()
    return booking, intent.client_secret


async def confirm_payment(
    session: AsyncSession,
    payment_reference: str,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> Booking:
    """Mark a pending payment succeeded and confirm its booking."""
    booking = await get_booking_by_payment_reference(session, payment_reference)
    if not booking:
        raise NotFoundError("Booking not found")
    if actor_id is not None and booking.customer_id != actor_id:
        raise ForbiddenError("Access denied")
    if booking.payment_status != PaymentStatus.PENDING:
        raise InvalidTransitionError("Payment already processed")
    if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
        raise InvalidTransitionError(f"Cannot confirm payment for a {booking.status} booking")
    stamp = _naive_utc(cancellation_policy.aware_now(now))
    booking.payment_status = PaymentStatus.SUCCEEDED
    booking.paid_at = stamp
    booking.status = BookingStatus.CONFIRMED
    booking.updated_at = stamp
    session.add(booking)
    await session.flush()
    logger.info("Payment succeeded for booking %s", booking.id)
    return booking


async def fail_payment(session: AsyncSession, payment_reference: str, now: datetime | None = None) -> Booking | None:
    """Gateway reported failure: cancel the booking if its payment was still pending."""
    booking = await get_booking_by_payment_reference(session, payment_reference)
    if not booking or booking.payment_status != PaymentStatus.PENDING:
        return None
    stamp = _naive_utc(cancellation_policy.aware_now(now))
    booking.payment_status = PaymentStatus.FAILED
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_by = ActorRole.SYSTEM
    booking.cancelled_at = stamp
    booking.cancellation_reason = "Payment failed"
    booking.updated_at = stamp
    session.add(booking)
    await session.flush()
    logger.info("Payment failed for booking %s", booking.id)
    return booking


async def update_status(
    session: AsyncSession,
    booking_id: int,
    provider: Provider,
    new_status: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> tuple[Booking, str]:
    """Provider-driven status change. Returns (booking, previous_status)."""
    try:
        target = BookingStatus(new_status)
    except ValueError:
        raise ValidationError(f"Invalid status {new_status!r}")
    if target == BookingStatus.PENDING:
        raise ValidationError("Status cannot be set back to pending")
    booking = await get_booking(session, booking_id)
    if booking.provider_id != provider.id:
        raise ForbiddenError("Access denied")
    previous = booking.status
    if target not in ALLOWED_TRANSITIONS[previous]:
        raise InvalidTransitionError(f"Cannot move booking from {previous} to {target}")
    stamp = _naive_utc(cancellation_policy.aware_now(now))
    booking.status = target
    if target == BookingStatus.CANCELLED:
        booking.cancelled_by = ActorRole.PROVIDER
        booking.cancelled_at = stamp
        if booking.payment_status == PaymentStatus.SUCCEEDED:
            # Provider-initiated: the customer gets the full amount back.
            booking.refund_amount = Decimal(booking.payment_amount).quantize(Decimal("0.01"))
            booking.refund_status = RefundStatus.PENDING
    if notes:
        booking.provider_notes = notes
    booking.updated_at = stamp
    session.add(booking)
    await session.flush()
    logger.info("Booking %s status %s -> %s", booking.id, previous, target)
    return booking, previous


async def cancel_booking(
    session: AsyncSession,
    booking_id: int,
    user: User,
    reason: str | None = None,
    now: datetime | None = None,
) -> Booking:
    now = cancellation_policy.aware_now(now)
    booking = await get_booking(session, booking_id)
    role = await actor_role(session, booking, user)
    if role is None:
        raise ForbiddenError("Access denied")
    if not cancellation_policy.can_cancel(booking, now):
        raise PolicyViolationError("Booking cannot be cancelled at this time")
    stamp = _naive_utc(now)
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_by = role
    booking.cancelled_at = stamp
    booking.cancellation_reason = reason
    if booking.payment_status == PaymentStatus.SUCCEEDED:
        booking.refund_amount = cancellation_policy.refund_amount(booking, now)
        booking.refund_status = RefundStatus.PENDING
    booking.updated_at = stamp
    session.add(booking)
    await session.flush()
    logger.info("Booking %s cancelled by %s, refund %s", booking.id, role, booking.refund_amount)
    return booking


async def reschedule_booking(
    session: AsyncSession,
    booking_id: int,
    user: User,
    new_date: date,
    new_start_time: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Booking:
    now = cancellation_policy.aware_now(now)
    booking = await get_booking(session, booking_id)
    role = await actor_role(session, booking, user)
    if role is None:
        raise ForbiddenError("Access denied")
    if not cancellation_policy.can_reschedule(booking, now):
        raise PolicyViolationError("Booking cannot be rescheduled at this time")
    provider = await get_provider(session, booking.provider_id)
    new_start = normalize_hhmm(new_start_time)
    await _ensure_slot_bookable(session, provider, new_date, new_start, now, exclude_booking_id=booking.id)

    new_end = add_minutes(new_start, booking.service_duration_minutes)
    stamp = _naive_utc(now)
    session.add(
        RescheduleEntry(
            booking_id=booking.id,
            original_date=booking.appointment_date,
            original_start_time=booking.start_time,
            original_end_time=booking.end_time,
            new_date=new_date,
            new_start_time=new_start,
            new_end_time=new_end,
            reason=reason,
            rescheduled_at=stamp,
            rescheduled_by=role,
        )
    )
    booking.appointment_date = new_date
    booking.start_time = new_start
    booking.end_time = new_end
    booking.updated_at = stamp
    session.add(booking)
    await _flush_slot(session)
    logger.info("Booking %s rescheduled by %s to %s %s", booking.id, role, new_date, new_start)
    return booking


async def process_refund(
    session: AsyncSession,
    booking_id: int,
    user: User,
    gateway: StripeGateway,
    reason: str | None = None,
) -> Booking:
    """Move the refund recorded at cancellation through the payment gateway."""
    booking = await get_booking(session, booking_id)
    if user.role != UserRole.ADMIN and await actor_role(session, booking, user) != ActorRole.PROVIDER:
        raise ForbiddenError("Access denied")
    if booking.payment_status != PaymentStatus.SUCCEEDED:
        raise PolicyViolationError("No payment to refund")
    if not booking.payment_intent_id:
        raise PolicyViolationError("No payment intent found for this booking")
    if booking.status != BookingStatus.CANCELLED or booking.refund_status != RefundStatus.PENDING:
        raise InvalidTransitionError("Booking has no pending refund")
    amount = Decimal(booking.refund_amount or 0)
    if amount <= 0:
        raise PolicyViolationError("No refund available")
    refund_id = await gateway.create_refund(
        booking.payment_intent_id,
        amount,
        metadata={"booking_id": str(booking.id), "reason": reason or "Booking cancelled"},
    )
    booking.refund_id = refund_id
    booking.refund_status = RefundStatus.PROCESSED
    booking.updated_at = _naive_utc(cancellation_policy.aware_now())
    session.add(booking)
    await session.flush()
    logger.info("Refund %s processed for booking %s (%s)", refund_id, booking.id, amount)
    return booking


async def _paginate(session: AsyncSession, q, page: int, limit: int) -> tuple[list[Booking], int]:
    total = (await session.execute(select(func.count()).select_from(q.subquery()))).scalar_one()
    result = await session.execute(q.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


async def list_bookings_for_customer(
    session: AsyncSession, customer_id: int, status: str | None = None, page: int = 1, limit: int = 10
) -> tuple[list[Booking], int]:
    q = select(Booking).where(Booking.customer_id == customer_id)
    if status:
        q = q.where(Booking.status == status)
    q = q.order_by(Booking.appointment_date.desc(), Booking.start_time.desc())
    return await _paginate(session, q, page, limit)


async def list_bookings_for_provider(
    session: AsyncSession, provider_id: int, status: str | None = None, page: int = 1, limit: int = 10
) -> tuple[list[Booking], int]:
    q = select(Booking).where(Booking.provider_id == provider_id)
    if status:
        q = q.where(Booking.status == status)
    q = q.order_by(Booking.appointment_date.desc(), Booking.start_time.desc())
    return await _paginate(session, q, page, limit)


async def list_payment_history(
    session: AsyncSession, user: User, page: int = 1, limit: int = 10
) -> tuple[list[Booking], int]:
    q = select(Booking).where(Booking.payment_status == PaymentStatus.SUCCEEDED)
    if user.role == UserRole.PROVIDER:
        provider = await get_provider_for_user(session, user.id)
        conds = [Booking.customer_id == user.id]
        if provider:
            conds.append(Booking.provider_id == provider.id)
        q = q.where(or_(*conds))
    elif user.role != UserRole.ADMIN:
        q = q.where(Booking.customer_id == user.id)
    q = q.order_by(Booking.paid_at.desc())
    return await _paginate(session, q, page, limit)


async def bookings_due_for_reminder(
    session: AsyncSession, window_hours: int, now: datetime | None = None
) -> list[tuple[Booking, User]]:
    """Confirmed bookings starting within the next `window_hours`, with their customers."""
    now = cancellation_policy.aware_now(now)
    horizon = now + timedelta(hours=window_hours)
    # Widen by a day either side; per-booking timezones are resolved below.
    result = await session.execute(
        select(Booking, User)
        .join(User, User.id == Booking.customer_id)
        .where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.appointment_date >= (now - timedelta(days=1)).date(),
            Booking.appointment_date <= (horizon + timedelta(days=1)).date(),
        )
        .order_by(Booking.appointment_date, Booking.start_time)
    )
    due: list[tuple[Booking, User]] = []
    for booking, customer in result.all():
        starts_at = cancellation_policy.appointment_datetime(booking)
        if now < starts_at <= horizon:
            due.append((booking, customer))
    return due


def policy_quote(booking: Booking, now: datetime | None = None) -> dict:
    """What cancelling or rescheduling would mean right now."""
    now = cancellation_policy.aware_now(now)
    return {
        "hours_until_appointment": round(cancellation_policy.hours_until(booking, now), 2),
        "can_cancel": cancellation_policy.can_cancel(booking, now),
        "can_reschedule": cancellation_policy.can_reschedule(booking, now),
        "refund_amount": (
            cancellation_policy.refund_amount(booking, now)
            if booking.payment_status == PaymentStatus.SUCCEEDED
            else Decimal("0.00")
        ),
    }


async def booking_to_public(session: AsyncSession, booking: Booking) -> BookingPublic:
    history = await get_reschedule_history(session, booking.id)
    return BookingPublic(
        id=booking.id,
        customer_id=booking.customer_id,
        provider_id=booking.provider_id,
        service=booking.service,
        appointment_date=booking.appointment_date,
        start_time=booking.start_time,
        end_time=booking.end_time,
        timezone=booking.timezone,
        status=booking.status,
        notes=booking.notes,
        provider_notes=booking.provider_notes,
        payment=booking.payment,
        cancellation=booking.cancellation,
        reschedule_history=[RescheduleEntryPublic.model_validate(h, from_attributes=True) for h in history],
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )
