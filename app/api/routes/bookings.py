import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_provider, get_current_user, get_session, require_role
from app.api.schemas.booking import (
    CancelRequest,
    CreateBookingRequest,
    PaginatedBookings,
    PolicyQuote,
    RescheduleRequest,
    UpdateStatusRequest,
    make_pagination,
)
from app.models.booking import BookingPublic, BookingStatus
from app.models.provider import Provider
from app.models.user import User, UserRole
from app.services.auth_service import get_user
from app.services.booking_service import (
    booking_to_public,
    cancel_booking,
    create_booking,
    get_booking_for_user,
    list_bookings_for_customer,
    list_bookings_for_provider,
    policy_quote,
    reschedule_booking,
    update_status,
)
from app.services.notification_service import send_booking_cancellation, send_booking_confirmation

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingPublic, status_code=status.HTTP_201_CREATED)
async def book(
    body: CreateBookingRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(UserRole.CUSTOMER)),
) -> BookingPublic:
    """Create a pending booking; it is confirmed once payment succeeds."""
    booking = await create_booking(
        session,
        current_user,
        provider_id=body.provider_id,
        service_name=body.service_name,
        appointment_date=body.appointment_date,
        start_time=body.start_time,
        notes=body.notes,
    )
    return await booking_to_public(session, booking)


@router.get("/customer", response_model=PaginatedBookings)
async def my_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> PaginatedBookings:
    bookings, total = await list_bookings_for_customer(session, current_user.id, status_filter, page, limit)
    return PaginatedBookings(
        bookings=[await booking_to_public(session, b) for b in bookings],
        pagination=make_pagination(page, limit, total),
    )


@router.get("/provider", response_model=PaginatedBookings)
async def provider_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    provider: Provider = Depends(get_current_provider),
) -> PaginatedBookings:
    bookings, total = await list_bookings_for_provider(session, provider.id, status_filter, page, limit)
    return PaginatedBookings(
        bookings=[await booking_to_public(session, b) for b in bookings],
        pagination=make_pagination(page, limit, total),
    )


@router.get("/{booking_id}", response_model=BookingPublic)
async def get_one(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> BookingPublic:
    booking = await get_booking_for_user(session, booking_id, current_user)
    return await booking_to_public(session, booking)


@router.get("/{booking_id}/refund-quote", response_model=PolicyQuote)
async def refund_quote(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> PolicyQuote:
    booking = await get_booking_for_user(session, booking_id, current_user)
    return PolicyQuote(booking_id=booking.id, **policy_quote(booking))


@router.put("/{booking_id}/status", response_model=BookingPublic)
async def set_status(
    booking_id: int,
    body: UpdateStatusRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    provider: Provider = Depends(get_current_provider),
) -> BookingPublic:
    booking, previous = await update_status(session, booking_id, provider, body.status, notes=body.provider_notes)
    customer = await get_user(session, booking.customer_id)
    if previous == BookingStatus.PENDING and booking.status == BookingStatus.CONFIRMED:
        background_tasks.add_task(send_booking_confirmation, customer, booking)
    elif booking.status == BookingStatus.CANCELLED:
        background_tasks.add_task(send_booking_cancellation, customer, booking, body.provider_notes)
    return await booking_to_public(session, booking)


@router.put("/{booking_id}/cancel", response_model=BookingPublic)
async def cancel(
    booking_id: int,
    background_tasks: BackgroundTasks,
    body: CancelRequest | None = None,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> BookingPublic:
    reason = body.reason if body else None
    booking = await cancel_booking(session, booking_id, current_user, reason=reason)
    customer = await get_user(session, booking.customer_id)
    background_tasks.add_task(send_booking_cancellation, customer, booking, reason)
    return await booking_to_public(session, booking)


@router.put("/{booking_id}/reschedule", response_model=BookingPublic)
async def reschedule(
    booking_id: int,
    body: RescheduleRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> BookingPublic:
    booking = await reschedule_booking(
        session,
        booking_id,
        current_user,
        new_date=body.new_date,
        new_start_time=body.new_start_time,
        reason=body.reason,
    )
    return await booking_to_public(session, booking)
