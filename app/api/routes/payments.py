import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_session
from app.api.schemas.booking import make_pagination
from app.api.schemas.payment import (
    ConfirmPaymentRequest,
    CreatePaymentIntentRequest,
    CreatePaymentIntentResponse,
    PaymentHistory,
    RefundRequest,
    RefundResponse,
)
from app.core.errors import InvalidTransitionError, NotFoundError, PaymentError
from app.models.booking import BookingPublic
from app.models.user import User
from app.services.auth_service import get_user
from app.services.booking_service import (
    attach_payment_intent,
    booking_to_public,
    confirm_payment,
    fail_payment,
    list_payment_history,
    process_refund,
)
from app.services.notification_service import send_booking_confirmation
from app.services.payment_service import StripeGateway, get_payment_gateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-payment-intent", response_model=CreatePaymentIntentResponse)
async def create_payment_intent(
    body: CreatePaymentIntentRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
) -> CreatePaymentIntentResponse:
    booking, client_secret = await attach_payment_intent(session, body.booking_id, current_user, gateway)
    return CreatePaymentIntentResponse(
        client_secret=client_secret,
        payment_intent_id=booking.payment_intent_id,
        amount=booking.payment_amount,
        currency=booking.payment_currency,
    )


@router.post("/confirm-payment", response_model=BookingPublic)
async def confirm(
    body: ConfirmPaymentRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
) -> BookingPublic:
    if await gateway.retrieve_status(body.payment_intent_id) != "succeeded":
        raise PaymentError("Payment not completed")
    booking = await confirm_payment(session, body.payment_intent_id, actor_id=current_user.id)
    background_tasks.add_task(send_booking_confirmation, current_user, booking)
    return await booking_to_public(session, booking)


@router.post("/webhook")
async def webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    gateway: StripeGateway = Depends(get_payment_gateway),
) -> dict:
    payload = await request.body()
    try:
        event = gateway.construct_event(payload, request.headers.get("stripe-signature"))
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e

    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}
    reference = intent.get("id")
    if event_type == "payment_intent.succeeded" and reference:
        try:
            booking = await confirm_payment(session, reference)
        except (NotFoundError, InvalidTransitionError) as e:
            # Already confirmed through confirm-payment, or not one of ours.
            logger.info("Webhook %s for %s ignored: %s", event_type, reference, e.message)
        else:
            customer = await get_user(session, booking.customer_id)
            background_tasks.add_task(send_booking_confirmation, customer, booking)
    elif event_type == "payment_intent.payment_failed" and reference:
        await fail_payment(session, reference)
    else:
        logger.info("Unhandled webhook event type %s", event_type)
    return {"received": True}


@router.post("/refund", response_model=RefundResponse)
async def refund(
    body: RefundRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
) -> RefundResponse:
    booking = await process_refund(session, body.booking_id, current_user, gateway, reason=body.reason)
    return RefundResponse(
        booking_id=booking.id,
        refund_id=booking.refund_id,
        amount=booking.refund_amount,
        status=booking.refund_status,
    )


@router.get("/history", response_model=PaymentHistory)
async def history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> PaymentHistory:
    bookings, total = await list_payment_history(session, current_user, page, limit)
    return PaymentHistory(
        payments=[await booking_to_public(session, b) for b in bookings],
        pagination=make_pagination(page, limit, total),
    )
