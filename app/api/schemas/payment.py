from decimal import Decimal

from pydantic import BaseModel, Field

from app.api.schemas.booking import Pagination
from app.models.booking import BookingPublic


class CreatePaymentIntentRequest(BaseModel):
    booking_id: int


class CreatePaymentIntentResponse(BaseModel):
    client_secret: str | None
    payment_intent_id: str
    amount: Decimal
    currency: str


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str


class RefundRequest(BaseModel):
    booking_id: int
    reason: str | None = Field(default=None, max_length=200)


class RefundResponse(BaseModel):
    booking_id: int
    refund_id: str
    amount: Decimal
    status: str


class PaymentHistory(BaseModel):
    payments: list[BookingPublic]
    pagination: Pagination
