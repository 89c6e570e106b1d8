import json
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from fastapi.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.errors import PaymentError

logger = logging.getLogger(__name__)


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class PaymentIntentResult:
    id: str
    client_secret: str | None
    status: str


class StripeGateway:
    """Thin async wrapper over the Stripe SDK; every Stripe failure becomes PaymentError."""

    def __init__(self, api_key: str, webhook_secret: str = "") -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def _require_key(self) -> None:
        if not self.api_key:
            raise PaymentError("Payments are not configured")

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        receipt_email: str | None = None,
    ) -> PaymentIntentResult:
        self._require_key()
        try:
            intent = await run_in_threadpool(
                stripe.PaymentIntent.create,
                api_key=self.api_key,
                amount=to_cents(amount),
                currency=currency,
                metadata=metadata,
                description=description,
                receipt_email=receipt_email,
            )
        except stripe.StripeError as e:
            logger.warning("Stripe payment intent creation failed: %s", e)
            raise PaymentError(f"Payment provider error: {e.user_message or e}") from e
        return PaymentIntentResult(id=intent.id, client_secret=intent.client_secret, status=intent.status)

    async def retrieve_status(self, reference: str) -> str:
        self._require_key()
        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.retrieve, reference, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.warning("Stripe retrieve failed for %s: %s", reference, e)
            raise PaymentError(f"Payment provider error: {e.user_message or e}") from e
        return intent.status

    async def create_refund(self, reference: str, amount: Decimal, metadata: dict[str, str]) -> str:
        self._require_key()
        try:
            refund = await run_in_threadpool(
                stripe.Refund.create,
                api_key=self.api_key,
                payment_intent=reference,
                amount=to_cents(amount),
                reason="requested_by_customer",
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.warning("Stripe refund failed for %s: %s", reference, e)
            raise PaymentError(f"Refund failed: {e.user_message or e}") from e
        return refund.id

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not self.webhook_secret:
            raise PaymentError("Webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise PaymentError(f"Webhook Error: {e}") from e
        return json.loads(payload)


def get_payment_gateway() -> StripeGateway:
    return StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
