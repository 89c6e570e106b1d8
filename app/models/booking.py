from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RefundStatus(StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class ActorRole(StrEnum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    SYSTEM = "system"


# Bookings in these states hold their slot.
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

_ACTIVE_SLOT_WHERE = text("status IN ('pending', 'confirmed')")


class ServiceSnapshot(SQLModel):
    name: str
    description: str | None = None
    duration_minutes: int
    price: Decimal


class PaymentInfo(SQLModel):
    payment_intent_id: str | None = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    paid_at: datetime | None = None


class CancellationInfo(SQLModel):
    cancelled_by: ActorRole
    cancelled_at: datetime
    reason: str | None = None
    refund_amount: Decimal | None = None
    refund_status: RefundStatus | None = None
    refund_id: str | None = None


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # One active booking per provider slot; closes the check-then-insert race.
        Index(
            "uq_bookings_active_slot",
            "provider_id",
            "appointment_date",
            "start_time",
            unique=True,
            postgresql_where=_ACTIVE_SLOT_WHERE,
            sqlite_where=_ACTIVE_SLOT_WHERE,
        ),
    )
    id: int | None = Field(default=None, primary_key=True)
    customer_id: int = Field(foreign_key="users.id", index=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)

    service_name: str
    service_description: str | None = None
    service_duration_minutes: int
    service_price: Decimal = Field(max_digits=10, decimal_places=2)

    appointment_date: date = Field(index=True)
    start_time: str  # HH:MM, wall clock in `timezone`
    end_time: str
    timezone: str = "UTC"
    status: str = Field(default=BookingStatus.PENDING, index=True)
    notes: str | None = Field(default=None, max_length=500)
    provider_notes: str | None = None

    payment_intent_id: str | None = Field(default=None, index=True)
    payment_amount: Decimal = Field(max_digits=10, decimal_places=2)
    payment_currency: str = "usd"
    payment_status: str = Field(default=PaymentStatus.PENDING, index=True)
    paid_at: datetime | None = None

    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    refund_amount: Decimal | None = Field(default=None, max_digits=10, decimal_places=2)
    refund_status: str | None = None
    refund_id: str | None = None

    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)

    @property
    def service(self) -> ServiceSnapshot:
        return ServiceSnapshot(
            name=self.service_name,
            description=self.service_description,
            duration_minutes=self.service_duration_minutes,
            price=self.service_price,
        )

    @property
    def payment(self) -> PaymentInfo:
        return PaymentInfo(
            payment_intent_id=self.payment_intent_id,
            amount=self.payment_amount,
            currency=self.payment_currency,
            status=self.payment_status,
            paid_at=self.paid_at,
        )

    @property
    def cancellation(self) -> CancellationInfo | None:
        if not self.cancelled_by or not self.cancelled_at:
            return None
        return CancellationInfo(
            cancelled_by=self.cancelled_by,
            cancelled_at=self.cancelled_at,
            reason=self.cancellation_reason,
            refund_amount=self.refund_amount,
            refund_status=self.refund_status,
            refund_id=self.refund_id,
        )


class RescheduleEntry(SQLModel, table=True):
    __tablename__ = "booking_reschedules"
    id: int | None = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="bookings.id", index=True)
    original_date: date
    original_start_time: str
    original_end_time: str
    new_date: date
    new_start_time: str
    new_end_time: str
    reason: str | None = None
    rescheduled_at: datetime = Field(default_factory=_utc_naive_now)
    rescheduled_by: str


class RescheduleEntryPublic(SQLModel):
    original_date: date
    original_start_time: str
    original_end_time: str
    new_date: date
    new_start_time: str
    new_end_time: str
    reason: str | None = None
    rescheduled_at: datetime
    rescheduled_by: ActorRole


class BookingPublic(SQLModel):
    id: int
    customer_id: int
    provider_id: int
    service: ServiceSnapshot
    appointment_date: date
    start_time: str
    end_time: str
    timezone: str
    status: BookingStatus
    notes: str | None = None
    provider_notes: str | None = None
    payment: PaymentInfo
    cancellation: CancellationInfo | None = None
    reschedule_history: list[RescheduleEntryPublic] = []
    created_at: datetime
    updated_at: datetime
