from app.models.user import User, UserCreate, UserPublic, UserRole
from app.models.provider import BlockedDate, Provider, ProviderService, TimeSlot, Weekday, WorkingDay
from app.models.booking import (
    ACTIVE_BOOKING_STATUSES,
    ActorRole,
    Booking,
    BookingPublic,
    BookingStatus,
    CancellationInfo,
    PaymentInfo,
    PaymentStatus,
    RefundStatus,
    RescheduleEntry,
    ServiceSnapshot,
)

__all__ = [
    "User",
    "UserCreate",
    "UserPublic",
    "UserRole",
    "Provider",
    "ProviderService",
    "WorkingDay",
    "BlockedDate",
    "TimeSlot",
    "Weekday",
    "ACTIVE_BOOKING_STATUSES",
    "ActorRole",
    "Booking",
    "BookingPublic",
    "BookingStatus",
    "CancellationInfo",
    "PaymentInfo",
    "PaymentStatus",
    "RefundStatus",
    "RescheduleEntry",
    "ServiceSnapshot",
]
