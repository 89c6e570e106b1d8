import re
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import field_validator, model_validator
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

HHMM_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class Weekday(StrEnum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, d: date) -> "Weekday":
        return list(cls)[d.weekday()]


class Provider(SQLModel, table=True):
    __tablename__ = "providers"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", unique=True, index=True)
    business_name: str = Field(index=True)
    bio: str | None = None
    street: str
    city: str = Field(index=True)
    state: str = Field(index=True)
    zip_code: str
    country: str
    latitude: float | None = None
    longitude: float | None = None
    timezone: str = "UTC"
    is_verified: bool = False
    is_active: bool = True
    # Review aggregates; nothing in this service writes them yet.
    rating_average: float = 0.0
    rating_count: int = 0
    created_at: datetime = Field(default_factory=_utc_naive_now)


class ProviderService(SQLModel, table=True):
    __tablename__ = "provider_services"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    duration_minutes: int
    price: Decimal = Field(max_digits=10, decimal_places=2)
    is_active: bool = True


class WorkingDay(SQLModel, table=True):
    """Weekly working-hours template entry; at most one per provider and weekday."""

    __tablename__ = "working_days"
    __table_args__ = (UniqueConstraint("provider_id", "day", name="uq_working_days_provider_day"),)
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    day: str
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    is_available: bool = True


class BlockedDate(SQLModel, table=True):
    __tablename__ = "blocked_dates"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    blocked_date: date = Field(index=True)
    reason: str | None = None


class TimeSlot(SQLModel):
    """A bookable interval derived from the weekly template; never persisted."""

    start_time: str
    end_time: str
    booked: bool = False


class ProviderServiceCreate(SQLModel):
    name: str = Field(min_length=1)
    description: str | None = None
    duration_minutes: int = Field(ge=15)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    is_active: bool = True


class ProviderServicePublic(SQLModel):
    id: int
    name: str
    description: str | None = None
    duration_minutes: int
    price: Decimal
    is_active: bool


class WorkingDayCreate(SQLModel):
    day: Weekday
    start_time: str
    end_time: str
    is_available: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        m = HHMM_RE.match(v)
        if not m:
            raise ValueError("time must be HH:MM")
        return f"{int(m.group(1)):02d}:{m.group(2)}"

    @model_validator(mode="after")
    def _start_before_end(self) -> "WorkingDayCreate":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class WorkingDayPublic(SQLModel):
    day: Weekday
    start_time: str
    end_time: str
    is_available: bool


class BlockedDateCreate(SQLModel):
    date: date
    reason: str | None = None


class BlockedDatePublic(SQLModel):
    date: date
    reason: str | None = None


class Address(SQLModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    country: str = Field(min_length=1)


class Coordinates(SQLModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ProviderCreate(SQLModel):
    business_name: str = Field(min_length=2)
    bio: str | None = Field(default=None, max_length=500)
    address: Address
    coordinates: Coordinates | None = None
    timezone: str | None = None
    services: list[ProviderServiceCreate] = Field(min_length=1)
    working_days: list[WorkingDayCreate] = []


class ProviderUpdate(SQLModel):
    business_name: str | None = Field(default=None, min_length=2)
    bio: str | None = Field(default=None, max_length=500)
    address: Address | None = None
    coordinates: Coordinates | None = None
    timezone: str | None = None
    services: list[ProviderServiceCreate] | None = None


class ProviderPublic(SQLModel):
    id: int
    user_id: int
    business_name: str
    bio: str | None = None
    address: Address
    coordinates: Coordinates | None = None
    distance_miles: float | None = None
    timezone: str
    is_verified: bool
    is_active: bool
    rating_average: float
    rating_count: int
    services: list[ProviderServicePublic] = []
    working_days: list[WorkingDayPublic] = []
    blocked_dates: list[BlockedDatePublic] = []
