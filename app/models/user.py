from datetime import UTC, datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class UserRole(StrEnum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


class UserBase(SQLModel):
    email: str = Field(unique=True, index=True)
    phone: str = Field(unique=True, index=True)
    first_name: str
    last_name: str


class User(UserBase, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    hashed_password: str
    role: str = Field(default=UserRole.CUSTOMER, index=True)
    is_verified: bool = False
    is_active: bool = True
    otp_code: str | None = None
    otp_expires_at: datetime | None = None
    last_login: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserCreate(SQLModel):
    email: str
    phone: str
    first_name: str
    last_name: str
    password: str


class UserPublic(SQLModel):
    id: int
    email: str
    phone: str
    first_name: str
    last_name: str
    role: UserRole
    is_verified: bool
    is_active: bool
    last_login: datetime | None = None
    created_at: datetime
