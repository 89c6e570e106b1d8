from pydantic import BaseModel

from app.api.schemas.booking import Pagination
from app.models.user import UserPublic


class UserList(BaseModel):
    users: list[UserPublic]
    pagination: Pagination


class UserStatusUpdate(BaseModel):
    is_active: bool


class ProviderVerifyUpdate(BaseModel):
    is_verified: bool = True


class AdminStats(BaseModel):
    total_users: int
    total_providers: int
    total_bookings: int
    verified_users: int
    active_providers: int
    recent_users: int
    recent_bookings: int


class RemindersQueued(BaseModel):
    queued: int
