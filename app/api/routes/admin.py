import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session, require_role
from app.api.schemas.admin import (
    AdminStats,
    ProviderVerifyUpdate,
    RemindersQueued,
    UserList,
    UserStatusUpdate,
)
from app.api.schemas.booking import make_pagination
from app.core.config import settings
from app.core.errors import ValidationError
from app.models.provider import ProviderPublic
from app.models.user import User, UserPublic, UserRole
from app.services.admin_service import (
    dashboard_stats,
    delete_user,
    list_users,
    set_provider_verified,
    set_user_active,
)
from app.services.auth_service import get_user, user_to_public
from app.services.booking_service import bookings_due_for_reminder
from app.services.notification_service import send_reminder
from app.services.provider_service import provider_to_public

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

require_admin = require_role(UserRole.ADMIN)


@router.get("/users", response_model=UserList)
async def users(
    role: UserRole | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> UserList:
    items, total = await list_users(session, role=role, page=page, limit=limit)
    return UserList(users=[user_to_public(u) for u in items], pagination=make_pagination(page, limit, total))


@router.get("/users/{user_id}", response_model=UserPublic)
async def user_detail(
    user_id: int,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> UserPublic:
    return user_to_public(await get_user(session, user_id))


@router.put("/users/{user_id}/status", response_model=UserPublic)
async def user_status(
    user_id: int,
    body: UserStatusUpdate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> UserPublic:
    if user_id == admin.id and not body.is_active:
        raise ValidationError("Admins cannot deactivate themselves")
    return user_to_public(await set_user_active(session, user_id, body.is_active))


@router.delete("/users/{user_id}")
async def remove_user(
    user_id: int,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> dict:
    if user_id == admin.id:
        raise ValidationError("Admins cannot delete themselves")
    await delete_user(session, user_id)
    return {"message": "User deleted successfully"}


@router.put("/providers/{provider_id}/verify", response_model=ProviderPublic)
async def verify_provider(
    provider_id: int,
    body: ProviderVerifyUpdate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> ProviderPublic:
    provider = await set_provider_verified(session, provider_id, body.is_verified)
    logger.info("Provider %s verification set to %s by admin %s", provider.id, body.is_verified, admin.id)
    return await provider_to_public(session, provider)


@router.get("/dashboard/stats", response_model=AdminStats)
async def stats(
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> AdminStats:
    return AdminStats(**await dashboard_stats(session))


@router.post("/reminders/send", response_model=RemindersQueued)
async def send_reminders(
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> RemindersQueued:
    """Queue reminder emails for confirmed bookings starting within the reminder window."""
    due = await bookings_due_for_reminder(session, settings.reminder_window_hours)
    for booking, customer in due:
        background_tasks.add_task(send_reminder, customer, booking)
    logger.info("Queued %d reminder(s)", len(due))
    return RemindersQueued(queued=len(due))
