import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError
from app.models.booking import Booking
from app.models.provider import BlockedDate, Provider, ProviderService, WorkingDay
from app.models.user import User
from app.services.auth_service import get_user
from app.services.provider_service import get_provider, get_provider_for_user

logger = logging.getLogger(__name__)


async def list_users(
    session: AsyncSession, role: str | None = None, page: int = 1, limit: int = 10
) -> tuple[list[User], int]:
    q = select(User)
    if role:
        q = q.where(User.role == role)
    total = (await session.execute(select(func.count()).select_from(q.subquery()))).scalar_one()
    result = await session.execute(q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


async def set_user_active(session: AsyncSession, user_id: int, is_active: bool) -> User:
    user = await get_user(session, user_id)
    user.is_active = is_active
    session.add(user)
    await session.flush()
    logger.info("User %s %s", user.id, "activated" if is_active else "deactivated")
    return user


async def delete_user(session: AsyncSession, user_id: int) -> None:
    """Delete a user (and their provider profile); refused while any booking references them."""
    user = await get_user(session, user_id)
    provider = await get_provider_for_user(session, user.id)
    conds = [Booking.customer_id == user.id]
    if provider:
        conds.append(Booking.provider_id == provider.id)
    count = (await session.execute(select(func.count()).select_from(Booking).where(or_(*conds)))).scalar_one()
    if count:
        raise ConflictError("Cannot delete user with existing bookings")
    if provider:
        for model in (ProviderService, WorkingDay, BlockedDate):
            await session.execute(delete(model).where(model.provider_id == provider.id))
        await session.delete(provider)
        await session.flush()
    await session.delete(user)
    await session.flush()
    logger.info("User %s deleted", user_id)


async def set_provider_verified(session: AsyncSession, provider_id: int, is_verified: bool) -> Provider:
    provider = await get_provider(session, provider_id)
    provider.is_verified = is_verified
    session.add(provider)
    await session.flush()
    return provider


async def dashboard_stats(session: AsyncSession) -> dict:
    async def _count(model, *conds) -> int:
        return (await session.execute(select(func.count()).select_from(model).where(*conds))).scalar_one()

    week_ago = datetime.now(UTC).replace(tzinfo=None) - timedelta(days=7)
    return {
        "total_users": await _count(User),
        "total_providers": await _count(Provider),
        "total_bookings": await _count(Booking),
        "verified_users": await _count(User, User.is_verified == True),  # noqa: E712
        "active_providers": await _count(Provider, Provider.is_active == True),  # noqa: E712
        "recent_users": await _count(User, User.created_at >= week_ago),
        "recent_bookings": await _count(Booking, Booking.created_at >= week_ago),
    }
