from collections.abc import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.core.security import decode_access_token
from app.models.provider import Provider
from app.models.user import User, UserRole
from app.services.provider_service import get_provider_for_user

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Missing or invalid authorization header")
    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise _unauthorized("Invalid or expired token")
    try:
        uid = int(user_id)
    except ValueError:
        raise _unauthorized("Invalid token")
    user = await session.get(User, uid)
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("Account is deactivated")
    return user


def require_role(*roles: UserRole) -> Callable:
    """Dependency factory: the current user must hold one of `roles`."""

    async def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return _check


async def get_current_provider(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(UserRole.PROVIDER)),
) -> Provider:
    provider = await get_provider_for_user(session, current_user.id)
    if not provider:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider profile not found")
    return provider
