import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.core.security import create_access_token, generate_otp, hash_password, verify_password
from app.models.user import User, UserCreate, UserPublic

logger = logging.getLogger(__name__)


def _utc_naive() -> datetime:
    """Naive UTC datetime for DB columns that are TIMESTAMP WITHOUT TIME ZONE."""
    return datetime.now(UTC).replace(tzinfo=None)


async def get_user_by_identifier(session: AsyncSession, identifier: str) -> User | None:
    """Look a user up by email (case-insensitive) or phone."""
    result = await session.execute(
        select(User).where(or_(User.email == identifier.strip().lower(), User.phone == identifier.strip()))
    )
    return result.scalars().first()


async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def user_to_public(user: User) -> UserPublic:
    return UserPublic.model_validate(user, from_attributes=True)


def make_access_token(user_id: int) -> tuple[str, int]:
    return create_access_token(user_id), settings.access_token_expire_minutes * 60


def _issue_otp(user: User) -> str:
    code = generate_otp()
    user.otp_code = hash_password(code)
    user.otp_expires_at = _utc_naive() + timedelta(minutes=settings.otp_expire_minutes)
    return code


def _check_otp(user: User, code: str) -> None:
    if not user.otp_code or not user.otp_expires_at:
        raise ValidationError("Invalid or expired OTP")
    if user.otp_expires_at < _utc_naive() or not verify_password(code, user.otp_code):
        raise ValidationError("Invalid or expired OTP")
    user.otp_code = None
    user.otp_expires_at = None


async def register_user(session: AsyncSession, data: UserCreate) -> tuple[User, str]:
    """Create an unverified customer account. Returns the user and the plain OTP to deliver."""
    email = data.email.strip().lower()
    result = await session.execute(select(User).where(or_(User.email == email, User.phone == data.phone)))
    existing = result.scalars().first()
    if existing:
        if existing.email == email:
            raise ConflictError("Email already registered")
        raise ConflictError("Phone number already registered")
    user = User(
        email=email,
        phone=data.phone,
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        hashed_password=hash_password(data.password),
    )
    code = _issue_otp(user)
    session.add(user)
    await session.flush()
    await session.refresh(user)
    logger.info("User %s registered, awaiting phone verification", user.id)
    return user, code


async def verify_otp(session: AsyncSession, user_id: int, code: str) -> User:
    user = await get_user(session, user_id)
    _check_otp(user, code)
    user.is_verified = True
    session.add(user)
    await session.flush()
    return user


async def issue_new_otp(session: AsyncSession, identifier: str) -> tuple[User, str]:
    """Fresh OTP for resend / forgot-password."""
    user = await get_user_by_identifier(session, identifier)
    if not user:
        raise NotFoundError("User not found")
    code = _issue_otp(user)
    session.add(user)
    await session.flush()
    return user, code


async def reset_password(session: AsyncSession, user_id: int, code: str, new_password: str) -> User:
    user = await get_user(session, user_id)
    _check_otp(user, code)
    user.hashed_password = hash_password(new_password)
    session.add(user)
    await session.flush()
    return user


async def login_user(session: AsyncSession, identifier: str, password: str) -> User | None:
    """Returns the user on valid credentials for a verified account, else None."""
    user = await get_user_by_identifier(session, identifier)
    if not user or not verify_password(password, user.hashed_password):
        return None
    if not user.is_verified:
        raise ForbiddenError("Please verify your account first")
    if not user.is_active:
        raise ForbiddenError("Account is deactivated")
    user.last_login = _utc_naive()
    session.add(user)
    await session.flush()
    return user
