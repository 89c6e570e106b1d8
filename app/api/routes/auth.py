import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_session
from app.api.schemas.auth import (
    IdentifierRequest,
    LoginRequest,
    OtpSentResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
    VerifyOtpRequest,
)
from app.models.user import User, UserCreate, UserPublic
from app.services.auth_service import (
    issue_new_otp,
    login_user,
    make_access_token,
    register_user,
    reset_password,
    user_to_public,
    verify_otp,
)
from app.services.notification_service import send_otp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(user: User) -> TokenResponse:
    access, expires_in = make_access_token(user.id)
    return TokenResponse(access_token=access, expires_in=expires_in, user=user_to_public(user))


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> RegisterResponse:
    user, code = await register_user(session, UserCreate(**body.model_dump()))
    background_tasks.add_task(send_otp, user.phone, code)
    return RegisterResponse(
        message="User registered successfully. Please verify your phone number.",
        user_id=user.id,
    )


@router.post("/verify-otp", response_model=TokenResponse)
async def verify(
    body: VerifyOtpRequest,
    session: AsyncSession = Depends(get_session),
) -> TokenResponse:
    user = await verify_otp(session, body.user_id, body.otp)
    return _token_response(user)


@router.post("/resend-otp", response_model=OtpSentResponse)
async def resend_otp(
    body: IdentifierRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> OtpSentResponse:
    user, code = await issue_new_otp(session, body.identifier)
    background_tasks.add_task(send_otp, user.phone, code)
    return OtpSentResponse(message="OTP sent successfully", user_id=user.id)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    session: AsyncSession = Depends(get_session),
) -> TokenResponse:
    user = await login_user(session, body.identifier, body.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    return _token_response(user)


@router.post("/forgot-password", response_model=OtpSentResponse)
async def forgot_password(
    body: IdentifierRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> OtpSentResponse:
    user, code = await issue_new_otp(session, body.identifier)
    background_tasks.add_task(send_otp, user.phone, code)
    return OtpSentResponse(message="Password reset OTP sent to your phone", user_id=user.id)


@router.post("/reset-password")
async def reset(
    body: ResetPasswordRequest,
    session: AsyncSession = Depends(get_session),
) -> dict:
    await reset_password(session, body.user_id, body.otp, body.new_password)
    return {"message": "Password reset successfully"}


@router.get("/me", response_model=UserPublic)
async def me(current_user: User = Depends(get_current_user)) -> UserPublic:
    return user_to_public(current_user)


@router.post("/logout")
async def logout(current_user: User = Depends(get_current_user)) -> dict:
    # Access tokens are stateless; the client drops its copy.
    logger.info("User %s logged out", current_user.id)
    return {"message": "Logged out"}
