from pydantic import BaseModel, EmailStr, Field

from app.models.user import UserPublic


class RegisterRequest(BaseModel):
    email: EmailStr
    phone: str = Field(min_length=7, max_length=20)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=6)


class RegisterResponse(BaseModel):
    message: str
    user_id: int


class VerifyOtpRequest(BaseModel):
    user_id: int
    otp: str = Field(min_length=4, max_length=8)


class IdentifierRequest(BaseModel):
    """Email or phone number; used by resend-otp and forgot-password."""

    identifier: str


class ResetPasswordRequest(BaseModel):
    user_id: int
    otp: str = Field(min_length=4, max_length=8)
    new_password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    identifier: str  # email or phone
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserPublic


class OtpSentResponse(BaseModel):
    message: str
    user_id: int
