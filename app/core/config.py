from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from backend project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = True

    # JWT
    secret_key: str
    access_token_expire_minutes: int = 60 * 24 * 7
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    payment_currency: str = "usd"

    # Twilio (SMS for OTP). Leave account sid empty to disable sending.
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    otp_length: int = 6
    otp_expire_minutes: int = 10

    # Booking business rules
    slot_duration_minutes: int = 30
    cancel_window_hours: int = 2
    reschedule_window_hours: int = 4
    full_refund_window_hours: int = 24
    partial_refund_ratio: float = 0.5
    default_timezone: str = "UTC"
    max_availability_range_days: int = 31
    reminder_window_hours: int = 24

    # Env
    env: str = "development"

    # Email (SMTP). Leave smtp_host empty to disable sending.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str = "ServiceBook"
    site_name: str = "ServiceBook"
    contact_email: str = "support@servicebook.example"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.from_email)

    @property
    def sms_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.stripe_secret_key)


settings = Settings()
