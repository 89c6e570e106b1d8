"""Shared fixtures: in-memory database, fake payment gateway, API client."""

import json
import os

# Settings are read at import time; these must be set before any app import.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENV"] = "test"
os.environ["SMTP_HOST"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import app.models  # noqa: E402,F401 - register tables
from app.core.db import get_session  # noqa: E402
from app.core.errors import PaymentError  # noqa: E402
from app.core.security import create_access_token, hash_password  # noqa: E402
from app.main import app  # noqa: E402
from app.models.provider import Provider, ProviderService, WorkingDay  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.payment_service import PaymentIntentResult, get_payment_gateway  # noqa: E402


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self):
        self.intents: dict[str, Decimal] = {}
        self.refunds: list[tuple[str, Decimal]] = []

    async def create_payment_intent(self, amount, currency, metadata, description=None, receipt_email=None):
        reference = f"pi_test_{len(self.intents) + 1}"
        self.intents[reference] = amount
        return PaymentIntentResult(
            id=reference, client_secret=f"{reference}_secret", status="requires_payment_method"
        )

    async def retrieve_status(self, reference):
        return "succeeded" if reference in self.intents else "requires_payment_method"

    async def create_refund(self, reference, amount, metadata):
        self.refunds.append((reference, amount))
        return f"re_test_{len(self.refunds)}"

    def construct_event(self, payload, signature):
        if signature != "valid-signature":
            raise PaymentError("Webhook Error: invalid signature")
        return json.loads(payload)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def client(session_maker, gateway):
    async def _get_session():
        async with session_maker() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _make_user(
    session: AsyncSession,
    email: str,
    phone: str,
    role: UserRole = UserRole.CUSTOMER,
    password: str = "secret123",
    verified: bool = True,
) -> User:
    user = User(
        email=email,
        phone=phone,
        first_name=email.split("@")[0].title(),
        last_name="Tester",
        hashed_password=hash_password(password),
        role=role,
        is_verified=verified,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def _make_provider(
    session: AsyncSession, user: User, verified: bool = True, timezone: str = "UTC", **fields
) -> Provider:
    """Provider working 09:00-17:00 on weekdays, offering a 60 minute 'Deep Clean' at 80.00."""
    provider = Provider(
        user_id=user.id,
        business_name="Sparkle Cleaning",
        street="1 Main St",
        city="Springfield",
        state="IL",
        zip_code="62701",
        country="US",
        timezone=timezone,
        is_verified=verified,
        **fields,
    )
    session.add(provider)
    await session.flush()
    session.add(
        ProviderService(
            provider_id=provider.id, name="Deep Clean", duration_minutes=60, price=Decimal("80.00")
        )
    )
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday"):
        session.add(WorkingDay(provider_id=provider.id, day=day, start_time="09:00", end_time="17:00"))
    user.role = UserRole.PROVIDER
    session.add(user)
    await session.commit()
    await session.refresh(provider)
    return provider


def _auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
async def customer(session):
    return await _make_user(session, "alice@example.com", "+15550000001")


@pytest.fixture
async def other_customer(session):
    return await _make_user(session, "bob@example.com", "+15550000002")


@pytest.fixture
async def provider_user(session):
    return await _make_user(session, "pat@example.com", "+15550000003")


@pytest.fixture
async def provider(session, provider_user):
    return await _make_provider(session, provider_user)


@pytest.fixture
async def admin(session):
    return await _make_user(session, "admin@example.com", "+15550000009", role=UserRole.ADMIN)


@pytest.fixture
def auth_headers():
    return _auth_headers


@pytest.fixture
def user_factory(session):
    async def _factory(email, phone, role=UserRole.CUSTOMER, verified=True):
        return await _make_user(session, email, phone, role=role, verified=verified)

    return _factory


@pytest.fixture
def provider_factory(session):
    async def _factory(user, verified=True, timezone="UTC", **fields):
        return await _make_provider(session, user, verified=verified, timezone=timezone, **fields)

    return _factory
