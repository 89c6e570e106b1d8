import logging
import math
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.provider import (
    Address,
    BlockedDate,
    BlockedDateCreate,
    BlockedDatePublic,
    Coordinates,
    Provider,
    ProviderCreate,
    ProviderPublic,
    ProviderService,
    ProviderServiceCreate,
    ProviderServicePublic,
    ProviderUpdate,
    WorkingDay,
    WorkingDayCreate,
    WorkingDayPublic,
)
from app.models.user import User, UserRole
from app.services.slot_service import get_blocked_dates, get_working_days

logger = logging.getLogger(__name__)

SORT_OPTIONS = ("rating", "price", "newest", "distance")
METERS_PER_MILE = 1609.34
_EARTH_RADIUS_M = 6371000.0


def _validate_timezone(tz_name: str) -> str:
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone {tz_name!r}")
    return tz_name


def _validate_working_days(working_days: list[WorkingDayCreate]) -> None:
    days = [wd.day for wd in working_days]
    if len(days) != len(set(days)):
        raise ValidationError("Each day of the week may appear at most once in working_days")


async def get_provider(session: AsyncSession, provider_id: int) -> Provider:
    provider = await session.get(Provider, provider_id)
    if not provider:
        raise NotFoundError("Provider not found")
    return provider


async def get_provider_for_user(session: AsyncSession, user_id: int) -> Provider | None:
    result = await session.execute(select(Provider).where(Provider.user_id == user_id))
    return result.scalar_one_or_none()


async def get_services(session: AsyncSession, provider_id: int) -> list[ProviderService]:
    result = await session.execute(
        select(ProviderService).where(ProviderService.provider_id == provider_id).order_by(ProviderService.id)
    )
    return list(result.scalars().all())


async def get_active_service(session: AsyncSession, provider_id: int, name: str) -> ProviderService | None:
    result = await session.execute(
        select(ProviderService).where(
            ProviderService.provider_id == provider_id,
            ProviderService.name == name,
            ProviderService.is_active == True,  # noqa: E712
        )
    )
    return result.scalars().first()


def _add_services(session: AsyncSession, provider_id: int, services: list[ProviderServiceCreate]) -> None:
    for s in services:
        session.add(ProviderService(provider_id=provider_id, **s.model_dump()))


def _add_working_days(session: AsyncSession, provider_id: int, working_days: list[WorkingDayCreate]) -> None:
    for wd in working_days:
        session.add(
            WorkingDay(
                provider_id=provider_id,
                day=wd.day,
                start_time=wd.start_time,
                end_time=wd.end_time,
                is_available=wd.is_available,
            )
        )


async def register_provider(session: AsyncSession, user: User, data: ProviderCreate) -> Provider:
    """Create the provider profile and promote the user to the provider role in one unit of work."""
    if user.role != UserRole.CUSTOMER:
        raise ForbiddenError("Only customers can register as providers")
    if await get_provider_for_user(session, user.id):
        raise ConflictError("User is already a provider")
    _validate_working_days(data.working_days)
    provider = Provider(
        user_id=user.id,
        business_name=data.business_name.strip(),
        bio=data.bio,
        timezone=_validate_timezone(data.timezone or settings.default_timezone),
        **data.address.model_dump(),
        **(data.coordinates.model_dump() if data.coordinates else {}),
    )
    session.add(provider)
    await session.flush()
    _add_services(session, provider.id, data.services)
    _add_working_days(session, provider.id, data.working_days)
    user.role = UserRole.PROVIDER
    session.add(user)
    await session.flush()
    await session.refresh(provider)
    logger.info("Provider %s registered for user %s", provider.id, user.id)
    return provider


async def update_profile(session: AsyncSession, provider: Provider, data: ProviderUpdate) -> Provider:
    if data.business_name is not None:
        provider.business_name = data.business_name.strip()
    if data.bio is not None:
        provider.bio = data.bio
    if data.address is not None:
        for key, value in data.address.model_dump().items():
            setattr(provider, key, value)
    if data.coordinates is not None:
        provider.latitude = data.coordinates.latitude
        provider.longitude = data.coordinates.longitude
    if data.timezone is not None:
        provider.timezone = _validate_timezone(data.timezone)
    if data.services is not None:
        if not data.services:
            raise ValidationError("A provider must offer at least one service")
        # Existing bookings keep their own service snapshot, so services can be replaced wholesale.
        await session.execute(delete(ProviderService).where(ProviderService.provider_id == provider.id))
        _add_services(session, provider.id, data.services)
    session.add(provider)
    await session.flush()
    await session.refresh(provider)
    return provider


async def update_availability(
    session: AsyncSession,
    provider: Provider,
    working_days: list[WorkingDayCreate] | None = None,
    blocked_dates: list[BlockedDateCreate] | None = None,
) -> None:
    """Replace the weekly template and/or the blocked dates."""
    if working_days is not None:
        _validate_working_days(working_days)
        await session.execute(delete(WorkingDay).where(WorkingDay.provider_id == provider.id))
        _add_working_days(session, provider.id, working_days)
    if blocked_dates is not None:
        await session.execute(delete(BlockedDate).where(BlockedDate.provider_id == provider.id))
        for b in blocked_dates:
            session.add(BlockedDate(provider_id=provider.id, blocked_date=b.date, reason=b.reason))
    await session.flush()


async def provider_to_public(
    session: AsyncSession, provider: Provider, distance_miles: float | None = None
) -> ProviderPublic:
    services = await get_services(session, provider.id)
    working_days = await get_working_days(session, provider.id)
    blocked = await get_blocked_dates(session, provider.id)
    coordinates = None
    if provider.latitude is not None and provider.longitude is not None:
        coordinates = Coordinates(latitude=provider.latitude, longitude=provider.longitude)
    return ProviderPublic(
        id=provider.id,
        user_id=provider.user_id,
        business_name=provider.business_name,
        bio=provider.bio,
        address=Address(
            street=provider.street,
            city=provider.city,
            state=provider.state,
            zip_code=provider.zip_code,
            country=provider.country,
        ),
        coordinates=coordinates,
        distance_miles=distance_miles,
        timezone=provider.timezone,
        is_verified=provider.is_verified,
        is_active=provider.is_active,
        rating_average=provider.rating_average,
        rating_count=provider.rating_count,
        services=[ProviderServicePublic.model_validate(s, from_attributes=True) for s in services],
        working_days=[WorkingDayPublic.model_validate(w, from_attributes=True) for w in working_days],
        blocked_dates=[BlockedDatePublic(date=b.blocked_date, reason=b.reason) for b in blocked],
    )


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return _EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _search_order(sort_by: str) -> list:
    if sort_by == "rating":
        return [Provider.rating_average.desc(), Provider.created_at.desc(), Provider.id.desc()]
    if sort_by == "price":
        min_price = (
            select(func.min(ProviderService.price))
            .where(ProviderService.provider_id == Provider.id, ProviderService.is_active == True)  # noqa: E712
            .correlate(Provider)
            .scalar_subquery()
        )
        return [min_price.asc(), Provider.id]
    if sort_by == "distance":
        return [Provider.id]
    return [Provider.created_at.desc(), Provider.id.desc()]


async def search_providers(
    session: AsyncSession,
    service: str | None = None,
    city: str | None = None,
    state: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    radius_miles: float = 10,
    sort_by: str = "rating",
    page: int = 1,
    limit: int = 10,
) -> tuple[list[tuple[Provider, float | None]], int]:
    """Active, verified providers filtered by service name and location (case-insensitive).

    With `latitude` and `longitude` only providers with stored coordinates
    within `radius_miles` match, and each result carries its distance in
    miles; otherwise the distance is None. Returns ((provider, distance)
    pairs for the page, total matches).
    """
    if sort_by not in SORT_OPTIONS:
        raise ValidationError(f"sort_by must be one of {', '.join(SORT_OPTIONS)}")
    if (latitude is None) != (longitude is None):
        raise ValidationError("latitude and longitude must be given together")
    geo = latitude is not None
    if sort_by == "distance" and not geo:
        raise ValidationError("sort_by=distance requires latitude and longitude")
    if geo and radius_miles <= 0:
        raise ValidationError("radius must be positive")

    filters = [Provider.is_active == True, Provider.is_verified == True]  # noqa: E712
    if service:
        matching = select(ProviderService.provider_id).where(
            ProviderService.name.ilike(f"%{service}%"),
            ProviderService.is_active == True,  # noqa: E712
        )
        filters.append(Provider.id.in_(matching))
    if city:
        filters.append(Provider.city.ilike(f"%{city}%"))
    if state:
        filters.append(Provider.state.ilike(f"%{state}%"))

    q = select(Provider).where(*filters).order_by(*_search_order(sort_by))
    offset = (page - 1) * limit
    if not geo:
        total = (await session.execute(select(func.count()).select_from(Provider).where(*filters))).scalar_one()
        result = await session.execute(q.offset(offset).limit(limit))
        return [(p, None) for p in result.scalars().all()], total

    # Distance is computed in Python over the rows that carry coordinates.
    q = q.where(Provider.latitude.is_not(None), Provider.longitude.is_not(None))
    max_meters = radius_miles * METERS_PER_MILE
    nearby: list[tuple[Provider, float]] = []
    for p in (await session.execute(q)).scalars().all():
        meters = haversine_meters(latitude, longitude, p.latitude, p.longitude)
        if meters <= max_meters:
            nearby.append((p, round(meters / METERS_PER_MILE, 2)))
    if sort_by == "distance":
        nearby.sort(key=lambda pair: pair[1])
    return nearby[offset:offset + limit], len(nearby)


async def provider_dashboard_stats(session: AsyncSession, provider: Provider) -> dict:
    async def _count(*conds) -> int:
        q = select(func.count()).select_from(Booking).where(Booking.provider_id == provider.id, *conds)
        return (await session.execute(q)).scalar_one()

    revenue = (
        await session.execute(
            select(func.coalesce(func.sum(Booking.payment_amount), 0)).where(
                Booking.provider_id == provider.id,
                Booking.payment_status == PaymentStatus.SUCCEEDED,
            )
        )
    ).scalar_one()
    return {
        "total_bookings": await _count(),
        "completed_bookings": await _count(Booking.status == BookingStatus.COMPLETED),
        "upcoming_bookings": await _count(Booking.status == BookingStatus.CONFIRMED),
        "total_revenue": revenue,
        "average_rating": provider.rating_average,
        "total_reviews": provider.rating_count,
    }
