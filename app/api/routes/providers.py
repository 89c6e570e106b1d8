import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_provider, get_current_user, get_session
from app.api.schemas.booking import make_pagination
from app.api.schemas.provider import (
    AvailabilityResponse,
    AvailabilityUpdate,
    DayAvailability,
    ProviderSearchResponse,
    ProviderStats,
)
from app.models.provider import Provider, ProviderCreate, ProviderPublic, ProviderUpdate
from app.models.user import User
from app.services.provider_service import (
    get_provider,
    provider_dashboard_stats,
    provider_to_public,
    register_provider,
    search_providers,
    update_availability,
    update_profile,
)
from app.services.slot_service import get_provider_availability

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/providers", tags=["providers"])


@router.post("/register", response_model=ProviderPublic, status_code=status.HTTP_201_CREATED)
async def register(
    body: ProviderCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> ProviderPublic:
    provider = await register_provider(session, current_user, body)
    return await provider_to_public(session, provider)


@router.get("/search", response_model=ProviderSearchResponse)
async def search(
    service: str | None = Query(None),
    city: str | None = Query(None),
    state: str | None = Query(None),
    latitude: float | None = Query(None, ge=-90, le=90),
    longitude: float | None = Query(None, ge=-180, le=180),
    radius: float = Query(10, gt=0, description="Search radius in miles"),
    sort_by: str = Query("rating"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> ProviderSearchResponse:
    results, total = await search_providers(
        session,
        service=service,
        city=city,
        state=state,
        latitude=latitude,
        longitude=longitude,
        radius_miles=radius,
        sort_by=sort_by,
        page=page,
        limit=limit,
    )
    return ProviderSearchResponse(
        providers=[await provider_to_public(session, p, distance_miles=d) for p, d in results],
        pagination=make_pagination(page, limit, total),
    )


@router.get("/dashboard/stats", response_model=ProviderStats)
async def dashboard_stats(
    session: AsyncSession = Depends(get_session),
    provider: Provider = Depends(get_current_provider),
) -> ProviderStats:
    return ProviderStats(**await provider_dashboard_stats(session, provider))


@router.put("/profile", response_model=ProviderPublic)
async def update_my_profile(
    body: ProviderUpdate,
    session: AsyncSession = Depends(get_session),
    provider: Provider = Depends(get_current_provider),
) -> ProviderPublic:
    provider = await update_profile(session, provider, body)
    return await provider_to_public(session, provider)


@router.put("/availability", response_model=ProviderPublic)
async def update_my_availability(
    body: AvailabilityUpdate,
    session: AsyncSession = Depends(get_session),
    provider: Provider = Depends(get_current_provider),
) -> ProviderPublic:
    await update_availability(
        session, provider, working_days=body.working_days, blocked_dates=body.blocked_dates
    )
    logger.info("Provider %s updated availability", provider.id)
    return await provider_to_public(session, provider)


@router.get("/{provider_id}", response_model=ProviderPublic)
async def get_provider_detail(
    provider_id: int,
    session: AsyncSession = Depends(get_session),
) -> ProviderPublic:
    provider = await get_provider(session, provider_id)
    return await provider_to_public(session, provider)


@router.get("/{provider_id}/availability", response_model=AvailabilityResponse)
async def availability(
    provider_id: int,
    start_date: date = Query(...),
    end_date: date | None = Query(None),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityResponse:
    """Slots per day for the range (defaults to one week). `booked` marks slots held by an active booking."""
    provider = await get_provider(session, provider_id)
    end = end_date or start_date + timedelta(days=6)
    by_day = await get_provider_availability(session, provider.id, start_date, end)
    return AvailabilityResponse(
        provider_id=provider.id,
        timezone=provider.timezone,
        days=[DayAvailability(date=d, slots=slots) for d, slots in by_day.items()],
    )
