from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings


def to_async_url(database_url: str) -> str:
    """Map a plain postgresql:// URL to asyncpg.

    asyncpg does not accept psycopg params like sslmode/channel_binding, so they
    are stripped; SSL is enabled via connect_args instead.
    """
    parsed = urlparse(database_url)
    if parsed.scheme != "postgresql":
        return database_url
    query = parse_qs(parsed.query, keep_blank_values=True)
    query.pop("sslmode", None)
    query.pop("channel_binding", None)
    new_query = urlencode(query, doseq=True)
    return urlunparse(("postgresql+asyncpg", parsed.netloc, parsed.path, parsed.params, new_query, parsed.fragment))


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    options: dict[str, Any] = {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}
    if settings.database_ssl:
        options["connect_args"] = {"ssl": True}
    return options


async_database_url = to_async_url(settings.database_url)

engine = create_async_engine(
    async_database_url,
    echo=settings.env == "development",
    **_engine_options(async_database_url),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

