"""SQLAlchemy engine, session factory and schema helpers.

Nothing is created at import time: callers build an engine from Settings
and own its lifetime.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from conduit.config import Settings, get_settings
from conduit.infrastructure.database import models  # noqa: F401  (registers tables)
from conduit.infrastructure.database.base import Base


def _get_async_url(url: str) -> str:
    """Convert a sync SQLAlchemy URL to an async one."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if url == "sqlite://":
        return "sqlite+aiosqlite://"
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite+aiosqlite://", "sqlite+aiosqlite:///:memory:")


def create_database_engine(
    settings: Settings | None = None,
    url: str | None = None,
) -> AsyncEngine:
    """Create an async engine for *url* (defaults to ``settings.database_url``)."""
    settings = settings or get_settings()
    async_url = _get_async_url(url or settings.database_url)

    kwargs: dict = {}
    if _is_memory_sqlite(async_url):
        # one shared connection, otherwise every session sees an empty database
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    return create_async_engine(
        async_url,
        echo=settings.database_echo,
        future=True,
        **kwargs,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create every table that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
