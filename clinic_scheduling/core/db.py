import logging
from collections.abc import AsyncGenerator, Iterator
from contextlib import contextmanager
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from clinic_scheduling.core.config import settings
from clinic_scheduling.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


def to_async_url(database_url: str) -> str:
    """Map a sync Postgres URL to asyncpg. asyncpg does not accept psycopg params
    like sslmode/channel_binding, so those are stripped; SSL goes through connect_args."""
    parsed = urlparse(database_url)
    if parsed.scheme not in ("postgresql", "postgres"):
        return database_url
    query = parse_qs(parsed.query, keep_blank_values=True)
    query.pop("sslmode", None)
    query.pop("channel_binding", None)
    new_query = urlencode(query, doseq=True)
    return urlunparse(
        ("postgresql+asyncpg", parsed.netloc, parsed.path, parsed.params, new_query, parsed.fragment)
    )


def build_engine(database_url: str) -> AsyncEngine:
    url = to_async_url(database_url)
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=settings.env == "development",
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args={"ssl": True} if settings.database_ssl else {},
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url)
async_session_maker = build_session_maker(engine)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate connectivity failures into UpstreamUnavailable; business errors pass through."""
    try:
        yield
    except (OperationalError, InterfaceError, OSError) as exc:
        logger.warning("Store unavailable during %s: %s", operation, exc)
        raise UpstreamUnavailable() from exc


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables if using create_all; prefer Alembic in production (the
    range-exclusion constraint only exists in the migration)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
