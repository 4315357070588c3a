from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from .config import settings
from .errors import UnavailableError

class Base(DeclarativeBase):
    pass


def _async_database_url(raw_url: str) -> str:
    # Convert postgres:// to postgresql+asyncpg:// for async support
    url = raw_url.strip()
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None

if settings.database_url:
    engine = create_async_engine(
        _async_database_url(settings.database_url),
        echo=settings.debug,
        future=True,
        pool_pre_ping=True
    )

    AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def init_db() -> None:
    """Create tables for all registered models."""
    if engine is None:
        return

    from ..database_model import user, referral  # noqa: F401  register models

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def unavailable_on_connection_error():
    """Translate connection-level driver failures into UnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError, OSError) as e:
        raise UnavailableError(f"Database unreachable: {e.__class__.__name__}") from e
