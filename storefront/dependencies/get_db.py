from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core import database
from storefront.core.config import settings, ReferralProgramConfig


async def get_db() -> AsyncGenerator[Optional[AsyncSession], None]:
    """Dependency to get database session.

    Yields ``None`` when no database is configured, in which case the
    referral services answer in mock mode.

    Yields:
        AsyncSession: Database session, or None
    """
    if database.AsyncSessionLocal is None:
        yield None
        return

    async with database.AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_referral_program() -> ReferralProgramConfig:
    """Dependency returning the referral program configuration."""
    return settings.referral_program
