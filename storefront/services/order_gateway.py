import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database_model.referral import Referral, ReferralStatus
from ..core.config import ReferralProgramConfig, settings
from ..core.database import unavailable_on_connection_error
from ..core.errors import ValidationError, UnavailableError
from ..schemas.referral import CompleteReferralResult
from .referral_ledger import ReferralLedger
from .user_directory import UserId

logger = logging.getLogger(__name__)


class OrderGateway:
    """Tells the referral ledger about completed orders."""

    def __init__(self, db: Optional[AsyncSession], config: Optional[ReferralProgramConfig] = None):
        self.db = db
        self.config = config or settings.referral_program
        self.ledger = ReferralLedger(db, self.config)

    async def order_completed(
        self,
        user_id: UserId,
        order_id: str,
        order_amount: float
    ) -> Optional[CompleteReferralResult]:
        """Complete the buyer's pending referral if this order qualifies.

        Returns None when the buyer has no pending referral, the order is
        below the qualifying amount, or the database cannot be reached.
        Checkout never fails because of the referral program.
        """
        if not user_id or not order_id:
            raise ValidationError("User ID and order ID are required")

        if order_amount < self.config.min_order_amount:
            logger.info(
                f"Order {order_id} of {order_amount} below referral minimum {self.config.min_order_amount}"
            )
            return None

        if self.ledger.mock_mode:
            return None

        try:
            async with unavailable_on_connection_error():
                referral_id = await self._pending_referral_id(user_id)
        except UnavailableError as e:
            logger.warning(f"Skipping referral completion for order {order_id}: {e.detail}")
            return None

        if not referral_id:
            return None

        return await self.ledger.complete_referral(referral_id, order_id, order_amount)

    async def _pending_referral_id(self, user_id: UserId) -> Optional[str]:
        user = await self.ledger.users.resolve(user_id)
        if not user:
            return None

        result = await self.db.execute(
            select(Referral.id).where(
                Referral.referred_id == user.id,
                Referral.status == ReferralStatus.PENDING.value
            )
        )
        return result.scalar_one_or_none()
