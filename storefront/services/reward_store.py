import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database_model.referral import ReferralReward, RewardType
from ..core.config import ReferralProgramConfig, settings
from ..core.database import unavailable_on_connection_error
from ..core.errors import NotFoundError, ValidationError, AlreadyUsedError, ExpiredError, UnavailableError
from ..schemas.referral import RewardResponse, RewardResult, RewardListResponse, as_naive_utc
from .user_directory import UserId
from . import mock_responses

logger = logging.getLogger(__name__)


def _reward_type(value) -> RewardType:
    try:
        return RewardType(value)
    except ValueError:
        raise ValidationError(f"Unknown reward type: {value}")


class RewardStore:
    """Issues, redeems and lists referral rewards."""

    def __init__(self, db: Optional[AsyncSession], config: Optional[ReferralProgramConfig] = None):
        self.db = db
        self.config = config or settings.referral_program

    @property
    def mock_mode(self) -> bool:
        return self.db is None or not self.config.persistence_enabled

    def build_reward(
        self,
        user_id: UserId,
        reward_type: RewardType,
        amount: float,
        description: str = "",
        referral_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None
    ) -> ReferralReward:
        """Validate and stage a reward on the session without committing."""
        if amount is None or amount <= 0:
            raise ValidationError("Reward amount must be greater than zero")

        reward = ReferralReward(
            user_id=user_id,
            referral_id=referral_id,
            type=_reward_type(reward_type).value,
            amount=float(amount),
            description=description,
            used=False,
            expires_at=expires_at,
            created_at=created_at or datetime.utcnow(),
        )
        self.db.add(reward)
        return reward

    async def get_reward(self, reward_id: str) -> Optional[ReferralReward]:
        result = await self.db.execute(
            select(ReferralReward)
            .where(ReferralReward.id == reward_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_reward(
        self,
        user_id: UserId,
        reward_type: RewardType,
        amount: float,
        description: str = "",
        referral_id: Optional[str] = None,
        expires_at: Optional[datetime] = None
    ) -> RewardResult:
        """Create a new unused reward for a user."""
        if not user_id:
            raise ValidationError("User ID is required")
        reward_type = _reward_type(reward_type)
        expires_at = as_naive_utc(expires_at)
        message = f"{reward_type.value} reward created successfully"

        if not self.mock_mode:
            try:
                async with unavailable_on_connection_error():
                    reward = self.build_reward(
                        user_id, reward_type, amount, description, referral_id, expires_at
                    )
                    await self.db.commit()
                logger.info(f"Created {reward.type} reward {reward.id} of {reward.amount} for user {user_id}")
                return RewardResult(reward=RewardResponse.model_validate(reward), message=message)
            except UnavailableError as e:
                logger.warning(f"Falling back to mock reward creation for user {user_id}: {e.detail}")

        if amount is None or amount <= 0:
            raise ValidationError("Reward amount must be greater than zero")
        reward = mock_responses.mock_reward(
            user_id, reward_type, amount, description, referral_id=referral_id, expires_at=expires_at
        )
        return RewardResult(reward=RewardResponse.model_validate(reward), message=message, mock_mode=True)

    async def use_reward(self, reward_id: str, order_id: Optional[str] = None) -> RewardResult:
        """Redeem a reward, optionally recording the order that consumed it."""
        if not reward_id:
            raise ValidationError("Reward ID is required")

        if not self.mock_mode:
            try:
                async with unavailable_on_connection_error():
                    reward = await self._mark_used(reward_id, order_id)
                logger.info(f"Reward {reward_id} used" + (f" on order {order_id}" if order_id else ""))
                return RewardResult(
                    reward=RewardResponse.model_validate(reward),
                    message="Reward used successfully"
                )
            except UnavailableError as e:
                logger.warning(f"Falling back to mock reward use for {reward_id}: {e.detail}")

        reward = mock_responses.mock_reward(
            mock_responses.MOCK_REFERRER_ID, RewardType.ORDER_DISCOUNT,
            self.config.order_discount_amount, "First order discount for using referral code",
            used=True, order_id=order_id, reward_id=reward_id,
        )
        return RewardResult(
            reward=RewardResponse.model_validate(reward),
            message="Reward used successfully",
            mock_mode=True
        )

    async def _mark_used(self, reward_id: str, order_id: Optional[str]) -> ReferralReward:
        now = datetime.utcnow()
        result = await self.db.execute(
            update(ReferralReward)
            .where(
                ReferralReward.id == reward_id,
                ReferralReward.used == False,  # noqa: E712
                or_(
                    ReferralReward.expires_at.is_(None),
                    ReferralReward.expires_at > now
                )
            )
            .values(used=True, used_at=now, order_id=order_id)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            reward = await self.get_reward(reward_id)
            if not reward:
                raise NotFoundError("Reward not found")
            if reward.used:
                raise AlreadyUsedError()
            raise ExpiredError()

        await self.db.commit()
        return await self.get_reward(reward_id)

    async def list_rewards(self, user_id: UserId) -> RewardListResponse:
        """All rewards of a user, newest first."""
        if self.mock_mode:
            rewards = mock_responses.mock_reward_history(user_id, self.config)
            return RewardListResponse(
                rewards=[RewardResponse.model_validate(r) for r in rewards],
                total_amount=sum(r.amount for r in rewards),
                mock_mode=True
            )

        try:
            result = await self.db.execute(
                select(ReferralReward)
                .where(ReferralReward.user_id == user_id)
                .order_by(ReferralReward.created_at.desc())
            )
            rewards = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Could not load rewards for user {user_id}: {e}")
            await self.db.rollback()
            return RewardListResponse(rewards=[])

        return RewardListResponse(
            rewards=[RewardResponse.model_validate(r) for r in rewards],
            total_amount=sum(r.amount for r in rewards)
        )

    async def list_available(self, user_id: UserId, reward_type: Optional[RewardType] = None) -> RewardListResponse:
        """Unused, unexpired rewards of a user with their total amount."""
        if reward_type is not None:
            reward_type = _reward_type(reward_type)
        now = datetime.utcnow()

        if self.mock_mode:
            rewards = [
                r for r in mock_responses.mock_reward_history(user_id, self.config)
                if r.is_available(now) and (reward_type is None or r.type == reward_type.value)
            ]
            return RewardListResponse(
                rewards=[RewardResponse.model_validate(r) for r in rewards],
                total_amount=sum(r.amount for r in rewards),
                mock_mode=True
            )

        query = select(ReferralReward).where(
            ReferralReward.user_id == user_id,
            ReferralReward.used == False,  # noqa: E712
            or_(
                ReferralReward.expires_at.is_(None),
                ReferralReward.expires_at > now
            )
        )
        if reward_type is not None:
            query = query.where(ReferralReward.type == reward_type.value)

        try:
            result = await self.db.execute(query.order_by(ReferralReward.created_at.desc()))
            rewards = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Could not load available rewards for user {user_id}: {e}")
            await self.db.rollback()
            return RewardListResponse(rewards=[])

        return RewardListResponse(
            rewards=[RewardResponse.model_validate(r) for r in rewards],
            total_amount=sum(r.amount for r in rewards)
        )
