"""Fabricated referral records for running without a database.

Every record is built from its inputs so repeated calls return the same
ids. Nothing here is persisted; results carrying these records are flagged
``mock_mode``.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional

from ..core.config import ReferralProgramConfig
from ..database_model.referral import Referral, ReferralReward, ReferralStatus, RewardType

MOCK_NAMESPACE = uuid.UUID("6f1c8a52-3b0e-4f7e-9d2a-0c5e1b7d4a90")
MOCK_REFERRER_ID = "mock-referrer"


def mock_id(*parts: str) -> str:
    return str(uuid.uuid5(MOCK_NAMESPACE, ":".join(parts)))


def mock_referral(
    referred_id: str,
    referral_code: str,
    config: ReferralProgramConfig,
    referral_id: Optional[str] = None,
    status: ReferralStatus = ReferralStatus.PENDING,
    now: Optional[datetime] = None
) -> Referral:
    now = now or datetime.utcnow()
    completed = status == ReferralStatus.COMPLETED
    return Referral(
        id=referral_id or mock_id("referral", referred_id, referral_code),
        referrer_id=MOCK_REFERRER_ID,
        referred_id=referred_id,
        referral_code=referral_code,
        status=status.value,
        reward_amount=config.referral_reward_amount,
        reward_given=completed,
        created_at=now,
        completed_at=now if completed else None,
    )


def mock_reward(
    user_id: str,
    reward_type: RewardType,
    amount: float,
    description: str,
    referral_id: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    used: bool = False,
    order_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    reward_id: Optional[str] = None
) -> ReferralReward:
    created_at = created_at or datetime.utcnow()
    return ReferralReward(
        id=reward_id or mock_id("reward", user_id, reward_type.value, referral_id or ""),
        user_id=user_id,
        referral_id=referral_id,
        type=reward_type.value,
        amount=amount,
        description=description,
        used=used,
        used_at=created_at if used else None,
        order_id=order_id,
        expires_at=expires_at,
        created_at=created_at,
    )


def mock_reward_history(user_id: str, config: ReferralProgramConfig) -> list:
    """A typical mix of rewards for one user, newest first."""
    now = datetime.utcnow()
    day = timedelta(days=1)
    referral_id = mock_id("referral", user_id, "history")
    return [
        mock_reward(
            user_id, RewardType.SIGNUP_BONUS, config.signup_bonus_amount,
            "Welcome bonus for signing up with referral code",
            referral_id=referral_id, expires_at=now + 25 * day, created_at=now - 5 * day,
        ),
        mock_reward(
            user_id, RewardType.ORDER_DISCOUNT, config.order_discount_amount,
            "First order discount for using referral code",
            referral_id=referral_id, expires_at=now + 25 * day, created_at=now - 5 * day,
        ),
        mock_reward(
            user_id, RewardType.REFERRAL_BONUS, config.referral_reward_amount,
            "Referral bonus for successful referral",
            referral_id=mock_id("referral", "friend", user_id), created_at=now - 10 * day,
        ),
        mock_reward(
            user_id, RewardType.ORDER_DISCOUNT, 150.0, "Special promotion discount",
            used=True, expires_at=now - 2 * day, created_at=now - 15 * day,
            reward_id=mock_id("reward", user_id, "promotion"),
        ),
    ]
