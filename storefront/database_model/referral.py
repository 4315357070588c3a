import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Boolean, UniqueConstraint, CheckConstraint
from ..core.database import Base


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RewardType(str, enum.Enum):
    SIGNUP_BONUS = "signup_bonus"
    REFERRAL_BONUS = "referral_bonus"
    ORDER_DISCOUNT = "order_discount"


def _new_id() -> str:
    return str(uuid.uuid4())


class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_id", name="uq_referrals_pair"),
        UniqueConstraint("referred_id", name="uq_referrals_referred"),
        CheckConstraint("referrer_id <> referred_id", name="ck_referrals_not_self"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    referrer_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)  # User who referred
    referred_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)  # User who was referred
    referral_code = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=ReferralStatus.PENDING.value)  # 'pending', 'completed', 'cancelled'
    reward_amount = Column(Float, nullable=False, default=500.0)
    reward_given = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Referral(id={self.id}, referrer_id={self.referrer_id}, referred_id={self.referred_id}, status={self.status})>"


class ReferralReward(Base):
    __tablename__ = "referral_rewards"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_referral_rewards_amount_positive"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    referral_id = Column(String(36), ForeignKey("referrals.id"), nullable=True)
    type = Column(String(32), nullable=False)  # 'signup_bonus', 'referral_bonus', 'order_discount'
    amount = Column(Float, nullable=False)
    description = Column(String(255), nullable=False, default="")
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    order_id = Column(String(64), nullable=True)  # order that consumed the reward
    expires_at = Column(DateTime, nullable=True)  # null never expires
    created_at = Column(DateTime, default=datetime.utcnow)

    def is_available(self, now: datetime) -> bool:
        """Unused and not past expiry."""
        return not self.used and (self.expires_at is None or self.expires_at > now)

    def is_expired(self, now: datetime) -> bool:
        return not self.used and self.expires_at is not None and self.expires_at <= now

    def __repr__(self):
        return f"<ReferralReward(id={self.id}, user_id={self.user_id}, type={self.type}, amount={self.amount})>"
