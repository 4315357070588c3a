import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database_model.referral import Referral, ReferralReward, ReferralStatus, RewardType
from ..core.config import ReferralProgramConfig, settings
from ..core.database import unavailable_on_connection_error
from ..core.errors import (
    NotFoundError,
    ValidationError,
    ConflictError,
    InvalidReferralCodeError,
    SelfReferralError,
    AlreadyReferredError,
    AlreadyCompletedError,
    UnavailableError
)
from ..schemas.referral import (
    ApplyReferralResult,
    CancelReferralResult,
    CompleteReferralResult,
    ReferralActivity,
    ReferralListResponse,
    ReferralResponse,
    ReferralStats,
    ReferralStatsResponse,
    ReferralValidationResponse,
    ReferrerPreview,
    RewardPreview,
    RewardResponse
)
from .reward_store import RewardStore
from .user_directory import UserDirectory, UserId
from . import mock_responses

logger = logging.getLogger(__name__)

REFERRAL_CODE_PATTERN = re.compile(r"^[A-Z]{4}\d{4}$")
RECENT_ACTIVITY_LIMIT = 5


def normalize_referral_code(raw_code: Optional[str]) -> str:
    return (raw_code or "").strip().upper()


def mask_email(email: str) -> str:
    """Keep the first two characters of the local part: jo***@example.com."""
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}" if domain else f"{local[:2]}***"


class ReferralLedger:
    """Service owning the referral lifecycle and the rewards it issues.

    Registration, the apply-code endpoint and order completion all go
    through this class. Uniqueness and state transitions are re-checked by
    the database (unique constraints and conditional updates), so
    concurrent duplicate requests cannot double-apply or double-pay.
    """

    def __init__(self, db: Optional[AsyncSession], config: Optional[ReferralProgramConfig] = None):
        self.db = db
        self.config = config or settings.referral_program
        self.rewards = RewardStore(db, self.config)
        self.users = UserDirectory(db) if db is not None else None

    @property
    def mock_mode(self) -> bool:
        return self.db is None or not self.config.persistence_enabled

    @property
    def reward_lifetime(self) -> timedelta:
        return timedelta(days=self.config.reward_lifetime_days)

    async def get_referral(self, referral_id: str) -> Optional[Referral]:
        result = await self.db.execute(
            select(Referral)
            .where(Referral.id == referral_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def validate_referral_code(self, raw_code: str) -> ReferralValidationResponse:
        """Check a code before registration and preview its rewards."""
        code = normalize_referral_code(raw_code)
        if not code:
            raise ValidationError("Referral code is required")

        if not REFERRAL_CODE_PATTERN.match(code):
            raise ValidationError(
                "Invalid referral code format. Code should be 4 letters followed by 4 numbers (e.g., JOHN1234)"
            )

        preview = RewardPreview(
            signup_bonus=self.config.signup_bonus_amount,
            first_order_discount=self.config.order_discount_amount,
            referrer_reward=self.config.referral_reward_amount
        )

        if self.mock_mode:
            return ReferralValidationResponse(
                valid=False,
                message="Referral validation is currently unavailable. You can still create an account.",
                mock_mode=True
            )

        try:
            async with unavailable_on_connection_error():
                referrer = await self.users.find_by_referral_code(code)
        except UnavailableError as e:
            logger.warning(f"Referral code validation degraded: {e.detail}")
            return ReferralValidationResponse(
                valid=False,
                message="Unable to validate referral code at the moment. You can still create an account.",
                mock_mode=True
            )

        if not referrer:
            return ReferralValidationResponse(
                valid=False,
                message="This referral code is not valid. You can still create an account without it."
            )

        return ReferralValidationResponse(
            valid=True,
            referrer=ReferrerPreview(name=referrer.name, email=mask_email(referrer.email)),
            rewards=preview,
            message=(
                f"Great! You'll get {preview.signup_bonus:g} welcome bonus and "
                f"{preview.first_order_discount:g} first order discount. {referrer.name} will earn "
                f"{preview.referrer_reward:g} when you make your first purchase."
            )
        )

    async def apply_referral_code(self, user_id: UserId, raw_code: str) -> ApplyReferralResult:
        """Link a user to the owner of a referral code and issue their rewards."""
        code = normalize_referral_code(raw_code)
        if not user_id or not code:
            raise ValidationError("User ID and referral code are required")

        if not self.mock_mode:
            try:
                async with unavailable_on_connection_error():
                    return await self._apply(user_id, code)
            except UnavailableError as e:
                logger.warning(f"Falling back to mock referral for user {user_id}: {e.detail}")

        return self._mock_apply(user_id, code)

    async def _apply(self, user_id: UserId, code: str) -> ApplyReferralResult:
        user = await self.users.resolve(user_id)
        if not user:
            raise NotFoundError("User not found")

        referrer = await self.users.find_by_referral_code(code)
        if not referrer:
            raise InvalidReferralCodeError()

        if referrer.id == user.id:
            raise SelfReferralError()

        # a user can be referred once, by anyone
        existing = await self.db.execute(
            select(Referral.id).where(Referral.referred_id == user.id).limit(1)
        )
        if existing.scalar_one_or_none():
            raise AlreadyReferredError()

        now = datetime.utcnow()
        referral = Referral(
            referrer_id=referrer.id,
            referred_id=user.id,
            referral_code=code,
            status=ReferralStatus.PENDING.value,
            reward_amount=self.config.referral_reward_amount,
            reward_given=False,
            created_at=now,
        )
        self.db.add(referral)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyReferredError("Referral already exists for this user")

        logger.info(f"Referral {referral.id} created: {referrer.id} -> {user.id} with code {code}")
        referral_response = ReferralResponse.model_validate(referral)

        # The referral stays committed even if reward creation fails below
        expires_at = now + self.reward_lifetime
        order_discount = self.rewards.build_reward(
            user.id, RewardType.ORDER_DISCOUNT, self.config.order_discount_amount,
            "First order discount for using referral code",
            referral_id=referral.id, expires_at=expires_at, created_at=now
        )
        signup_bonus = self.rewards.build_reward(
            user.id, RewardType.SIGNUP_BONUS, self.config.signup_bonus_amount,
            "Welcome bonus for using referral code",
            referral_id=referral.id, expires_at=expires_at, created_at=now
        )
        try:
            async with unavailable_on_connection_error():
                await self.db.commit()
        except UnavailableError as e:
            logger.error(
                f"Referral {referral_response.id} was saved but its rewards were not: {e.detail}"
            )
            await self.db.rollback()
            return ApplyReferralResult(
                referral=referral_response,
                rewards=[],
                message="Referral code applied, but your rewards could not be issued. Please contact support."
            )

        return ApplyReferralResult(
            referral=referral_response,
            rewards=[
                RewardResponse.model_validate(order_discount),
                RewardResponse.model_validate(signup_bonus)
            ],
            message=self._applied_message()
        )

    def _applied_message(self) -> str:
        return (
            f"Referral code applied! You got {self.config.signup_bonus_amount:g} welcome bonus and "
            f"{self.config.order_discount_amount:g} discount on your first order."
        )

    def _mock_apply(self, user_id: UserId, code: str) -> ApplyReferralResult:
        now = datetime.utcnow()
        referral = mock_responses.mock_referral(user_id, code, self.config, now=now)
        expires_at = now + self.reward_lifetime
        rewards = [
            mock_responses.mock_reward(
                user_id, RewardType.ORDER_DISCOUNT, self.config.order_discount_amount,
                "First order discount for using referral code",
                referral_id=referral.id, expires_at=expires_at, created_at=now
            ),
            mock_responses.mock_reward(
                user_id, RewardType.SIGNUP_BONUS, self.config.signup_bonus_amount,
                "Welcome bonus for using referral code",
                referral_id=referral.id, expires_at=expires_at, created_at=now
            ),
        ]
        return ApplyReferralResult(
            referral=ReferralResponse.model_validate(referral),
            rewards=[RewardResponse.model_validate(r) for r in rewards],
            message=self._applied_message(),
            mock_mode=True
        )

    async def complete_referral(
        self,
        referral_id: str,
        order_id: str,
        order_amount: Optional[float] = None
    ) -> CompleteReferralResult:
        """Complete a pending referral and pay the referrer bonus once."""
        if not referral_id or not order_id:
            raise ValidationError("Referral ID and order ID are required")

        if not self.mock_mode:
            try:
                async with unavailable_on_connection_error():
                    return await self._complete(referral_id, order_id, order_amount)
            except UnavailableError as e:
                logger.warning(f"Falling back to mock completion of referral {referral_id}: {e.detail}")

        return self._mock_complete(referral_id, order_id)

    async def _complete(
        self,
        referral_id: str,
        order_id: str,
        order_amount: Optional[float]
    ) -> CompleteReferralResult:
        now = datetime.utcnow()
        result = await self.db.execute(
            update(Referral)
            .where(
                Referral.id == referral_id,
                Referral.status == ReferralStatus.PENDING.value
            )
            .values(status=ReferralStatus.COMPLETED.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )

        # no row matched, so there is nothing to undo
        if result.rowcount == 0:
            referral = await self.get_referral(referral_id)
            if not referral:
                raise NotFoundError("Referral not found")
            if referral.status == ReferralStatus.COMPLETED.value:
                raise AlreadyCompletedError()
            raise ConflictError(f"Referral is {referral.status}")

        referral = await self.get_referral(referral_id)
        bonus = self.rewards.build_reward(
            referral.referrer_id, RewardType.REFERRAL_BONUS, referral.reward_amount,
            f"Referral bonus for successful referral (Order: {order_id})",
            referral_id=referral.id, created_at=now
        )
        referral.reward_given = True
        await self.db.commit()

        logger.info(
            f"Referral {referral.id} completed by order {order_id}"
            + (f" ({order_amount})" if order_amount is not None else "")
            + f"; referrer {referral.referrer_id} earned {referral.reward_amount}"
        )

        return CompleteReferralResult(
            referral=ReferralResponse.model_validate(referral),
            referrer_reward=RewardResponse.model_validate(bonus),
            message=f"Referral completed! Referrer earned {referral.reward_amount:g} bonus."
        )

    def _mock_complete(self, referral_id: str, order_id: str) -> CompleteReferralResult:
        now = datetime.utcnow()
        referral = mock_responses.mock_referral(
            mock_responses.mock_id("referred", referral_id), "", self.config,
            referral_id=referral_id, status=ReferralStatus.COMPLETED, now=now
        )
        bonus = mock_responses.mock_reward(
            referral.referrer_id, RewardType.REFERRAL_BONUS, referral.reward_amount,
            f"Referral bonus for successful referral (Order: {order_id})",
            referral_id=referral_id, created_at=now
        )
        return CompleteReferralResult(
            referral=ReferralResponse.model_validate(referral),
            referrer_reward=RewardResponse.model_validate(bonus),
            message=f"Referral completed! Referrer earned {referral.reward_amount:g} bonus.",
            mock_mode=True
        )

    async def cancel_referral(self, referral_id: str) -> CancelReferralResult:
        """Cancel a pending referral."""
        if not referral_id:
            raise ValidationError("Referral ID is required")

        if self.mock_mode:
            referral = mock_responses.mock_referral(
                mock_responses.mock_id("referred", referral_id), "", self.config,
                referral_id=referral_id, status=ReferralStatus.CANCELLED
            )
            return CancelReferralResult(referral=ReferralResponse.model_validate(referral), mock_mode=True)

        async with unavailable_on_connection_error():
            result = await self.db.execute(
                update(Referral)
                .where(
                    Referral.id == referral_id,
                    Referral.status == ReferralStatus.PENDING.value
                )
                .values(status=ReferralStatus.CANCELLED.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                referral = await self.get_referral(referral_id)
                if not referral:
                    raise NotFoundError("Referral not found")
                raise ConflictError(f"Referral is already {referral.status}")

            await self.db.commit()
            referral = await self.get_referral(referral_id)

        logger.info(f"Referral {referral_id} cancelled")
        return CancelReferralResult(referral=ReferralResponse.model_validate(referral))

    async def _referrals_for(self, user_id: UserId) -> List[Referral]:
        result = await self.db.execute(
            select(Referral)
            .where(or_(Referral.referrer_id == user_id, Referral.referred_id == user_id))
            .order_by(Referral.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_referrals(self, user_id: UserId) -> ReferralListResponse:
        """Referrals where the user is either side, newest first."""
        if not user_id:
            raise ValidationError("User ID is required")
        if self.mock_mode:
            return ReferralListResponse(referrals=[], mock_mode=True)

        try:
            user = await self.users.resolve(user_id)
            if not user:
                return ReferralListResponse(referrals=[])
            referrals = await self._referrals_for(user.id)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Could not load referrals for user {user_id}: {e}")
            await self.db.rollback()
            return ReferralListResponse(referrals=[])

        return ReferralListResponse(
            referrals=[ReferralResponse.model_validate(r) for r in referrals]
        )

    async def compute_statistics(self, user_id: UserId) -> ReferralStatsResponse:
        """Aggregate referral counters and reward state for a user.

        Referral counters and earnings only count referrals the user made as
        the referrer; being referred shows up in the reward counters instead.
        """
        if not user_id:
            raise ValidationError("User ID is required")
        if self.mock_mode:
            return ReferralStatsResponse(stats=ReferralStats(), mock_mode=True)

        try:
            user = await self.users.resolve(user_id)
            if not user:
                return ReferralStatsResponse(stats=ReferralStats())

            result = await self.db.execute(
                select(Referral)
                .where(Referral.referrer_id == user.id)
                .order_by(Referral.created_at.desc())
            )
            referrals = result.scalars().all()

            result = await self.db.execute(
                select(ReferralReward).where(ReferralReward.user_id == user.id)
            )
            rewards = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Could not compute referral statistics for user {user_id}: {e}")
            await self.db.rollback()
            return ReferralStatsResponse(stats=ReferralStats())

        now = datetime.utcnow()
        stats = ReferralStats(
            total_referrals=len(referrals),
            completed_referrals=sum(1 for r in referrals if r.status == ReferralStatus.COMPLETED.value),
            pending_referrals=sum(1 for r in referrals if r.status == ReferralStatus.PENDING.value),
            total_earnings=sum(r.reward_amount for r in referrals if r.reward_given),
            pending_earnings=sum(
                r.reward_amount for r in referrals
                if r.status == ReferralStatus.COMPLETED.value and not r.reward_given
            ),
            active_rewards=sum(1 for r in rewards if r.is_available(now)),
            expired_rewards=sum(1 for r in rewards if r.is_expired(now)),
        )

        recent_activity = []
        for referral in referrals[:RECENT_ACTIVITY_LIMIT]:
            if referral.status == ReferralStatus.COMPLETED.value:
                recent_activity.append(ReferralActivity(
                    type="referral_completed",
                    description="A friend completed their first purchase",
                    amount=referral.reward_amount,
                    date=referral.completed_at or referral.created_at
                ))
            elif referral.status == ReferralStatus.PENDING.value:
                recent_activity.append(ReferralActivity(
                    type="referral_applied",
                    description="New user applied your referral code",
                    amount=0,
                    date=referral.created_at
                ))

        return ReferralStatsResponse(stats=stats, recent_activity=recent_activity)
