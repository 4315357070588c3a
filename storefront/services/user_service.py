import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database_model.user import User
from ..core.config import ReferralProgramConfig, settings
from ..core.database import unavailable_on_connection_error
from ..core.errors import StorefrontException, ValidationError, UnavailableError
from ..schemas.referral import RegistrationResponse, UserResponse
from .referral_ledger import ReferralLedger, normalize_referral_code
from .user_directory import UserDirectory, UserId, generate_referral_code

logger = logging.getLogger(__name__)


class UserService:
    """Service for registering storefront users."""

    def __init__(self, db: Optional[AsyncSession], config: Optional[ReferralProgramConfig] = None):
        self.db = db
        self.config = config or settings.referral_program
        self.ledger = ReferralLedger(db, self.config)
        self.directory = UserDirectory(db) if db is not None else None

    async def register_user(
        self,
        email: str,
        name: str,
        user_id: Optional[UserId] = None,
        mobile_number: Optional[str] = None,
        referral_code_used: Optional[str] = None
    ) -> RegistrationResponse:
        """Create an account and apply the referral code it signed up with.

        A rejected referral code never blocks registration; the reason is
        returned in ``referral_error`` instead.
        """
        if not email or not name:
            raise ValidationError("Email and name are required")
        code_used = normalize_referral_code(referral_code_used) or None

        if self.ledger.mock_mode:
            return self._mock_registration(email, name, user_id, mobile_number, code_used)

        try:
            async with unavailable_on_connection_error():
                user = await self.directory.create({
                    "id": user_id,
                    "email": email,
                    "name": name,
                    "mobile_number": mobile_number,
                    "referred_by": code_used,
                })
        except UnavailableError as e:
            logger.warning(f"Falling back to mock registration for {email}: {e.detail}")
            return self._mock_registration(email, name, user_id, mobile_number, code_used)

        # applying the code may roll the session back and expire the user
        user_response = UserResponse.model_validate(user)

        referral = None
        referral_error = None
        if code_used:
            try:
                referral = await self.ledger.apply_referral_code(UserId(user_response.id), code_used)
            except StorefrontException as e:
                logger.info(f"Referral code {code_used} not applied for new user {user_response.id}: {e.detail}")
                referral_error = e.detail

        if referral is not None:
            message = (
                f"Account created successfully! You received a {self.config.signup_bonus_amount:g} welcome bonus "
                f"and {self.config.order_discount_amount:g} first order discount."
            )
        else:
            message = "Account created successfully! Your referral code is ready to share."

        return RegistrationResponse(
            user=user_response,
            referral=referral,
            referral_error=referral_error,
            message=message,
            mock_mode=bool(referral and referral.mock_mode)
        )

    def _mock_registration(
        self,
        email: str,
        name: str,
        user_id: Optional[UserId],
        mobile_number: Optional[str],
        code_used: Optional[str]
    ) -> RegistrationResponse:
        now = datetime.utcnow()
        user = User(
            id=user_id or f"mock-user-{generate_referral_code(name, email).lower()}",
            email=email.strip().lower(),
            name=name,
            mobile_number=mobile_number,
            referral_code=generate_referral_code(name, email),
            referred_by=code_used,
            created_at=now,
            updated_at=now,
        )
        return RegistrationResponse(
            user=UserResponse.model_validate(user),
            message=(
                f"Account created successfully! You received a {self.config.signup_bonus_amount:g} welcome bonus."
                if code_used else "Account created successfully!"
            ),
            mock_mode=True
        )
