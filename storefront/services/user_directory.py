import logging
import re
from typing import Any, Dict, NewType, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database_model.user import User
from ..core.errors import NotFoundError, ValidationError, DuplicateUserError

logger = logging.getLogger(__name__)

# Opaque user identifier: a UUID or an id issued by the auth provider
UserId = NewType("UserId", str)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE
)

UPDATABLE_FIELDS = ("name", "mobile_number")


def is_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.match(value or ""))


def generate_referral_code(name: str, email: Optional[str] = None) -> str:
    """Build a NAME#### referral code.

    The letters are the first four letters of the name; the digits are
    derived from the email (or the name) so the same person always gets
    the same code.
    """
    letters = re.sub(r"[^a-zA-Z]", "", name or "").upper()[:4].ljust(4, "X")
    seed = sum(ord(char) for char in (email or name or ""))
    return f"{letters}{(seed * 37) % 10000:04d}"


class UserDirectory:
    """Resolves user identities for the referral program."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, user_id: UserId) -> Optional[User]:
        """Get user by ID."""
        if not user_id:
            return None
        return await self.db.get(User, user_id)

    async def find_by_email(self, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)."""
        if not email:
            return None
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def find_by_referral_code(self, referral_code: str) -> Optional[User]:
        """Get user by referral code."""
        if not referral_code:
            return None
        result = await self.db.execute(
            select(User).where(User.referral_code == referral_code.strip().upper())
        )
        return result.scalar_one_or_none()

    async def resolve(self, identifier: Union[UserId, str]) -> Optional[User]:
        """Find a user by UUID, auth-provider id or email."""
        if not identifier:
            return None

        user = await self.find_by_id(identifier)
        if user or is_uuid(identifier):
            return user

        if "@" in identifier:
            return await self.find_by_email(identifier)
        return None

    async def generate_unique_referral_code(self, name: str, email: Optional[str] = None) -> str:
        """Generate a referral code not yet taken by another user."""
        code = generate_referral_code(name, email)
        prefix, number = code[:4], int(code[4:])

        for _ in range(10000):
            if not await self.find_by_referral_code(code):
                return code
            number = (number + 1) % 10000
            code = f"{prefix}{number:04d}"

        raise ValidationError(f"No referral codes left for prefix {prefix}")

    async def create(self, user_data: Dict[str, Any]) -> User:
        """Create a new user with a fresh referral code."""
        email = (user_data.get("email") or "").strip().lower()
        name = (user_data.get("name") or "").strip()
        if not email or not name:
            raise ValidationError("Email and name are required")

        if await self.find_by_email(email):
            raise DuplicateUserError("User with this email already exists")

        user_id = user_data.get("id")
        if user_id and await self.find_by_id(user_id):
            raise DuplicateUserError("User with this id already exists")

        referral_code = user_data.get("referral_code") or await self.generate_unique_referral_code(name, email)
        referred_by = user_data.get("referred_by")

        user = User(
            email=email,
            name=name,
            mobile_number=user_data.get("mobile_number"),
            referral_code=referral_code.upper(),
            referred_by=referred_by.strip().upper() if referred_by else None,
        )
        if user_id:
            user.id = user_id

        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # lost a race on the unique email, id or referral code
            await self.db.rollback()
            raise DuplicateUserError("User with this email, id or referral code already exists")
        await self.db.refresh(user)

        logger.info(f"Created user {user.id} with referral code {user.referral_code}")
        return user

    async def update(self, user_id: UserId, patch: Dict[str, Any]) -> User:
        """Update profile fields of a user."""
        user = await self.find_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")

        for field in UPDATABLE_FIELDS:
            if patch.get(field) is not None:
                setattr(user, field, patch[field])

        await self.db.commit()
        await self.db.refresh(user)
        return user
