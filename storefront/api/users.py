from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import ReferralProgramConfig
from storefront.core.errors import NotFoundError, UnavailableError
from storefront.dependencies.get_db import get_db, get_referral_program
from storefront.services.referral_ledger import ReferralLedger
from storefront.services.user_directory import UserDirectory
from storefront.services.user_service import UserService
from storefront.schemas.referral import (
    ReferralValidationResponse,
    RegisterUserRequest,
    RegistrationResponse,
    UpdateUserRequest,
    UserResponse,
    ValidateReferralRequest,
)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/users", tags=["users"])


@auth_router.post("/register", response_model=RegistrationResponse, status_code=201)
async def register(
    request: RegisterUserRequest,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Register a user, generating their referral code and applying the one they used."""
    return await UserService(db, program).register_user(
        email=request.email,
        name=request.name,
        user_id=request.user_id,
        mobile_number=request.mobile_number,
        referral_code_used=request.referral_code_used
    )


@auth_router.post("/validate-referral", response_model=ReferralValidationResponse)
async def validate_referral(
    request: ValidateReferralRequest,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Validate a referral code before registration."""
    return await ReferralLedger(db, program).validate_referral_code(request.referral_code)


def _directory(db: Optional[AsyncSession]) -> UserDirectory:
    if db is None:
        raise UnavailableError("Database not configured")
    return UserDirectory(db)


@router.get("/{identifier}", response_model=UserResponse)
async def get_user(identifier: str, db: Optional[AsyncSession] = Depends(get_db)):
    """Look a user up by id or email."""
    user = await _directory(db).resolve(identifier)
    if not user:
        raise NotFoundError("User not found")
    return user


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    request: UpdateUserRequest,
    db: Optional[AsyncSession] = Depends(get_db)
):
    return await _directory(db).update(user_id, request.model_dump(exclude_unset=True))
