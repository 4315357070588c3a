from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import ReferralProgramConfig
from storefront.database_model.referral import RewardType
from storefront.dependencies.get_db import get_db, get_referral_program
from storefront.services.reward_store import RewardStore
from storefront.schemas.referral import (
    CreateRewardRequest,
    RewardListResponse,
    RewardResult,
    UseRewardRequest,
)

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("", response_model=RewardListResponse)
async def list_rewards(
    user_id: str = Query(..., min_length=1),
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """All rewards of a user, newest first."""
    return await RewardStore(db, program).list_rewards(user_id)


@router.get("/available", response_model=RewardListResponse)
async def list_available_rewards(
    user_id: str = Query(..., min_length=1),
    type: Optional[RewardType] = Query(None),
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Unused, unexpired rewards with their total amount."""
    return await RewardStore(db, program).list_available(user_id, type)


@router.post("", response_model=RewardResult, status_code=201)
async def create_reward(
    request: CreateRewardRequest,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    return await RewardStore(db, program).create_reward(
        user_id=request.user_id,
        reward_type=request.type,
        amount=request.amount,
        description=request.description,
        referral_id=request.referral_id,
        expires_at=request.expires_at
    )


@router.post("/{reward_id}/use", response_model=RewardResult)
async def use_reward(
    reward_id: str,
    request: Optional[UseRewardRequest] = None,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Redeem a reward at checkout."""
    order_id = request.order_id if request else None
    return await RewardStore(db, program).use_reward(reward_id, order_id)
