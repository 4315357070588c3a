from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import ReferralProgramConfig
from storefront.dependencies.get_db import get_db, get_referral_program
from storefront.services.referral_ledger import ReferralLedger
from storefront.schemas.referral import (
    ApplyReferralRequest,
    ApplyReferralResult,
    CancelReferralResult,
    CompleteReferralRequest,
    CompleteReferralResult,
    ReferralListResponse,
    ReferralStatsResponse,
)

router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.get("", response_model=ReferralListResponse)
async def list_referrals(
    user_id: str = Query(..., min_length=1),
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Referrals where the user is the referrer or the referred friend."""
    return await ReferralLedger(db, program).list_referrals(user_id)


@router.get("/stats", response_model=ReferralStatsResponse)
async def get_referral_stats(
    user_id: str = Query(..., min_length=1),
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Referral counters, earnings and reward state for a user."""
    return await ReferralLedger(db, program).compute_statistics(user_id)


@router.post("/apply", response_model=ApplyReferralResult)
async def apply_referral_code(
    request: ApplyReferralRequest,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Apply a referral code to an existing user."""
    return await ReferralLedger(db, program).apply_referral_code(request.user_id, request.referral_code)


@router.post("/complete", response_model=CompleteReferralResult)
async def complete_referral(
    request: CompleteReferralRequest,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Complete a referral after the referred user's first purchase."""
    ledger = ReferralLedger(db, program)
    return await ledger.complete_referral(request.referral_id, request.order_id, request.order_amount)


@router.post("/{referral_id}/cancel", response_model=CancelReferralResult)
async def cancel_referral(
    referral_id: str,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Cancel a pending referral."""
    return await ReferralLedger(db, program).cancel_referral(referral_id)
