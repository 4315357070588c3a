from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import ReferralProgramConfig
from storefront.dependencies.get_db import get_db, get_referral_program
from storefront.services.order_gateway import OrderGateway
from storefront.schemas.referral import CompleteReferralResult, OrderCompletedRequest

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/{order_id}/completed", response_model=Optional[CompleteReferralResult])
async def order_completed(
    order_id: str,
    request: OrderCompletedRequest,
    db: Optional[AsyncSession] = Depends(get_db),
    program: ReferralProgramConfig = Depends(get_referral_program)
):
    """Order pipeline hook: completes the buyer's pending referral, if any."""
    gateway = OrderGateway(db, program)
    return await gateway.order_completed(request.user_id, order_id, request.order_amount)
