from typing import List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, EmailStr, Field, field_validator

from storefront.database_model.referral import ReferralStatus, RewardType


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC; aware values are converted first."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ReferralResponse(BaseModel):
    id: str
    referrer_id: str
    referred_id: str
    referral_code: str
    status: ReferralStatus
    reward_amount: float
    reward_given: bool
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RewardResponse(BaseModel):
    id: str
    user_id: str
    referral_id: Optional[str] = None
    type: RewardType
    amount: float
    description: str
    used: bool
    used_at: Optional[datetime] = None
    order_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    mobile_number: Optional[str] = None
    referral_code: str
    referred_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Requests

class ApplyReferralRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    referral_code: str = Field(..., min_length=1)


class CompleteReferralRequest(BaseModel):
    referral_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    order_amount: Optional[float] = Field(None, ge=0)


class ValidateReferralRequest(BaseModel):
    referral_code: str = Field(..., min_length=1)


class CreateRewardRequest(BaseModel):
    """Body for issuing a reward by hand."""
    user_id: str = Field(..., min_length=1)
    referral_id: Optional[str] = None
    type: RewardType
    amount: float = Field(..., gt=0)
    description: str = Field("", max_length=255)
    expires_at: Optional[datetime] = None

    @field_validator('expires_at')
    @classmethod
    def expires_at_in_utc(cls, v):
        return as_naive_utc(v)


class UseRewardRequest(BaseModel):
    order_id: Optional[str] = None


class RegisterUserRequest(BaseModel):
    user_id: Optional[str] = Field(None, description="Identifier issued by the auth provider")
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    mobile_number: Optional[str] = Field(None, max_length=32)
    referral_code_used: Optional[str] = None

    @field_validator('referral_code_used', mode='before')
    @classmethod
    def blank_code_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    mobile_number: Optional[str] = Field(None, max_length=32)


class OrderCompletedRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    order_amount: float = Field(..., ge=0)


# Results

class ApplyReferralResult(BaseModel):
    referral: ReferralResponse
    rewards: List[RewardResponse]
    message: str
    mock_mode: bool = False


class CompleteReferralResult(BaseModel):
    referral: ReferralResponse
    referrer_reward: RewardResponse
    message: str
    mock_mode: bool = False


class CancelReferralResult(BaseModel):
    referral: ReferralResponse
    mock_mode: bool = False


class ReferralStats(BaseModel):
    total_referrals: int = 0
    completed_referrals: int = 0
    pending_referrals: int = 0
    total_earnings: float = 0.0
    pending_earnings: float = 0.0
    active_rewards: int = 0
    expired_rewards: int = 0


class ReferralActivity(BaseModel):
    type: str  # 'referral_completed', 'referral_applied'
    description: str
    amount: float
    date: Optional[datetime] = None


class ReferralStatsResponse(BaseModel):
    stats: ReferralStats
    recent_activity: List[ReferralActivity] = []
    mock_mode: bool = False


class ReferralListResponse(BaseModel):
    referrals: List[ReferralResponse]
    mock_mode: bool = False


class RewardListResponse(BaseModel):
    rewards: List[RewardResponse]
    total_amount: float = 0.0
    mock_mode: bool = False


class RewardResult(BaseModel):
    reward: RewardResponse
    message: str
    mock_mode: bool = False


class ReferrerPreview(BaseModel):
    name: str
    email: str  # masked


class RewardPreview(BaseModel):
    signup_bonus: float
    first_order_discount: float
    referrer_reward: float


class ReferralValidationResponse(BaseModel):
    valid: bool
    referrer: Optional[ReferrerPreview] = None
    rewards: Optional[RewardPreview] = None
    message: str
    mock_mode: bool = False


class RegistrationResponse(BaseModel):
    user: UserResponse
    referral: Optional[ApplyReferralResult] = None
    referral_error: Optional[str] = None
    message: str
    mock_mode: bool = False
