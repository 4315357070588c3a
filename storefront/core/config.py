from pydantic_settings import BaseSettings
from pydantic import BaseModel, field_validator
from typing import Optional, List


class ReferralProgramConfig(BaseModel):
    """Capabilities and amounts injected into the referral ledger."""
    persistence_enabled: bool = True
    referral_reward_amount: float = 500.0
    signup_bonus_amount: float = 100.0
    order_discount_amount: float = 200.0
    reward_lifetime_days: int = 30
    min_order_amount: float = 0.0


class Settings(BaseSettings):
    # App Settings
    app_name: str = "Storefront Referral API"
    version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    # Database (unset runs the referral program in mock mode)
    database_url: Optional[str] = None
    auto_create_schema: bool = True

    # CORS
    allowed_hosts: List[str] = ["localhost", "127.0.0.1", "0.0.0.0"]

    @field_validator('allowed_hosts', mode='before')
    @classmethod
    def parse_allowed_hosts(cls, v):
        if isinstance(v, str):
            return [host.strip() for host in v.split(',')]
        return v

    @field_validator('database_url', mode='before')
    @classmethod
    def blank_database_url(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # Referral Program Settings
    referral_reward_amount: float = 500.0  # paid to the referrer
    signup_bonus_amount: float = 100.0
    order_discount_amount: float = 200.0
    reward_lifetime_days: int = 30
    referral_min_order_amount: float = 0.0

    @property
    def persistence_enabled(self) -> bool:
        """Whether a database is configured."""
        return bool(self.database_url)

    @property
    def referral_program(self) -> ReferralProgramConfig:
        """Build the referral program configuration from settings."""
        return ReferralProgramConfig(
            persistence_enabled=self.persistence_enabled,
            referral_reward_amount=self.referral_reward_amount,
            signup_bonus_amount=self.signup_bonus_amount,
            order_discount_amount=self.order_discount_amount,
            reward_lifetime_days=self.reward_lifetime_days,
            min_order_amount=self.referral_min_order_amount,
        )

    @property
    def ALLOWED_HOSTS(self) -> list[str]:
        """Get allowed hosts for CORS middleware."""
        return self.allowed_hosts

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()
