"""HTTP routers for the referral program."""

from . import orders, referrals, rewards, users

__all__ = ["orders", "referrals", "rewards", "users"]
