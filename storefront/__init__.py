"""Jewelry storefront backend: referral and reward ledger."""

__version__ = "1.0.0"
