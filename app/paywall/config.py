"""
Paywall config - типизированная обёртка над app.core.config для покупок.
"""
from __future__ import annotations

from app.core.config import settings


def get_currency() -> str:
    return getattr(settings, "payment_currency", "USDC")


def get_payment_recipient() -> str:
    return settings.payment_recipient_address


def get_submit_timeout_seconds() -> float:
    return getattr(settings, "payment_submit_timeout_seconds", 60.0)


def get_min_confirmations() -> int:
    return getattr(settings, "payment_min_confirmations", 1)


def is_verification_enabled() -> bool:
    return getattr(settings, "payment_verify_enabled", True)


def get_purchase_lock_ttl() -> int:
    return getattr(settings, "purchase_lock_ttl_seconds", 120)


def get_grant_ttl_days() -> int:
    return getattr(settings, "access_grant_ttl_days", 0)
