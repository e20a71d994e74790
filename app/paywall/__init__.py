"""
Paywall покупок (внутренняя библиотека).
Decision (access) и UI-состояние покупки (machine) разделены; контракт через AccessContext.
"""
from app.paywall.access import decide_access
from app.paywall.machine import InvalidTransition, PurchaseInProgress, PurchaseStateMachine
from app.paywall.models import (
    AccessContext,
    AccessDecision,
    PurchaseItem,
    PurchaseState,
    UnlockOptions,
)

__all__ = [
    "AccessContext",
    "AccessDecision",
    "PurchaseItem",
    "PurchaseState",
    "UnlockOptions",
    "decide_access",
    "PurchaseStateMachine",
    "InvalidTransition",
    "PurchaseInProgress",
]
