"""
Typed purchase outcomes.
Every failure leaving PaymentOrchestrator.purchase() is one of these; nothing is raised past it.
"""
from enum import Enum


class PurchaseError(str, Enum):
    INVALID_REQUEST = "InvalidRequest"  # malformed request, no wallet identity
    WALLET_UNAVAILABLE = "WalletUnavailable"  # not connected, RPC failure, breaker open
    INSUFFICIENT_FUNDS = "InsufficientFunds"  # balance < price, nothing submitted
    PAYMENT_REJECTED = "PaymentRejected"  # submission declined or failed verification
    PERSISTENCE_FAILURE = "PersistenceFailure"  # ledger read/write failed
    TIMED_OUT = "TimedOut"  # outcome unknown, transaction left pending for reconciliation

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self]

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE


USER_MESSAGES = {
    PurchaseError.INVALID_REQUEST: "This purchase request is invalid.",
    PurchaseError.WALLET_UNAVAILABLE: "Your wallet is unavailable. Check the connection and try again.",
    PurchaseError.INSUFFICIENT_FUNDS: "Insufficient USDC balance. Top up your wallet and try again.",
    PurchaseError.PAYMENT_REJECTED: "The payment was declined. You have not been charged.",
    PurchaseError.PERSISTENCE_FAILURE: "We could not record your purchase. Please try again.",
    PurchaseError.TIMED_OUT: "Your payment is still processing. We will unlock the content once it confirms.",
}

# Stored in Transaction.error when the user cancelled before the payment was sent (not a PurchaseError)
CANCELLED_CODE = "Cancelled"

# TimedOut is not retryable: the payment may still land, a new attempt could charge twice.
# InsufficientFunds is retryable only through a fresh balance check (see PurchaseStateMachine.retry).
RETRYABLE = frozenset({
    PurchaseError.WALLET_UNAVAILABLE,
    PurchaseError.INSUFFICIENT_FUNDS,
    PurchaseError.PAYMENT_REJECTED,
    PurchaseError.PERSISTENCE_FAILURE,
})
