"""
Base classes and types for wallet/payment providers.
Used by factory, PaymentOrchestrator, PaymentVerifier and the reconciliation task.
Amounts crossing this boundary are always integer cents; providers convert to chain units.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PaymentSubmission:
    """Result of a single submit_payment call."""
    success: bool
    reference: str | None = None  # on-chain tx hash or provider payment id
    error: str | None = None


@dataclass
class PaymentStatus:
    """On-chain view of a submitted payment."""
    reference: str
    state: str  # "pending", "confirmed", "failed", "unknown"
    confirmations: int = 0
    recipient: str | None = None
    amount_cents: int | None = None
    detail: dict[str, Any] = field(default_factory=dict)


class WalletError(Exception):
    """Raised when the provider cannot complete a request."""
    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class WalletUnavailable(WalletError):
    """No connected wallet, RPC/transport failure or open circuit breaker."""


class WalletTimeout(WalletUnavailable):
    """Request was sent but no answer arrived in time: the remote side may have acted on it."""


class WalletProvider(ABC):
    """Base class for wallet/payment providers."""

    name = "base"

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured and available."""
        pass

    @abstractmethod
    def connect(self) -> str:
        """Return the connected wallet address. Raises WalletUnavailable if none."""
        pass

    @abstractmethod
    def get_balance(self, account: str) -> int:
        """Spendable balance of account in cents."""
        pass

    @abstractmethod
    def submit_payment(self, amount_cents: int, recipient: str, metadata: dict[str, Any]) -> PaymentSubmission:
        """Move value. Never retried by callers; metadata["idempotency_key"] identifies the attempt."""
        pass

    @abstractmethod
    def get_payment_status(self, reference: str) -> PaymentStatus:
        pass

    def payment_locator(self) -> str | None:
        """
        Provider data that identifies the upcoming payment on-chain (e.g. a signed authorization nonce).
        Stored on the transaction before submission so a lost response can be found later.
        """
        return None

    def find_payment(self, idempotency_key: str, locator: str | None = None) -> str | None:
        """Look up a reference for an attempt whose submission response was lost. Override if supported."""
        return None

    def payment_may_settle(self, locator: str | None) -> bool:
        """
        False only when the provider can prove a submitted payment will never land
        (e.g. its authorization expired unused). Unknown = True.
        """
        return True

    def close(self) -> None:
        pass
