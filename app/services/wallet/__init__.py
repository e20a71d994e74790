from app.services.wallet.base import (
    PaymentStatus,
    PaymentSubmission,
    WalletError,
    WalletProvider,
    WalletTimeout,
    WalletUnavailable,
)
from app.services.wallet.factory import WalletProviderFactory

__all__ = [
    "PaymentStatus",
    "PaymentSubmission",
    "WalletError",
    "WalletProvider",
    "WalletTimeout",
    "WalletUnavailable",
    "WalletProviderFactory",
]
