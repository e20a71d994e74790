"""
On-chain verification of a submitted payment.

Checks: receipt succeeded, USDC Transfer to the expected recipient for at least the
expected amount, confirmation depth >= payment_min_confirmations.
A non-final result (no receipt yet / not deep enough) means "ask again later", not failure.
"""
import logging
from dataclasses import dataclass

from app.services.wallet.base import WalletProvider

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    verified: bool
    final: bool
    reason: str = ""


class PaymentVerifier:
    def __init__(self, wallet: WalletProvider, min_confirmations: int = 1):
        self.wallet = wallet
        self.min_confirmations = min_confirmations

    def verify(self, reference: str, expected_amount_cents: int, expected_recipient: str) -> VerificationResult:
        """Raises WalletError when the chain cannot be queried."""
        status = self.wallet.get_payment_status(reference)

        if status.state == "failed":
            result = VerificationResult(verified=False, final=True, reason="reverted")
        elif status.state != "confirmed":
            result = VerificationResult(verified=False, final=False, reason="awaiting_receipt")
        elif (status.recipient or "").lower() != expected_recipient.lower():
            result = VerificationResult(verified=False, final=True, reason="recipient_mismatch")
        elif status.amount_cents is None or status.amount_cents < expected_amount_cents:
            result = VerificationResult(verified=False, final=True, reason="amount_mismatch")
        elif status.confirmations < self.min_confirmations:
            result = VerificationResult(verified=False, final=False, reason="awaiting_confirmations")
        else:
            result = VerificationResult(verified=True, final=True)

        logger.info(
            "payment_verification",
            extra={"reference": reference, "state": status.state, "error": result.reason or None},
        )
        return result
