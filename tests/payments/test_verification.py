"""Tests for PaymentVerifier decisions."""
from app.services.payments.verification import PaymentVerifier
from app.services.wallet.base import PaymentStatus


def _verify(wallet_factory, status, recipient, amount=50, min_confirmations=1):
    verifier = PaymentVerifier(wallet_factory(status=status), min_confirmations=min_confirmations)
    return verifier.verify("0xref", amount, recipient)


def test_confirmed_transfer_verifies(wallet_factory, confirmed, recipient):
    result = _verify(wallet_factory, confirmed(amount_cents=50), recipient)
    assert result.verified and result.final


def test_recipient_compared_case_insensitive(wallet_factory, confirmed, recipient):
    result = _verify(wallet_factory, confirmed(recipient=recipient.upper().replace("0X", "0x")), recipient)
    assert result.verified


def test_reverted_is_final_failure(wallet_factory, recipient):
    result = _verify(wallet_factory, PaymentStatus(reference="0xref", state="failed"), recipient)
    assert not result.verified
    assert result.final
    assert result.reason == "reverted"


def test_missing_receipt_is_not_final(wallet_factory, recipient):
    result = _verify(wallet_factory, PaymentStatus(reference="0xref", state="pending"), recipient)
    assert not result.verified
    assert not result.final


def test_underpaid_is_rejected(wallet_factory, confirmed, recipient):
    result = _verify(wallet_factory, confirmed(amount_cents=49), recipient, amount=50)
    assert result.final
    assert result.reason == "amount_mismatch"


def test_confirmation_depth_is_configurable(wallet_factory, confirmed, recipient):
    result = _verify(wallet_factory, confirmed(confirmations=2), recipient, min_confirmations=5)
    assert not result.verified
    assert not result.final
    assert result.reason == "awaiting_confirmations"

    result = _verify(wallet_factory, confirmed(confirmations=0), recipient, min_confirmations=0)
    assert result.verified
