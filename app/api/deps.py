"""
Shared FastAPI dependencies: wallet identity from the request header,
current user, per-request wallet provider, purchase core wiring.
"""
from typing import Iterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User
from app.paywall.config import (
    get_currency,
    get_grant_ttl_days,
    get_min_confirmations,
    get_payment_recipient,
    get_purchase_lock_ttl,
    get_submit_timeout_seconds,
    is_verification_enabled,
)
from app.services.drafts.generator import DraftGenerator
from app.services.idempotency import PurchaseLock
from app.services.ledger.service import AccessLedgerService
from app.services.payments.service import PaymentOrchestrator
from app.services.payments.verification import PaymentVerifier
from app.services.users.service import UserService, normalize_wallet
from app.services.wallet.base import WalletError, WalletProvider
from app.services.wallet.factory import WalletProviderFactory

PAYMENT_HEADER = "X-PAYMENT"


def get_wallet_address(request: Request) -> str | None:
    """Wallet identity of the caller (None = wallet not connected)."""
    value = request.headers.get(settings.wallet_address_header)
    return normalize_wallet(value) or None


def get_optional_user(
    db: Session = Depends(get_db),
    wallet_address: str | None = Depends(get_wallet_address),
) -> User | None:
    if not wallet_address:
        return None
    return UserService(db).get_or_create_by_wallet(wallet_address)


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Wallet not connected",
        )
    return user


def get_wallet_provider(
    request: Request,
    wallet_address: str | None = Depends(get_wallet_address),
) -> Iterator[WalletProvider]:
    try:
        wallet = WalletProviderFactory.create_from_settings(
            settings,
            account=wallet_address,
            payment_header=request.headers.get(PAYMENT_HEADER),
        )
    except WalletError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    try:
        yield wallet
    finally:
        wallet.close()


def get_purchase_lock() -> PurchaseLock:
    return PurchaseLock(ttl_seconds=get_purchase_lock_ttl())


def get_draft_generator() -> DraftGenerator:
    return DraftGenerator()


def build_orchestrator(ledger: AccessLedgerService, wallet: WalletProvider) -> PaymentOrchestrator:
    verifier = None
    if is_verification_enabled():
        verifier = PaymentVerifier(wallet, min_confirmations=get_min_confirmations())
    return PaymentOrchestrator(
        ledger,
        wallet,
        recipient=get_payment_recipient(),
        submit_timeout=get_submit_timeout_seconds(),
        verifier=verifier,
        currency=get_currency(),
        grant_ttl_days=get_grant_ttl_days(),
    )
