"""
Shared fixtures: settings from env, in-memory SQLite session, stub wallet provider.
"""
import os
import time

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_BROKER_URL", "redis://localhost:6379/1")
os.environ.setdefault("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")
os.environ.setdefault("PAYMENT_RECIPIENT_ADDRESS", "0x000000000000000000000000000000000000beef")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models import access_grant, generated_document, legal_content, transaction, user  # noqa: F401
from app.services.wallet.base import PaymentStatus, PaymentSubmission, WalletProvider, WalletUnavailable

RECIPIENT = "0x000000000000000000000000000000000000beef"


class StubWallet(WalletProvider):
    """Wallet with scripted balance/submission; counts every call."""

    name = "stub"

    def __init__(
        self,
        balance_cents: int = 1000,
        submission: PaymentSubmission | None = None,
        account: str | None = "0xabc",
        status: PaymentStatus | None = None,
    ):
        super().__init__({})
        self.balance_cents = balance_cents
        self.submission = submission or PaymentSubmission(success=True, reference="0xref")
        self.account = account
        self.status = status
        self.found_reference: str | None = None
        self.locator: str | None = None
        self.may_settle = True
        self.lookups: list[tuple[str, str | None]] = []
        self.balance_error: Exception | None = None
        self.submit_error: Exception | None = None
        self.submit_delay: float = 0.0
        self.calls = {"connect": 0, "get_balance": 0, "submit_payment": 0, "get_payment_status": 0}
        self.submitted: list[tuple[int, str, dict]] = []

    def is_available(self) -> bool:
        return True

    def connect(self) -> str:
        self.calls["connect"] += 1
        if not self.account:
            raise WalletUnavailable("Wallet not connected")
        return self.account

    def get_balance(self, account: str) -> int:
        self.calls["get_balance"] += 1
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance_cents

    def submit_payment(self, amount_cents, recipient, metadata):
        self.calls["submit_payment"] += 1
        self.submitted.append((amount_cents, recipient, metadata))
        if self.submit_delay:
            time.sleep(self.submit_delay)
        if self.submit_error is not None:
            raise self.submit_error
        return self.submission

    def get_payment_status(self, reference: str) -> PaymentStatus:
        self.calls["get_payment_status"] += 1
        if self.status is not None:
            return self.status
        return PaymentStatus(reference=reference, state="pending")

    def payment_locator(self) -> str | None:
        return self.locator

    def find_payment(self, idempotency_key: str, locator: str | None = None) -> str | None:
        self.lookups.append((idempotency_key, locator))
        return self.found_reference

    def payment_may_settle(self, locator: str | None) -> bool:
        return self.may_settle


def confirmed_status(reference="0xref", amount_cents=50, recipient=RECIPIENT, confirmations=3) -> PaymentStatus:
    return PaymentStatus(
        reference=reference,
        state="confirmed",
        confirmations=confirmations,
        recipient=recipient,
        amount_cents=amount_cents,
    )


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db):
    """Separate sessions on the test engine (late submission results are written through one)."""
    return sessionmaker(bind=db.get_bind(), autocommit=False, autoflush=False)


@pytest.fixture
def wallet_factory():
    return StubWallet


@pytest.fixture
def confirmed():
    return confirmed_status


@pytest.fixture
def recipient():
    return RECIPIENT


@pytest.fixture(autouse=True)
def memory_breakers(monkeypatch):
    """Breakers with in-process state: tests never reach Redis."""
    import pybreaker

    from app.services import circuit_breaker

    for name in ("wallet", "llm"):
        monkeypatch.setitem(
            circuit_breaker._breakers,
            name,
            pybreaker.CircuitBreaker(fail_max=3, reset_timeout=30, name=name),
        )
    yield
