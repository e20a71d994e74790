"""
Тесты PurchaseStateMachine: переходы, retry/cancel/refresh, защита от параллельной покупки.
"""
import time
import unittest

import pytest

from app.models.transaction import Transaction
from app.paywall.machine import InvalidTransition, PurchaseInProgress, PurchaseStateMachine
from app.paywall.models import PurchaseItem, PurchaseState
from app.services.ledger.service import AccessLedgerService
from app.services.payments.errors import PurchaseError
from app.services.payments.service import PaymentOrchestrator
from app.services.wallet.base import PaymentSubmission, WalletUnavailable

S = PurchaseState
ITEM = PurchaseItem(content_id="traffic-stop-rights", price_cents=50, title="Traffic Stop Rights")


def _machine(db, wallet, recipient, wallet_address="0xabc", item=ITEM):
    ledger = AccessLedgerService(db)
    orchestrator = PaymentOrchestrator(ledger, wallet, recipient=recipient)
    return PurchaseStateMachine(orchestrator, ledger, wallet, user_id="u1", item=item, wallet_address=wallet_address)


def _states(machine):
    return [new for _, new in machine.history]


class TestHappyPath:
    def test_connected_wallet_skips_connecting(self, db, wallet_factory, recipient):
        wallet = wallet_factory(balance_cents=1000)
        machine = _machine(db, wallet, recipient)
        assert machine.start() == S.UNLOCKED
        assert _states(machine) == [S.BALANCE_CHECKING, S.PAYING, S.VERIFYING, S.UNLOCKED]
        assert wallet.calls["connect"] == 0

    def test_connects_when_no_wallet(self, db, wallet_factory, recipient):
        wallet = wallet_factory(account="0xABC")
        machine = _machine(db, wallet, recipient, wallet_address=None)
        assert machine.start() == S.UNLOCKED
        assert _states(machine)[0] == S.WALLET_CONNECTING
        assert machine.wallet_address == "0xabc"

    def test_already_unlocked_is_noop(self, db, wallet_factory, recipient):
        wallet = wallet_factory()
        _machine(db, wallet, recipient).start()
        submits = wallet.calls["submit_payment"]

        again = _machine(db, wallet, recipient)
        assert again.start() == S.UNLOCKED
        assert wallet.calls["submit_payment"] == submits
        assert _states(again) == [S.UNLOCKED]


class TestErrors:
    def test_insufficient_funds_then_topup_retry(self, db, wallet_factory, recipient):
        wallet = wallet_factory(balance_cents=30)
        machine = _machine(db, wallet, recipient)
        assert machine.start() == S.ERROR
        assert machine.error == PurchaseError.INSUFFICIENT_FUNDS
        assert machine.can_retry
        assert wallet.calls["submit_payment"] == 0

        wallet.balance_cents = 1000
        assert machine.retry() == S.UNLOCKED
        # после retry баланс проверен заново, кошелёк не переподключался
        assert S.WALLET_CONNECTING not in _states(machine)
        assert wallet.calls["get_balance"] >= 2

    def test_insufficient_funds_is_recorded_once(self, db, wallet_factory, recipient):
        wallet = wallet_factory(balance_cents=30)
        machine = _machine(db, wallet, recipient)
        machine.start()

        assert wallet.calls["get_balance"] == 1
        tx = db.query(Transaction).one()
        assert tx.status == "failed"
        assert tx.error.startswith("InsufficientFunds")
        assert _states(machine) == [S.BALANCE_CHECKING, S.ERROR]

    def test_connect_failure(self, db, wallet_factory, recipient):
        wallet = wallet_factory(account=None)
        machine = _machine(db, wallet, recipient, wallet_address=None)
        assert machine.start() == S.ERROR
        assert machine.error == PurchaseError.WALLET_UNAVAILABLE

    def test_rejected_payment_goes_to_error(self, db, wallet_factory, recipient):
        wallet = wallet_factory(submission=PaymentSubmission(success=False, error="rejected"))
        machine = _machine(db, wallet, recipient)
        assert machine.start() == S.ERROR
        assert machine.error == PurchaseError.PAYMENT_REJECTED
        assert S.PAYING in _states(machine)
        assert machine.can_retry

    def test_balance_outage(self, db, wallet_factory, recipient):
        wallet = wallet_factory()
        wallet.balance_error = WalletUnavailable("rpc down")
        machine = _machine(db, wallet, recipient)
        assert machine.start() == S.ERROR
        assert machine.error == PurchaseError.WALLET_UNAVAILABLE

    def test_timeout_stays_verifying(self, db, wallet_factory, recipient, session_factory):
        wallet = wallet_factory()
        wallet.submit_delay = 0.3
        ledger = AccessLedgerService(db)
        orchestrator = PaymentOrchestrator(
            ledger, wallet, recipient=recipient, submit_timeout=0.05, session_factory=session_factory
        )
        machine = PurchaseStateMachine(orchestrator, ledger, wallet, "u1", ITEM, wallet_address="0xabc")
        assert machine.start() == S.VERIFYING
        assert machine.last_result.pending is True
        time.sleep(0.6)


class TestTransitions:
    def test_retry_only_from_error(self, db, wallet_factory, recipient):
        machine = _machine(db, wallet_factory(), recipient)
        with pytest.raises(InvalidTransition):
            machine.retry()

    def test_second_start_while_in_flight(self, db, wallet_factory, recipient):
        machine = _machine(db, wallet_factory(), recipient)
        machine.state = S.PAYING
        with pytest.raises(PurchaseInProgress):
            machine.start()

    def test_unlocked_is_terminal(self, db, wallet_factory, recipient):
        machine = _machine(db, wallet_factory(), recipient)
        machine.start()
        with pytest.raises(InvalidTransition):
            machine._transition(S.LOCKED)


class TestCancelAndRefresh:
    def test_cancel_before_payment_returns_to_locked(self, db, wallet_factory, recipient):
        machine = _machine(db, wallet_factory(), recipient)
        machine.state = S.BALANCE_CHECKING
        assert machine.cancel() == S.LOCKED

    def test_cancel_while_balance_is_read_and_funds_short(self, db, wallet_factory, recipient):
        wallet = wallet_factory(balance_cents=10)
        machine = _machine(db, wallet, recipient)
        read_balance = wallet.get_balance

        def cancel_then_read(account):
            machine.cancel()
            return read_balance(account)

        wallet.get_balance = cancel_then_read
        assert machine.start() == S.LOCKED
        assert machine.error is None
        assert wallet.calls["submit_payment"] == 0

    def test_cancel_while_balance_is_read_sends_nothing(self, db, wallet_factory, recipient):
        wallet = wallet_factory(balance_cents=1000)
        machine = _machine(db, wallet, recipient)
        read_balance = wallet.get_balance

        def cancel_then_read(account):
            machine.cancel()
            return read_balance(account)

        wallet.get_balance = cancel_then_read
        assert machine.start() == S.LOCKED
        assert wallet.calls["submit_payment"] == 0
        assert S.PAYING not in _states(machine)
        tx = db.query(Transaction).one()
        assert tx.status == "failed"
        assert tx.error.startswith("Cancelled")
        # отменённая попытка не показывается как ошибка
        assert machine.refresh() == S.LOCKED

    def test_cancel_while_connect_fails(self, db, wallet_factory, recipient):
        wallet = wallet_factory(account=None)
        machine = _machine(db, wallet, recipient, wallet_address=None)

        def cancel_then_fail():
            machine.cancel()
            raise WalletUnavailable("user closed the wallet")

        wallet.connect = cancel_then_fail
        assert machine.start() == S.LOCKED
        assert machine.error is None

    def test_cancel_after_submission_only_detaches(self, db, wallet_factory, recipient):
        machine = _machine(db, wallet_factory(), recipient)
        machine.state = S.VERIFYING
        assert machine.cancel() == S.VERIFYING
        assert machine.detached is True

    def test_refresh_picks_up_reconciled_grant(self, db, wallet_factory, recipient):
        ledger = AccessLedgerService(db)
        machine = _machine(db, wallet_factory(), recipient)
        machine.state = S.VERIFYING
        tx = ledger.create_pending(user_id="u1", amount_cents=50, content_id=ITEM.content_id)
        assert machine.refresh() == S.VERIFYING

        ledger.mark_completed(tx.id, "0xref")
        ledger.grant_access(user_id="u1", transaction_id=tx.id, content_id=ITEM.content_id)
        assert machine.refresh() == S.UNLOCKED

    def test_refresh_failed_transaction(self, db, wallet_factory, recipient):
        ledger = AccessLedgerService(db)
        machine = _machine(db, wallet_factory(), recipient)
        machine.state = S.VERIFYING
        tx = ledger.create_pending(user_id="u1", amount_cents=50, content_id=ITEM.content_id)
        ledger.mark_failed(tx.id, "PaymentRejected: verification failed: reverted")
        assert machine.refresh() == S.ERROR
        assert machine.error == PurchaseError.PAYMENT_REJECTED


class TestErrorDecoding(unittest.TestCase):
    def test_stored_error_code(self):
        from app.paywall.machine import _error_from_stored

        self.assertEqual(_error_from_stored("TimedOut: abandoned"), PurchaseError.TIMED_OUT)
        self.assertEqual(_error_from_stored(None), PurchaseError.PAYMENT_REJECTED)
        self.assertEqual(_error_from_stored("garbage"), PurchaseError.PAYMENT_REJECTED)
