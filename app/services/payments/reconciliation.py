"""
PaymentReconciler - дочинивает покупки, исход которых не был известен в момент запроса.

- pending старше порога: reference известен (или найден провайдером по locator) -> проверка on-chain:
  подтверждено -> completed + грант; отклонено -> failed; ещё нет -> остаётся pending.
- Без reference:
  - оплата не отправлялась (нет submitted_at) и старше abandon_after -> failed (abandoned);
  - отправлялась, провайдер доказал, что она уже не пройдёт -> failed (abandoned);
  - иначе исход неизвестен: остаётся pending, старше abandon_after -> unresolved (ручной разбор).
- completed без гранта -> grant_access.

Оплата никогда не отправляется повторно.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from app.services.ledger.service import AccessLedgerService, LedgerError, as_utc
from app.services.payments.errors import PurchaseError
from app.services.payments.verification import PaymentVerifier
from app.services.wallet.base import WalletError, WalletProvider
from app.utils.metrics import reconciled_transactions_total

logger = logging.getLogger(__name__)


class PaymentReconciler:
    def __init__(
        self,
        ledger: AccessLedgerService,
        wallet: WalletProvider,
        verifier: PaymentVerifier,
        *,
        recipient: str,
        pending_after: timedelta = timedelta(minutes=5),
        abandon_after: timedelta = timedelta(hours=24),
        batch_size: int = 100,
        grant_ttl_days: int = 0,
    ):
        self.ledger = ledger
        self.wallet = wallet
        self.verifier = verifier
        self.recipient = recipient
        self.pending_after = pending_after
        self.abandon_after = abandon_after
        self.batch_size = batch_size
        self.grant_ttl_days = grant_ttl_days

    def run(self) -> dict:
        counts = {
            "completed": 0,
            "failed": 0,
            "abandoned": 0,
            "still_pending": 0,
            "unresolved": 0,
            "granted": 0,
            "errors": 0,
        }

        for tx in self.ledger.list_pending(self.pending_after, limit=self.batch_size):
            try:
                result = self._reconcile_pending(tx)
            except (WalletError, SQLAlchemyError, LedgerError) as e:
                self.ledger.rollback()
                logger.warning("reconcile_transaction_error", extra={"transaction_id": tx.id, "error": str(e)})
                result = "errors"
            counts[result] += 1
            reconciled_transactions_total.labels(result=result).inc()

        for tx in self.ledger.list_completed_without_grant(limit=self.batch_size):
            try:
                self._grant(tx)
            except (SQLAlchemyError, LedgerError) as e:
                self.ledger.rollback()
                logger.warning("reconcile_grant_error", extra={"transaction_id": tx.id, "error": str(e)})
                counts["errors"] += 1
                reconciled_transactions_total.labels(result="errors").inc()
                continue
            counts["granted"] += 1
            reconciled_transactions_total.labels(result="granted").inc()

        logger.info("reconcile_payments_done", extra=counts)
        return counts

    def _reconcile_pending(self, tx) -> str:
        reference = tx.transaction_hash
        if not reference and tx.submitted_at is not None:
            reference = self.wallet.find_payment(tx.id, tx.payment_locator)
            if reference:
                self.ledger.set_reference(tx.id, reference)

        if not reference:
            return self._reconcile_unreferenced(tx)

        verification = self.verifier.verify(reference, tx.amount_cents, self.recipient)
        if verification.verified:
            self.ledger.mark_completed(tx.id, reference)
            self._grant(tx)
            return "completed"
        if verification.final:
            self.ledger.mark_failed(
                tx.id, f"{PurchaseError.PAYMENT_REJECTED.value}: verification failed: {verification.reason}"
            )
            return "failed"
        return "still_pending"

    def _reconcile_unreferenced(self, tx) -> str:
        age = datetime.now(timezone.utc) - as_utc(tx.created_at)
        if tx.submitted_at is None:
            if age >= self.abandon_after:
                self.ledger.mark_failed(tx.id, f"{PurchaseError.TIMED_OUT.value}: abandoned, payment never submitted")
                return "abandoned"
            return "still_pending"

        if not self.wallet.payment_may_settle(tx.payment_locator):
            self.ledger.mark_failed(
                tx.id, f"{PurchaseError.TIMED_OUT.value}: abandoned, payment authorization expired unused"
            )
            return "abandoned"
        if age >= self.abandon_after:
            logger.warning(
                "reconcile_payment_unresolved",
                extra={"transaction_id": tx.id, "user_id": tx.user_id, "amount_cents": tx.amount_cents},
            )
            return "unresolved"
        return "still_pending"

    def _grant(self, tx) -> None:
        expires_at = None
        if self.grant_ttl_days > 0:
            expires_at = datetime.now(timezone.utc) + timedelta(days=self.grant_ttl_days)
        self.ledger.grant_access(
            user_id=tx.user_id,
            transaction_id=tx.id,
            content_id=tx.content_id,
            template_id=tx.template_id,
            expires_at=expires_at,
        )
