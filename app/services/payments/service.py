"""
PaymentOrchestrator - одна попытка покупки от pending до completed/failed.

Порядок:
1. Валидация запроса (InvalidRequest, ledger не трогаем)
2. Transaction в pending - коммит ДО любых внешних вызовов
3. Баланс кошелька; balance < amount -> failed (InsufficientFunds), оплату не отправляем
4. before_submit (UI может отменить до отправки) -> отметка submitted + locator провайдера (коммит)
   -> submit_payment - единственный вызов, двигающий деньги. Не ретраится; ограничен таймаутом
   (TimedOut: транзакция остаётся pending; поздний ответ сохраняется отдельной сессией)
5. Проверка on-chain (если включена) -> completed с reference -> AccessGrant
   Сбой гранта после completed не делает покупку неуспешной: грант дочинит reconciliation.

purchase() никогда не бросает исключения: все исходы - PurchaseResult.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from app.db.session import SessionLocal
from app.models.transaction import Transaction
from app.schemas.purchases import PurchaseRequest, PurchaseResult
from app.services.ledger.service import AccessLedgerService, LedgerError
from app.services.payments.errors import CANCELLED_CODE, PurchaseError
from app.services.payments.verification import PaymentVerifier
from app.services.wallet.base import (
    PaymentSubmission,
    WalletError,
    WalletProvider,
    WalletTimeout,
    WalletUnavailable,
)
from app.utils.metrics import payment_submit_duration_seconds, purchases_in_flight, purchases_total

logger = logging.getLogger(__name__)

# Отдельный пул: submit_payment может зависнуть дольше таймаута, поток не должен держать запрос
_submit_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="payment-submit")


def _record_late_submission(session_factory, transaction_id: str):
    """
    Ответ submit_payment пришёл после таймаута. Сессия запроса к этому моменту закрыта,
    поэтому пишем через свою: reference -> reconciliation проверит и завершит покупку.
    """
    def callback(future) -> None:
        try:
            submission = future.result()
        except Exception as e:
            # исход по-прежнему неизвестен: остаётся pending, ищет reconciliation
            logger.warning("payment_submit_late_error", extra={"transaction_id": transaction_id, "error": str(e)})
            return
        logger.warning(
            "payment_submit_late_result",
            extra={
                "transaction_id": transaction_id,
                "reference": submission.reference,
                "error": submission.error,
            },
        )
        db = session_factory()
        try:
            ledger = AccessLedgerService(db)
            if submission.success and submission.reference:
                ledger.set_reference(transaction_id, submission.reference)
            elif not submission.success:
                ledger.mark_failed(
                    transaction_id,
                    f"{PurchaseError.PAYMENT_REJECTED.value}: {submission.error or 'Payment failed'}",
                )
        except (SQLAlchemyError, LedgerError):
            db.rollback()
            logger.exception("payment_submit_late_not_saved", extra={"transaction_id": transaction_id})
        finally:
            db.close()
    return callback


class PaymentOrchestrator:
    def __init__(
        self,
        ledger: AccessLedgerService,
        wallet: WalletProvider,
        *,
        recipient: str,
        submit_timeout: float = 60.0,
        verifier: PaymentVerifier | None = None,
        currency: str = "USDC",
        grant_ttl_days: int = 0,
        session_factory=None,
    ):
        self.ledger = ledger
        self.wallet = wallet
        self.recipient = recipient
        self.submit_timeout = submit_timeout
        self.verifier = verifier
        self.currency = currency
        self.grant_ttl_days = grant_ttl_days
        self.session_factory = session_factory or SessionLocal

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def purchase(
        self,
        request: PurchaseRequest,
        wallet_address: str | None,
        before_submit: Callable[[], bool] | None = None,
    ) -> PurchaseResult:
        """
        before_submit вызывается после успешной проверки баланса, прямо перед отправкой.
        False = покупка отменена: транзакция failed (Cancelled), оплата не отправляется.
        """
        problem = self._validate(request, wallet_address)
        if problem:
            logger.info("purchase_invalid", extra={"user_id": request.user_id, "error": problem})
            return self._finish(PurchaseResult(
                success=False,
                error=PurchaseError.INVALID_REQUEST,
                message=problem,
            ))

        logger.info(
            "purchase_started",
            extra={
                "user_id": request.user_id,
                "content_id": request.content_id,
                "template_id": request.template_id,
                "amount_cents": request.amount_cents,
                "wallet_address": wallet_address,
            },
        )
        try:
            tx = self.ledger.create_pending(
                user_id=request.user_id,
                amount_cents=request.amount_cents,
                content_id=request.content_id,
                template_id=request.template_id,
                currency=self.currency,
            )
        except (SQLAlchemyError, ValueError) as e:
            self.ledger.rollback()
            logger.exception("purchase_create_transaction_failed", extra={"user_id": request.user_id})
            return self._finish(PurchaseResult(
                success=False,
                error=PurchaseError.PERSISTENCE_FAILURE,
                message=str(e),
            ))

        purchases_in_flight.inc()
        try:
            return self._finish(self._execute(tx, request, wallet_address, before_submit))
        except Exception as e:
            # Граница: purchase() не бросает. Неожиданная ошибка ledger/кошелька до отправки оплаты.
            logger.exception("purchase_unexpected_error", extra={"transaction_id": tx.id})
            return self._finish(self._fail(tx, PurchaseError.PERSISTENCE_FAILURE, str(e)))
        finally:
            purchases_in_flight.dec()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(request: PurchaseRequest, wallet_address: str | None) -> str | None:
        if not wallet_address:
            return "Wallet identity is required"
        if not request.user_id:
            return "user_id is required"
        if request.amount_cents <= 0:
            return "amount_cents must be positive"
        if bool(request.content_id) == bool(request.template_id):
            return "Exactly one of content_id / template_id is required"
        return None

    def _execute(
        self,
        tx: Transaction,
        request: PurchaseRequest,
        wallet_address: str,
        before_submit: Callable[[], bool] | None,
    ) -> PurchaseResult:
        tx_id = tx.id

        try:
            balance = self.wallet.get_balance(wallet_address)
        except WalletError as e:
            return self._fail(tx, PurchaseError.WALLET_UNAVAILABLE, str(e))

        if balance < request.amount_cents:
            logger.info(
                "purchase_insufficient_funds",
                extra={"transaction_id": tx_id, "balance_cents": balance, "amount_cents": request.amount_cents},
            )
            return self._fail(tx, PurchaseError.INSUFFICIENT_FUNDS, f"Balance {balance} < {request.amount_cents}")

        if before_submit is not None and not before_submit():
            return self._cancel(tx)

        try:
            self.ledger.mark_submitted(tx_id, self.wallet.payment_locator())
        except (SQLAlchemyError, LedgerError) as e:
            self.ledger.rollback()
            logger.exception("purchase_submit_mark_failed", extra={"transaction_id": tx_id})
            return self._fail(tx, PurchaseError.PERSISTENCE_FAILURE, str(e))

        # Точка невозврата: после отправки исход берётся только с chain/reconciliation
        try:
            submission = self._submit(tx_id, request)
        except FuturesTimeoutError:
            logger.warning("purchase_submit_timed_out", extra={"transaction_id": tx_id})
            return self._timed_out(tx_id)
        except WalletTimeout as e:
            # запрос дошёл до провайдера, ответа нет: оплата могла пройти
            logger.warning("purchase_submit_outcome_unknown", extra={"transaction_id": tx_id, "error": str(e)})
            return self._timed_out(tx_id)
        except WalletUnavailable as e:
            return self._fail(tx, PurchaseError.WALLET_UNAVAILABLE, str(e))
        except Exception as e:
            logger.warning("purchase_submit_error", extra={"transaction_id": tx_id, "error": str(e)})
            return self._fail(tx, PurchaseError.PAYMENT_REJECTED, str(e))

        if not submission.success or not submission.reference:
            return self._fail(tx, PurchaseError.PAYMENT_REJECTED, submission.error or "Payment failed")

        reference = submission.reference
        return self._settle(tx_id, request, reference)

    def _submit(self, tx_id: str, request: PurchaseRequest) -> PaymentSubmission:
        metadata = {
            "idempotency_key": tx_id,
            "content_id": request.content_id,
            "template_id": request.template_id,
            "description": request.description,
            "timestamp": int(time.time()),
        }
        start = time.time()
        future = _submit_executor.submit(
            self.wallet.submit_payment, request.amount_cents, self.recipient, metadata
        )
        try:
            return future.result(timeout=self.submit_timeout)
        except FuturesTimeoutError:
            future.add_done_callback(_record_late_submission(self.session_factory, tx_id))
            raise
        finally:
            payment_submit_duration_seconds.observe(time.time() - start)

    def _settle(self, tx_id: str, request: PurchaseRequest, reference: str) -> PurchaseResult:
        """Оплата отправлена и вернула reference. Транзакцию больше нельзя пометить failed без проверки."""
        try:
            self.ledger.set_reference(tx_id, reference)
        except (SQLAlchemyError, LedgerError):
            self.ledger.rollback()
            logger.exception("purchase_reference_not_saved", extra={"transaction_id": tx_id, "reference": reference})

        if self.verifier is not None:
            try:
                verification = self.verifier.verify(reference, request.amount_cents, self.recipient)
            except Exception as e:
                # Деньги уже ушли: любая ошибка проверки = исход неизвестен, не failed
                logger.warning(
                    "purchase_verification_unavailable",
                    extra={"transaction_id": tx_id, "reference": reference, "error": str(e)},
                )
                return self._pending(tx_id, reference)
            if not verification.verified:
                if not verification.final:
                    return self._pending(tx_id, reference)
                tx = self.ledger.get_transaction(tx_id)
                return self._fail(tx, PurchaseError.PAYMENT_REJECTED, f"Verification failed: {verification.reason}")

        try:
            self.ledger.mark_completed(tx_id, reference)
        except (SQLAlchemyError, LedgerError) as e:
            self.ledger.rollback()
            logger.exception("purchase_complete_not_saved", extra={"transaction_id": tx_id, "reference": reference})
            return PurchaseResult(
                success=False,
                transaction_id=tx_id,
                transaction_ref=reference,
                error=PurchaseError.PERSISTENCE_FAILURE,
                message=str(e),
                pending=True,
            )

        expires_at = None
        if self.grant_ttl_days > 0:
            expires_at = datetime.now(timezone.utc) + timedelta(days=self.grant_ttl_days)
        try:
            self.ledger.grant_access(
                user_id=request.user_id,
                transaction_id=tx_id,
                content_id=request.content_id,
                template_id=request.template_id,
                expires_at=expires_at,
            )
        except (SQLAlchemyError, LedgerError):
            self.ledger.rollback()
            logger.exception("purchase_grant_deferred", extra={"transaction_id": tx_id})

        logger.info(
            "purchase_completed",
            extra={"transaction_id": tx_id, "user_id": request.user_id, "reference": reference},
        )
        return PurchaseResult(success=True, transaction_id=tx_id, transaction_ref=reference)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    @staticmethod
    def _timed_out(tx_id: str) -> PurchaseResult:
        return PurchaseResult(
            success=False,
            transaction_id=tx_id,
            error=PurchaseError.TIMED_OUT,
            message=PurchaseError.TIMED_OUT.user_message,
            pending=True,
        )

    def _cancel(self, tx: Transaction) -> PurchaseResult:
        try:
            self.ledger.mark_failed(tx.id, f"{CANCELLED_CODE}: cancelled before payment")
        except (SQLAlchemyError, LedgerError):
            self.ledger.rollback()
            logger.exception("purchase_mark_failed_error", extra={"transaction_id": tx.id})
        logger.info("purchase_cancelled", extra={"transaction_id": tx.id})
        return PurchaseResult(success=False, transaction_id=tx.id, cancelled=True)

    def _pending(self, tx_id: str, reference: str) -> PurchaseResult:
        return PurchaseResult(
            success=False,
            transaction_id=tx_id,
            transaction_ref=reference,
            error=PurchaseError.TIMED_OUT,
            message=PurchaseError.TIMED_OUT.user_message,
            pending=True,
        )

    def _fail(self, tx: Transaction | None, error: PurchaseError, detail: str) -> PurchaseResult:
        tx_id = tx.id if tx is not None else None
        if tx_id:
            try:
                self.ledger.mark_failed(tx_id, f"{error.value}: {detail}")
            except (SQLAlchemyError, LedgerError):
                self.ledger.rollback()
                logger.exception("purchase_mark_failed_error", extra={"transaction_id": tx_id})
        logger.info("purchase_failed", extra={"transaction_id": tx_id, "error": error.value})
        return PurchaseResult(
            success=False,
            transaction_id=tx_id,
            error=error,
            message=error.user_message,
        )

    @staticmethod
    def _finish(result: PurchaseResult) -> PurchaseResult:
        if result.success:
            outcome = "success"
        elif result.cancelled:
            outcome = "cancelled"
        else:
            outcome = result.error.value
        purchases_total.labels(outcome=outcome).inc()
        return result
