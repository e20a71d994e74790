"""
PurchaseStateMachine - UI-состояние покупки одного элемента одним пользователем в рамках сессии.

locked -> walletConnecting -> balanceChecking -> paying -> verifying -> unlocked
error достижим из walletConnecting / balanceChecking / paying (и из verifying при reconciliation).
Баланс проверяет PaymentOrchestrator (одна проверка на попытку, InsufficientFunds остаётся в ledger);
машина переходит в paying из его хука before_submit, там же учитывается отмена.
retry: error -> balanceChecking (в walletConnecting только если кошелёк не подключён).

Состояние в памяти - только отображение. Истина - Transaction/AccessGrant в ledger:
refresh() сверяет машину с ними (после отмены, таймаута, перезагрузки страницы).
"""
from __future__ import annotations

import logging
import threading

from app.paywall.models import (
    IN_FLIGHT_STATES,
    POINT_OF_NO_RETURN_STATES,
    PurchaseItem,
    PurchaseState,
)
from app.schemas.purchases import PurchaseRequest, PurchaseResult
from app.services.ledger.service import AccessLedgerService
from app.services.payments.errors import CANCELLED_CODE, PurchaseError
from app.services.payments.service import PaymentOrchestrator
from app.services.wallet.base import WalletError, WalletProvider

logger = logging.getLogger(__name__)

S = PurchaseState

TRANSITIONS: dict[PurchaseState, frozenset[PurchaseState]] = {
    S.LOCKED: frozenset({S.WALLET_CONNECTING, S.BALANCE_CHECKING, S.UNLOCKED}),
    S.WALLET_CONNECTING: frozenset({S.BALANCE_CHECKING, S.ERROR, S.LOCKED}),
    S.BALANCE_CHECKING: frozenset({S.PAYING, S.ERROR, S.LOCKED}),
    S.PAYING: frozenset({S.VERIFYING, S.ERROR}),
    S.VERIFYING: frozenset({S.UNLOCKED, S.ERROR}),
    S.ERROR: frozenset({S.BALANCE_CHECKING, S.WALLET_CONNECTING, S.LOCKED}),
    S.UNLOCKED: frozenset(),
}


class InvalidTransition(Exception):
    def __init__(self, old: PurchaseState, new: PurchaseState):
        super().__init__(f"Illegal purchase transition {old.value} -> {new.value}")
        self.old = old
        self.new = new


class PurchaseInProgress(Exception):
    """Покупка этой пары уже идёт (кнопка должна быть неактивна)."""


class PurchaseStateMachine:
    def __init__(
        self,
        orchestrator: PaymentOrchestrator,
        ledger: AccessLedgerService,
        wallet: WalletProvider,
        user_id: str,
        item: PurchaseItem,
        wallet_address: str | None = None,
    ):
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.wallet = wallet
        self.user_id = user_id
        self.item = item
        self.wallet_address = wallet_address

        self.state = S.LOCKED
        self.history: list[tuple[PurchaseState, PurchaseState]] = []
        self.error: PurchaseError | None = None
        self.error_message: str | None = None
        self.last_result: PurchaseResult | None = None
        self.detached = False

        self._cancelled = False
        self._guard = threading.Lock()

    # ------------------------------------------------------------------
    # Properties for the UI
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self.state in IN_FLIGHT_STATES

    @property
    def can_retry(self) -> bool:
        return self.state == S.ERROR and self.error is not None and self.error.retryable

    def _item_kwargs(self) -> dict:
        return {"content_id": self.item.content_id, "template_id": self.item.template_id}

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, new: PurchaseState) -> None:
        old = self.state
        if new not in TRANSITIONS[old]:
            raise InvalidTransition(old, new)
        self._set(new)

    def _set(self, new: PurchaseState) -> None:
        old = self.state
        if old == new:
            return
        self.state = new
        self.history.append((old, new))
        logger.info(
            "purchase_state_change",
            extra={
                "user_id": self.user_id,
                "content_id": self.item.content_id,
                "template_id": self.item.template_id,
                "old_state": old.value,
                "new_state": new.value,
            },
        )

    def _enter_error(self, error: PurchaseError, message: str | None = None) -> PurchaseState:
        self.error = error
        self.error_message = message or error.user_message
        self._transition(S.ERROR)
        return self.state

    def _claim(self, allowed_from: frozenset[PurchaseState]) -> None:
        with self._guard:
            if self.state in IN_FLIGHT_STATES:
                raise PurchaseInProgress(f"Purchase of {self.item.item_id} already in progress")
            if self.state not in allowed_from:
                raise InvalidTransition(self.state, S.BALANCE_CHECKING)
            self._cancelled = False
            self.detached = False
            self.error = None
            self.error_message = None
            # занять слот до выхода из-под lock
            if not self.wallet_address:
                self._transition(S.WALLET_CONNECTING)
            else:
                self._transition(S.BALANCE_CHECKING)

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def start(self, wallet_address: str | None = None) -> PurchaseState:
        """Запуск покупки. Уже оплаченный элемент - no-op, сразу unlocked."""
        if self.state == S.UNLOCKED:
            return self.state
        if self.state == S.LOCKED and self.ledger.has_access(self.user_id, **self._item_kwargs()):
            self._transition(S.UNLOCKED)
            return self.state
        if wallet_address:
            self.wallet_address = wallet_address.lower()
        self._claim(frozenset({S.LOCKED}))
        return self._run()

    def retry(self) -> PurchaseState:
        """Только из error. Баланс проверяется заново (в том числе после InsufficientFunds)."""
        if self.state != S.ERROR:
            raise InvalidTransition(self.state, S.BALANCE_CHECKING)
        if self.ledger.has_access(self.user_id, **self._item_kwargs()):
            # оплата из прошлой попытки дошла через reconciliation
            self._set(S.UNLOCKED)
            return self.state
        self._claim(frozenset({S.ERROR}))
        return self._run()

    def cancel(self) -> PurchaseState:
        """
        Отмена пользователем. До отправки оплаты - возврат в locked.
        После отправки оплата не отменяется: UI отсоединяется, исход подтянет refresh().
        """
        with self._guard:
            if self.state in (S.UNLOCKED, S.LOCKED):
                return self.state
            self._cancelled = True
            if self.state in POINT_OF_NO_RETURN_STATES:
                self.detached = True
                logger.info(
                    "purchase_detached",
                    extra={"user_id": self.user_id, "state": self.state.value},
                )
                return self.state
            self._transition(S.LOCKED)
            return self.state

    def refresh(self) -> PurchaseState:
        """Сверить состояние с ledger (не доверяя памяти UI)."""
        if self.state == S.PAYING:
            # submit ещё выполняется в этом процессе
            return self.state
        if self.ledger.has_access(self.user_id, **self._item_kwargs()):
            self._set(S.UNLOCKED)
            return self.state

        tx = self.ledger.latest_transaction(self.user_id, **self._item_kwargs())
        cancelled = tx is not None and tx.status == "failed" and (tx.error or "").startswith(CANCELLED_CODE)
        if tx is None or tx.status == "refunded" or cancelled:
            if self.state != S.ERROR:
                self._set(S.LOCKED)
        elif tx.status in ("pending", "completed"):
            # completed без гранта: грант дочиняет reconciliation
            self._set(S.VERIFYING)
        elif tx.status == "failed":
            if self.state != S.ERROR:
                self.error = _error_from_stored(tx.error)
                self.error_message = self.error.user_message
                self._set(S.ERROR)
        return self.state

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run(self) -> PurchaseState:
        if self.state == S.WALLET_CONNECTING:
            try:
                self.wallet_address = self.wallet.connect().lower()
            except WalletError as e:
                if self._cancelled:
                    return self.state
                return self._enter_error(PurchaseError.WALLET_UNAVAILABLE, str(e))
            with self._guard:
                if self._cancelled:
                    return self.state
                self._transition(S.BALANCE_CHECKING)

        result = self.orchestrator.purchase(
            PurchaseRequest(
                user_id=self.user_id,
                amount_cents=self.item.price_cents,
                content_id=self.item.content_id,
                template_id=self.item.template_id,
                description=self.item.title,
            ),
            self.wallet_address,
            before_submit=self._begin_paying,
        )
        self.last_result = result

        if self.state != S.PAYING:
            # до отправки: баланс, кошелёк или отмена
            if self._cancelled or result.cancelled:
                return self.state
            return self._enter_error(result.error or PurchaseError.PAYMENT_REJECTED, result.message)

        if not result.success and not result.pending:
            return self._enter_error(result.error or PurchaseError.PAYMENT_REJECTED, result.message)

        self._transition(S.VERIFYING)
        if result.success and self.ledger.has_access(self.user_id, **self._item_kwargs()):
            self._transition(S.UNLOCKED)
        return self.state

    def _begin_paying(self) -> bool:
        """before_submit оркестратора: баланс достаточен. False = пользователь уже отменил."""
        with self._guard:
            if self._cancelled or self.state != S.BALANCE_CHECKING:
                return False
            self._transition(S.PAYING)
            return True


def _error_from_stored(stored: str | None) -> PurchaseError:
    """Transaction.error хранится как «<PurchaseError>: detail»."""
    code = (stored or "").split(":", 1)[0].strip()
    try:
        return PurchaseError(code)
    except ValueError:
        return PurchaseError.PAYMENT_REJECTED
