"""
DTO paywall: PurchaseState, PurchaseItem (что покупаем), AccessContext (вход decide_access),
AccessDecision, UnlockOptions.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class PurchaseState(str, Enum):
    LOCKED = "locked"
    WALLET_CONNECTING = "walletConnecting"
    BALANCE_CHECKING = "balanceChecking"
    PAYING = "paying"
    VERIFYING = "verifying"
    UNLOCKED = "unlocked"
    ERROR = "error"


# Пока машина в этих состояниях, кнопка покупки неактивна (вторая покупка той же пары запрещена)
IN_FLIGHT_STATES = frozenset({
    PurchaseState.WALLET_CONNECTING,
    PurchaseState.BALANCE_CHECKING,
    PurchaseState.PAYING,
    PurchaseState.VERIFYING,
})

# После отправки оплаты отмена только отсоединяет UI, исход берётся из ledger
POINT_OF_NO_RETURN_STATES = frozenset({
    PurchaseState.PAYING,
    PurchaseState.VERIFYING,
})


# ----- Что покупаем -----


class PurchaseItem(BaseModel):
    """Карточка или шаблон: ровно один из content_id / template_id."""

    content_id: str | None = None
    template_id: str | None = None
    price_cents: int
    title: str = ""

    model_config = {"frozen": True}

    @property
    def item_id(self) -> str:
        return self.content_id or self.template_id

    @property
    def item_type(self) -> str:
        return "content" if self.content_id else "template"


# ----- Вход для decide_access -----


class AccessContext(BaseModel):
    """Единый контракт входа для decide_access."""

    user_id: str | None = None  # None = кошелёк не подключён
    price_cents: int
    has_access: bool = False
    # Статус последней транзакции по этой паре (pending -> «оплата обрабатывается»)
    last_transaction_status: str | None = None

    model_config = {"frozen": True}


class UnlockOptions(BaseModel):
    """Что показать на кнопке разблокировки. Без i18n/A/B логики."""

    price_cents: int
    price_label: str
    currency: str = "USDC"
    requires_wallet: bool = False
    payment_processing: bool = False

    model_config = {"frozen": True}


class AccessDecision(BaseModel):
    """Результат decide_access: отдавать ли содержимое и опции кнопки unlock."""

    locked: bool = Field(
        ...,
        description="True = отдавать только метаданные и показывать кнопку покупки",
    )
    unlock_options: UnlockOptions | None = Field(
        None,
        description="Опции кнопки; None если доступ уже есть",
    )

    model_config = {"frozen": True}
