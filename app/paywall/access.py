"""
Decision только: decide_access(ctx) -> AccessDecision.
Чистая функция, без I/O. Источник истины доступа - AccessGrant (ctx.has_access);
состояние UI машины покупки здесь не учитывается.
"""
from __future__ import annotations

import logging

from app.paywall.config import get_currency
from app.paywall.models import AccessContext, AccessDecision, UnlockOptions
from app.utils.currency import format_price

logger = logging.getLogger(__name__)


def decide_access(ctx: AccessContext) -> AccessDecision:
    """
    Решает, отдавать ли содержимое карточки/шаблона.

    - has_access -> открыто
    - бесплатный элемент (price_cents <= 0) -> открыто
    - иначе закрыто; кнопка показывает цену, требование подключить кошелёк
      и «оплата обрабатывается», если последняя транзакция в pending
    """
    if ctx.has_access:
        return AccessDecision(locked=False)

    if ctx.price_cents <= 0:
        return AccessDecision(locked=False)

    return AccessDecision(
        locked=True,
        unlock_options=UnlockOptions(
            price_cents=ctx.price_cents,
            price_label=format_price(ctx.price_cents),
            currency=get_currency(),
            requires_wallet=ctx.user_id is None,
            payment_processing=ctx.last_transaction_status == "pending",
        ),
    )
