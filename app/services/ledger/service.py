"""
AccessLedgerService - кто за что заплатил.

Ответственности:
- Учёт Transaction: pending -> completed / failed, completed -> refunded (строки не удаляются)
- Выдача доступа (AccessGrant) - идемпотентный upsert по (user, content|template)
- Проверка доступа: грант есть и не истёк
- total_spent - только для отображения, не для авторизации

Инвариант: AccessGrant существует только для completed Transaction.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, exists, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.access_grant import AccessGrant
from app.models.transaction import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_REFUNDED,
    Transaction,
)
from app.utils.metrics import access_grants_total

logger = logging.getLogger(__name__)

# Разрешённые переходы статусов
_TRANSITIONS = {
    STATUS_PENDING: {STATUS_COMPLETED, STATUS_FAILED},
    STATUS_COMPLETED: {STATUS_REFUNDED},
    STATUS_FAILED: set(),
    STATUS_REFUNDED: set(),
}


class LedgerError(Exception):
    """Нарушение инвариантов ledger (неверный переход, грант без оплаты и т.п.)."""


def _item_filter(model, content_id: str | None, template_id: str | None):
    if bool(content_id) == bool(template_id):
        raise ValueError("Exactly one of content_id / template_id is required")
    if content_id:
        return model.content_id == content_id
    return model.template_id == template_id


class AccessLedgerService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def has_access(
        self,
        user_id: str,
        content_id: str | None = None,
        template_id: str | None = None,
    ) -> bool:
        now = datetime.now(timezone.utc)
        grant = (
            self.db.query(AccessGrant.id)
            .filter(
                AccessGrant.user_id == user_id,
                _item_filter(AccessGrant, content_id, template_id),
                or_(AccessGrant.expires_at.is_(None), AccessGrant.expires_at > now),
            )
            .first()
        )
        return grant is not None

    def get_grant(
        self,
        user_id: str,
        content_id: str | None = None,
        template_id: str | None = None,
    ) -> AccessGrant | None:
        return (
            self.db.query(AccessGrant)
            .filter(
                AccessGrant.user_id == user_id,
                _item_filter(AccessGrant, content_id, template_id),
            )
            .one_or_none()
        )

    def grant_access(
        self,
        user_id: str,
        transaction_id: str,
        content_id: str | None = None,
        template_id: str | None = None,
        expires_at: datetime | None = None,
    ) -> AccessGrant:
        """
        Идемпотентно выдаёт доступ. Повторный вызов для той же пары возвращает существующий грант.
        Истёкший грант переносится на новую транзакцию (повторная покупка).
        Коммитит сам: вызывается как отдельный шаг после completed-оплаты и при reconciliation.
        """
        item_filter = _item_filter(AccessGrant, content_id, template_id)
        tx = self.get_transaction(transaction_id)
        if tx is None:
            raise LedgerError(f"Transaction {transaction_id} not found")
        if tx.status != STATUS_COMPLETED:
            raise LedgerError(f"Transaction {transaction_id} is {tx.status}, access requires completed")
        if tx.user_id != user_id or tx.content_id != content_id or tx.template_id != template_id:
            raise LedgerError(f"Transaction {transaction_id} does not pay for this item")

        existing = (
            self.db.query(AccessGrant)
            .filter(AccessGrant.user_id == user_id, item_filter)
            .one_or_none()
        )
        now = datetime.now(timezone.utc)
        if existing:
            if existing.expires_at is not None and as_utc(existing.expires_at) <= now:
                existing.transaction_id = transaction_id
                existing.access_granted_at = now
                existing.expires_at = expires_at
                self.db.add(existing)
                self.db.commit()
                logger.info(
                    "access_grant_renewed",
                    extra={"user_id": user_id, "transaction_id": transaction_id},
                )
            return existing

        grant = AccessGrant(
            user_id=user_id,
            content_id=content_id,
            template_id=template_id,
            transaction_id=transaction_id,
            access_granted_at=now,
            expires_at=expires_at,
        )
        try:
            self.db.add(grant)
            self.db.commit()
        except IntegrityError:
            # Параллельный grant для той же пары (reconciliation + запрос) - читаем победителя
            self.db.rollback()
            logger.info("access_grant_duplicate", extra={"user_id": user_id, "transaction_id": transaction_id})
            return (
                self.db.query(AccessGrant)
                .filter(AccessGrant.user_id == user_id, item_filter)
                .one()
            )

        access_grants_total.labels(item_type="content" if content_id else "template").inc()
        logger.info(
            "access_granted",
            extra={
                "user_id": user_id,
                "transaction_id": transaction_id,
                "content_id": content_id,
                "template_id": template_id,
            },
        )
        return grant

    def list_grants(self, user_id: str) -> list[AccessGrant]:
        return (
            self.db.query(AccessGrant)
            .filter(AccessGrant.user_id == user_id)
            .order_by(AccessGrant.access_granted_at.desc())
            .all()
        )

    def total_spent(self, user_id: str) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(Transaction.amount_cents), 0))
            .filter(Transaction.user_id == user_id, Transaction.status == STATUS_COMPLETED)
            .scalar()
        )
        return int(total or 0)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def create_pending(
        self,
        user_id: str,
        amount_cents: int,
        content_id: str | None = None,
        template_id: str | None = None,
        currency: str = "USDC",
    ) -> Transaction:
        """Durable запись до любого внешнего вызова: при падении процесса остаётся pending для reconciliation."""
        _item_filter(Transaction, content_id, template_id)
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        tx = Transaction(
            user_id=user_id,
            content_id=content_id,
            template_id=template_id,
            amount_cents=amount_cents,
            currency=currency,
            status=STATUS_PENDING,
        )
        self.db.add(tx)
        self.db.commit()
        self.db.refresh(tx)
        logger.info(
            "transaction_created",
            extra={"transaction_id": tx.id, "user_id": user_id, "amount_cents": amount_cents},
        )
        return tx

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self.db.query(Transaction).filter(Transaction.id == transaction_id).one_or_none()

    def _transition(self, transaction_id: str, new_status: str) -> Transaction:
        tx = self.get_transaction(transaction_id)
        if tx is None:
            raise LedgerError(f"Transaction {transaction_id} not found")
        if new_status not in _TRANSITIONS[tx.status]:
            raise LedgerError(f"Illegal transition {tx.status} -> {new_status} for {transaction_id}")
        tx.status = new_status
        return tx

    def set_reference(self, transaction_id: str, reference: str) -> Transaction:
        """Сохранить ссылку на перевод, не меняя статус (нужно reconciliation при TimedOut/verify)."""
        tx = self.get_transaction(transaction_id)
        if tx is None:
            raise LedgerError(f"Transaction {transaction_id} not found")
        tx.transaction_hash = reference
        self.db.add(tx)
        self.db.commit()
        return tx

    def mark_submitted(self, transaction_id: str, locator: str | None = None) -> Transaction:
        """
        Отметка перед вызовом submit_payment. Коммитится ДО отправки: reconciliation отличает
        «оплата не отправлялась» (можно бросить) от «исход неизвестен» (искать перевод).
        """
        tx = self.get_transaction(transaction_id)
        if tx is None:
            raise LedgerError(f"Transaction {transaction_id} not found")
        if tx.status != STATUS_PENDING:
            raise LedgerError(f"Transaction {transaction_id} is {tx.status}, submission requires pending")
        tx.submitted_at = datetime.now(timezone.utc)
        tx.payment_locator = locator
        self.db.add(tx)
        self.db.commit()
        return tx

    def mark_completed(self, transaction_id: str, reference: str | None) -> Transaction:
        tx = self._transition(transaction_id, STATUS_COMPLETED)
        if reference:
            tx.transaction_hash = reference
        tx.completed_at = datetime.now(timezone.utc)
        tx.error = None
        self.db.add(tx)
        self.db.commit()
        logger.info("transaction_completed", extra={"transaction_id": transaction_id, "reference": reference})
        return tx

    def mark_failed(self, transaction_id: str, error: str) -> Transaction:
        tx = self._transition(transaction_id, STATUS_FAILED)
        tx.error = error
        self.db.add(tx)
        self.db.commit()
        logger.info("transaction_failed", extra={"transaction_id": transaction_id, "error": error})
        return tx

    def mark_refunded(self, transaction_id: str) -> Transaction:
        """
        completed -> refunded. Грант, оплаченный этой транзакцией, отзывается
        (иначе нарушится инвариант «грант только при completed»).
        Сам возврат средств выполняется ОТДЕЛЬНО, вне ledger.
        """
        tx = self._transition(transaction_id, STATUS_REFUNDED)
        tx.refunded_at = datetime.now(timezone.utc)
        self.db.add(tx)
        revoked = (
            self.db.query(AccessGrant)
            .filter(AccessGrant.transaction_id == transaction_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info(
            "transaction_refunded",
            extra={"transaction_id": transaction_id, "user_id": tx.user_id, "revoked": revoked},
        )
        return tx

    def list_transactions(self, user_id: str, limit: int = 50) -> list[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .all()
        )

    def latest_transaction(
        self,
        user_id: str,
        content_id: str | None = None,
        template_id: str | None = None,
    ) -> Transaction | None:
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id, _item_filter(Transaction, content_id, template_id))
            .order_by(Transaction.created_at.desc())
            .first()
        )

    def list_pending(self, older_than: timedelta, limit: int = 100) -> list[Transaction]:
        cutoff = datetime.now(timezone.utc) - older_than
        return (
            self.db.query(Transaction)
            .filter(Transaction.status == STATUS_PENDING, Transaction.created_at < cutoff)
            .order_by(Transaction.created_at)
            .limit(limit)
            .all()
        )

    def list_completed_without_grant(self, limit: int = 100) -> list[Transaction]:
        """completed, но грант не создан (сбой после оплаты) - дочиняет reconciliation."""
        has_grant = exists().where(
            AccessGrant.user_id == Transaction.user_id,
            or_(
                and_(Transaction.content_id.isnot(None), AccessGrant.content_id == Transaction.content_id),
                and_(Transaction.template_id.isnot(None), AccessGrant.template_id == Transaction.template_id),
            ),
        )
        return (
            self.db.query(Transaction)
            .filter(Transaction.status == STATUS_COMPLETED, ~has_grant)
            .order_by(Transaction.created_at)
            .limit(limit)
            .all()
        )

    def rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError:
            logger.exception("ledger_rollback_failed")


def as_utc(dt: datetime) -> datetime:
    """SQLite отдаёт naive datetime; все даты в UTC."""
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
