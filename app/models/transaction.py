"""
Transaction - одна попытка оплаты (append-only, строки не удаляются).
Создаётся в pending до любого внешнего вызова; transaction_hash - ссылка на on-chain перевод.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text

from app.db.base import Base

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REFUNDED = "refunded"

TRANSACTION_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED, STATUS_REFUNDED)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "(content_id IS NULL) <> (template_id IS NULL)",
            name="ck_transactions_one_item",
        ),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    content_id = Column(String, nullable=True, index=True)
    template_id = Column(String, nullable=True, index=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="USDC")
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)  # pending / completed / failed / refunded
    transaction_hash = Column(String, nullable=True)
    # отметка «оплата отправлена» и данные провайдера для поиска перевода, если ответ потерян
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    payment_locator = Column(Text, nullable=True)
    error = Column(Text, nullable=True)  # код ошибки + сообщение для аудита
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def item_id(self) -> str:
        return self.content_id or self.template_id
