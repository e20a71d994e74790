from datetime import datetime

from pydantic import BaseModel, Field

from app.services.payments.errors import PurchaseError


class PurchaseRequest(BaseModel):
    """Вход PaymentOrchestrator.purchase. Валидируется в оркестраторе (InvalidRequest), не здесь."""

    user_id: str
    amount_cents: int
    content_id: str | None = None
    template_id: str | None = None
    description: str = ""

    model_config = {"frozen": True}

    @property
    def item_id(self) -> str | None:
        return self.content_id or self.template_id


class PurchaseResult(BaseModel):
    success: bool
    transaction_id: str | None = None
    transaction_ref: str | None = Field(None, description="On-chain reference of the payment")
    error: PurchaseError | None = None
    message: str | None = None
    pending: bool = Field(
        False,
        description="True = outcome not final yet, transaction left pending for reconciliation",
    )
    cancelled: bool = Field(False, description="True = cancelled by the user before the payment was sent")

    model_config = {"frozen": True}

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


class PurchaseIn(BaseModel):
    """HTTP body: цена берётся из каталога, не от клиента."""

    content_id: str | None = None
    template_id: str | None = None


class PurchaseOut(BaseModel):
    state: str
    success: bool
    transaction_id: str | None
    transaction_ref: str | None
    error: str | None
    message: str | None
    pending: bool
    retryable: bool


class TransactionOut(BaseModel):
    id: str
    content_id: str | None
    template_id: str | None
    amount_cents: int
    currency: str
    status: str
    transaction_hash: str | None
    created_at: datetime


class AccessOut(BaseModel):
    has_access: bool
    content_id: str | None = None
    template_id: str | None = None
    last_transaction_status: str | None = None
