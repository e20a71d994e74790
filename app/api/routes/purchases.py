"""
Purchase flow over HTTP.

Wallet identity comes from the wallet header, the signed payment from X-PAYMENT.
The price is always read from the catalog. A second purchase of the same
(user, item) while one is in flight is refused with 409.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import build_orchestrator, get_current_user, get_purchase_lock, get_wallet_provider
from app.core.config import settings
from app.db.session import get_db
from app.models.transaction import STATUS_PENDING
from app.models.user import User
from app.paywall import PurchaseInProgress, PurchaseItem, PurchaseState, PurchaseStateMachine
from app.schemas.purchases import AccessOut, PurchaseIn, PurchaseOut
from app.services.content.service import CatalogItemNotFound, ContentService
from app.services.idempotency import PurchaseLock
from app.services.ledger.service import AccessLedgerService
from app.services.wallet.base import WalletProvider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["purchases"])


def _machine_out(machine: PurchaseStateMachine) -> PurchaseOut:
    result = machine.last_result
    error = machine.error or (result.error if result else None)
    return PurchaseOut(
        state=machine.state.value,
        success=machine.state == PurchaseState.UNLOCKED or bool(result and result.success),
        transaction_id=result.transaction_id if result else None,
        transaction_ref=result.transaction_ref if result else None,
        error=error.value if error else None,
        message=machine.error_message or (result.message if result else None),
        pending=bool(result and result.pending),
        retryable=machine.can_retry,
    )


@router.post("/purchases", response_model=PurchaseOut)
def create_purchase(
    body: PurchaseIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    wallet: WalletProvider = Depends(get_wallet_provider),
    lock: PurchaseLock = Depends(get_purchase_lock),
) -> PurchaseOut:
    if not settings.payments_enabled:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payments are not configured")

    content = ContentService(db)
    try:
        price = content.get_price(content_id=body.content_id, template_id=body.template_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except CatalogItemNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found") from e

    title = ""
    if body.content_id:
        title = content.get_content(body.content_id).title
    else:
        title = content.get_template(body.template_id).name
    item = PurchaseItem(content_id=body.content_id, template_id=body.template_id, price_cents=price, title=title)

    ledger = AccessLedgerService(db)
    item_kwargs = {"content_id": item.content_id, "template_id": item.template_id}
    if not ledger.has_access(user.id, **item_kwargs):
        latest = ledger.latest_transaction(user.id, **item_kwargs)
        if latest is not None and latest.status == STATUS_PENDING:
            # исход предыдущей оплаты ещё не известен: вторая оплата запрещена до reconciliation
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Payment is being processed")

    if not lock.acquire(user.id, item.item_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Purchase already in progress")
    try:
        machine = PurchaseStateMachine(
            build_orchestrator(ledger, wallet),
            ledger,
            wallet,
            user_id=user.id,
            item=item,
            wallet_address=user.wallet_address,
        )
        try:
            machine.start()
        except PurchaseInProgress as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    finally:
        lock.release(user.id, item.item_id)

    logger.info(
        "purchase_request_done",
        extra={"user_id": user.id, "content_id": item.content_id, "template_id": item.template_id,
               "state": machine.state.value},
    )
    return _machine_out(machine)


@router.get("/access", response_model=AccessOut)
def check_access(
    content_id: str | None = Query(None),
    template_id: str | None = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> AccessOut:
    if bool(content_id) == bool(template_id):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Exactly one of content_id / template_id is required",
        )
    ledger = AccessLedgerService(db)
    has_access = ledger.has_access(user.id, content_id=content_id, template_id=template_id)
    latest = ledger.latest_transaction(user.id, content_id=content_id, template_id=template_id)
    return AccessOut(
        has_access=has_access,
        content_id=content_id,
        template_id=template_id,
        last_transaction_status=latest.status if latest else None,
    )
