"""
Celery beat task: finish purchases whose outcome was unknown at request time
(pending after timeout/crash, completed without an access grant).
"""
import logging
from datetime import timedelta

from app.core.celery_app import celery_app
from app.core.config import settings
from app.db.session import SessionLocal
from app.paywall.config import get_grant_ttl_days, get_min_confirmations, get_payment_recipient
from app.services.ledger.service import AccessLedgerService
from app.services.payments.reconciliation import PaymentReconciler
from app.services.payments.verification import PaymentVerifier
from app.services.wallet.factory import WalletProviderFactory

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.workers.tasks.reconcile_payments.reconcile_payments",
    time_limit=240,
    soft_time_limit=230,
)
def reconcile_payments() -> dict:
    if not settings.payments_enabled:
        return {"ok": True, "skipped": "payments_disabled"}

    db = SessionLocal()
    wallet = WalletProviderFactory.create_from_settings(settings)
    try:
        reconciler = PaymentReconciler(
            AccessLedgerService(db),
            wallet,
            PaymentVerifier(wallet, min_confirmations=get_min_confirmations()),
            recipient=get_payment_recipient(),
            pending_after=timedelta(minutes=settings.reconcile_pending_after_minutes),
            abandon_after=timedelta(hours=settings.reconcile_abandon_after_hours),
            batch_size=settings.reconcile_batch_size,
            grant_ttl_days=get_grant_ttl_days(),
        )
        counts = reconciler.run()
        return {"ok": True, **counts}
    except Exception:
        logger.exception("reconcile_payments_failed")
        raise
    finally:
        wallet.close()
        db.close()
