"""Tests for PaymentReconciler: pending/ungranted purchases are finished without replaying payments."""
from datetime import datetime, timedelta, timezone

from app.services.ledger.service import AccessLedgerService
from app.services.payments.reconciliation import PaymentReconciler
from app.services.payments.verification import PaymentVerifier
from app.services.wallet.base import PaymentStatus, WalletUnavailable


def _age(db, tx, **delta):
    tx.created_at = datetime.now(timezone.utc) - timedelta(**delta)
    db.commit()


def _reconciler(db, wallet, recipient):
    return PaymentReconciler(
        AccessLedgerService(db),
        wallet,
        PaymentVerifier(wallet, min_confirmations=1),
        recipient=recipient,
        pending_after=timedelta(minutes=5),
        abandon_after=timedelta(hours=24),
    )


def _pending(db, reference=None, submitted=False, locator=None, **age):
    ledger = AccessLedgerService(db)
    tx = ledger.create_pending(user_id="u1", amount_cents=50, content_id="arrest-rights")
    if submitted:
        ledger.mark_submitted(tx.id, locator)
    if reference:
        ledger.set_reference(tx.id, reference)
    _age(db, tx, **(age or {"minutes": 10}))
    return tx


def test_confirmed_payment_completes_and_grants(db, wallet_factory, recipient, confirmed):
    tx = _pending(db, reference="0xref")
    wallet = wallet_factory(status=confirmed(amount_cents=50))

    counts = _reconciler(db, wallet, recipient).run()

    assert counts["completed"] == 1
    assert AccessLedgerService(db).get_transaction(tx.id).status == "completed"
    assert AccessLedgerService(db).has_access("u1", content_id="arrest-rights")
    assert wallet.calls["submit_payment"] == 0


def test_reference_found_by_locator(db, wallet_factory, recipient, confirmed):
    tx = _pending(db, submitted=True, locator='{"nonce": "0x01"}')
    wallet = wallet_factory(status=confirmed(reference="0xfound", amount_cents=50))
    wallet.found_reference = "0xfound"

    counts = _reconciler(db, wallet, recipient).run()

    assert counts["completed"] == 1
    assert AccessLedgerService(db).get_transaction(tx.id).transaction_hash == "0xfound"
    assert wallet.lookups == [(tx.id, '{"nonce": "0x01"}')]


def test_reverted_payment_fails(db, wallet_factory, recipient):
    tx = _pending(db, reference="0xref")
    wallet = wallet_factory(status=PaymentStatus(reference="0xref", state="failed"))

    counts = _reconciler(db, wallet, recipient).run()

    assert counts["failed"] == 1
    tx = AccessLedgerService(db).get_transaction(tx.id)
    assert tx.status == "failed"
    assert tx.error.startswith("PaymentRejected")


def test_unconfirmed_stays_pending(db, wallet_factory, recipient):
    tx = _pending(db, reference="0xref")
    counts = _reconciler(db, wallet_factory(), recipient).run()
    assert counts["still_pending"] == 1
    assert AccessLedgerService(db).get_transaction(tx.id).status == "pending"


def test_recent_pending_is_left_alone(db, wallet_factory, recipient):
    _pending(db, reference="0xref", seconds=10)
    wallet = wallet_factory()
    counts = _reconciler(db, wallet, recipient).run()
    assert counts["still_pending"] == 0
    assert wallet.calls["get_payment_status"] == 0


def test_no_reference_abandoned_after_deadline(db, wallet_factory, recipient):
    fresh = _pending(db, minutes=30)
    stale = _pending(db, hours=30)

    counts = _reconciler(db, wallet_factory(), recipient).run()

    ledger = AccessLedgerService(db)
    assert counts["abandoned"] == 1
    assert ledger.get_transaction(stale.id).status == "failed"
    assert ledger.get_transaction(stale.id).error.startswith("TimedOut")
    assert ledger.get_transaction(fresh.id).status == "pending"


def test_completed_without_grant_is_granted(db, wallet_factory, recipient):
    ledger = AccessLedgerService(db)
    tx = ledger.create_pending(user_id="u1", amount_cents=100, template_id="consumer-complaint")
    ledger.mark_completed(tx.id, "0xref")

    counts = _reconciler(db, wallet_factory(), recipient).run()

    assert counts["granted"] == 1
    assert ledger.has_access("u1", template_id="consumer-complaint")
    assert _reconciler(db, wallet_factory(), recipient).run()["granted"] == 0


def test_chain_outage_counted_as_error(db, wallet_factory, recipient):
    tx = _pending(db, reference="0xref")
    wallet = wallet_factory()

    def down(reference):
        raise WalletUnavailable("rpc down")

    wallet.get_payment_status = down
    counts = _reconciler(db, wallet, recipient).run()

    assert counts["errors"] == 1
    assert AccessLedgerService(db).get_transaction(tx.id).status == "pending"


def test_never_submitted_is_not_looked_up(db, wallet_factory, recipient):
    _pending(db, minutes=30)
    wallet = wallet_factory()
    wallet.found_reference = "0xother"

    counts = _reconciler(db, wallet, recipient).run()

    assert counts["still_pending"] == 1
    assert wallet.lookups == []


def test_submitted_without_answer_is_not_abandoned(db, wallet_factory, recipient):
    tx = _pending(db, submitted=True, hours=30)

    counts = _reconciler(db, wallet_factory(), recipient).run()

    assert counts["unresolved"] == 1
    assert counts["abandoned"] == 0
    assert AccessLedgerService(db).get_transaction(tx.id).status == "pending"


def test_expired_unused_authorization_is_abandoned(db, wallet_factory, recipient):
    tx = _pending(db, submitted=True, minutes=30)
    wallet = wallet_factory()
    wallet.may_settle = False

    counts = _reconciler(db, wallet, recipient).run()

    assert counts["abandoned"] == 1
    tx = AccessLedgerService(db).get_transaction(tx.id)
    assert tx.status == "failed"
    assert "expired unused" in tx.error
