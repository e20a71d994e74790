"""HTTP API tests: FastAPI TestClient with the DB session, wallet and purchase lock overridden."""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_draft_generator, get_purchase_lock, get_wallet_provider
from app.db.session import get_db
from app.main import app
from app.services.content.service import ContentService
from app.services.ledger.service import AccessLedgerService
from app.services.users.service import UserService

HEADERS = {"X-Wallet-Address": "0xAbC"}


@pytest.fixture
def wallet(wallet_factory, confirmed):
    return wallet_factory(balance_cents=1000, status=confirmed(amount_cents=100))


@pytest.fixture
def lock():
    lock = MagicMock()
    lock.acquire.return_value = True
    return lock


@pytest.fixture
def generator():
    generator = MagicMock()
    generator.generate_document.return_value = "CONSUMER COMPLAINT LETTER"
    return generator


@pytest.fixture
def client(db, wallet, lock, generator):
    ContentService(db).seed_defaults()
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_wallet_provider] = lambda: wallet
    app.dependency_overrides[get_purchase_lock] = lambda: lock
    app.dependency_overrides[get_draft_generator] = lambda: generator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_catalog_locked_without_wallet(client):
    items = client.get("/content").json()
    assert len(items) == 5
    assert all(item["locked"] and item["content"] is None for item in items)
    assert items[0]["unlock_options"]["requires_wallet"] is True
    assert items[0]["price_label"] == "$0.50"


def test_content_not_found(client):
    assert client.get("/content/nope").status_code == 404


def test_search(client):
    ids = [i["id"] for i in client.get("/search", params={"q": "traffic"}).json()]
    assert "traffic-stop-rights" in ids


def test_purchase_unlocks_content(client, wallet, lock):
    resp = client.post("/purchases", json={"content_id": "traffic-stop-rights"}, headers=HEADERS)
    body = resp.json()

    assert resp.status_code == 200
    assert body["state"] == "unlocked"
    assert body["success"] is True
    assert body["transaction_ref"] == "0xref"
    # цена из каталога
    assert wallet.submitted[0][0] == 50
    lock.acquire.assert_called_once()
    lock.release.assert_called_once()

    detail = client.get("/content/traffic-stop-rights", headers=HEADERS).json()
    assert detail["locked"] is False
    assert "Traffic Stop" in detail["content"]

    access = client.get("/access", params={"content_id": "traffic-stop-rights"}, headers=HEADERS).json()
    assert access["has_access"] is True


def test_purchase_insufficient_funds(client, wallet):
    wallet.balance_cents = 30
    body = client.post("/purchases", json={"content_id": "arrest-rights"}, headers=HEADERS).json()
    assert body["state"] == "error"
    assert body["error"] == "InsufficientFunds"
    assert body["retryable"] is True
    assert wallet.calls["submit_payment"] == 0


def test_purchase_requires_wallet(client):
    assert client.post("/purchases", json={"content_id": "arrest-rights"}).status_code == 401


def test_purchase_unknown_item(client):
    resp = client.post("/purchases", json={"template_id": "nope"}, headers=HEADERS)
    assert resp.status_code == 404


def test_purchase_needs_exactly_one_item(client):
    resp = client.post("/purchases", json={}, headers=HEADERS)
    assert resp.status_code == 422


def test_purchase_in_flight_conflict(client, lock, wallet):
    lock.acquire.return_value = False
    resp = client.post("/purchases", json={"content_id": "arrest-rights"}, headers=HEADERS)
    assert resp.status_code == 409
    assert wallet.calls["submit_payment"] == 0


def test_pending_payment_blocks_second_purchase(client, db, wallet):
    user = UserService(db).get_or_create_by_wallet("0xabc")
    AccessLedgerService(db).create_pending(user_id=user.id, amount_cents=50, content_id="arrest-rights")

    resp = client.post("/purchases", json={"content_id": "arrest-rights"}, headers=HEADERS)
    assert resp.status_code == 409
    assert wallet.calls["submit_payment"] == 0


def test_profile_and_history(client):
    client.post("/purchases", json={"content_id": "arrest-rights"}, headers=HEADERS)

    me = client.get("/me", headers=HEADERS).json()
    assert me["user"]["wallet_address"] == "0xabc"
    assert me["total_spent_cents"] == 50
    assert me["total_spent_label"] == "$0.50"
    assert len(me["grants"]) == 1

    updated = client.patch("/me", json={"email": "alex@example.com"}, headers=HEADERS).json()
    assert updated["email"] == "alex@example.com"

    txs = client.get("/me/transactions", headers=HEADERS).json()
    assert [t["status"] for t in txs] == ["completed"]


def test_documents_require_purchase(client):
    resp = client.post(
        "/documents",
        json={"template_id": "consumer-complaint", "inputs": {"companyName": "Acme"}},
        headers=HEADERS,
    )
    assert resp.status_code == 403


def test_document_generation_after_purchase(client, generator):
    client.post("/purchases", json={"template_id": "consumer-complaint"}, headers=HEADERS)
    inputs = {
        "companyName": "Acme",
        "productService": "Blender",
        "purchaseDate": "2024-04-01",
        "issueDescription": "Broke after a week",
        "desiredResolution": "Refund",
    }

    missing = client.post(
        "/documents",
        json={"template_id": "consumer-complaint", "inputs": {"companyName": "Acme"}},
        headers=HEADERS,
    )
    assert missing.status_code == 422

    resp = client.post("/documents", json={"template_id": "consumer-complaint", "inputs": inputs}, headers=HEADERS)
    assert resp.status_code == 201
    assert resp.json()["document_content"] == "CONSUMER COMPLAINT LETTER"
    assert len(client.get("/documents", headers=HEADERS).json()) == 1
