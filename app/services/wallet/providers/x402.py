"""
x402 provider: USDC on Base.

- Balance: JSON-RPC eth_call balanceOf(account) against the USDC contract.
- Payment: the client signs an x402 "exact" payment (EIP-3009 transferWithAuthorization)
  and the facilitator settles it on-chain; we only relay the signed payload.
- Status: eth_getTransactionReceipt + eth_blockNumber, Transfer log decoded for recipient/amount.
- Lost settle response: the authorization (from, nonce) is stored before settling; the USDC
  AuthorizationUsed log finds the transfer, authorizationState tells whether it can still land.
"""
import base64
import json
import logging
import time
from typing import Any

import httpx
import pybreaker

from app.services.circuit_breaker import get_circuit_breaker
from app.services.wallet.base import (
    PaymentStatus,
    PaymentSubmission,
    WalletError,
    WalletProvider,
    WalletTimeout,
    WalletUnavailable,
)
from app.utils.currency import cents_to_usdc_units, usdc_units_to_cents
from app.utils.metrics import wallet_request_duration_seconds, wallet_requests_total

logger = logging.getLogger(__name__)

BALANCE_OF_SELECTOR = "0x70a08231"
AUTHORIZATION_STATE_SELECTOR = "0xe94a0102"  # authorizationState(address,bytes32)
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
AUTHORIZATION_USED_TOPIC = "0x98de503528ee59b575ef0c0a2576a82497bfc029a5685b209e9ec333479b10a5"
X402_VERSION = 1


def _pad_address(address: str) -> str:
    return address.lower().removeprefix("0x").rjust(64, "0")


def _topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def _is_delivered_timeout(exc: BaseException | None) -> bool:
    """Read/write timeout: the request may have reached the server. Connect/pool timeouts never left."""
    return isinstance(exc, httpx.TimeoutException) and not isinstance(
        exc, (httpx.ConnectTimeout, httpx.PoolTimeout)
    )


def _parse_locator(locator: str) -> dict[str, Any]:
    try:
        data = json.loads(locator)
        return {"from": data["from"].lower(), "nonce": data["nonce"].lower(), "valid_before": int(data["valid_before"])}
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise WalletError("Malformed payment locator") from e


def decode_payment_header(value: str) -> dict[str, Any]:
    """X-PAYMENT header: base64(JSON) as produced by x402 clients."""
    try:
        return json.loads(base64.b64decode(value).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise WalletError("Malformed payment authorization") from e


class X402WalletProvider(WalletProvider):
    """USDC on Base through an x402 facilitator."""

    name = "x402"

    def __init__(self, config: dict):
        super().__init__(config)
        self.account = (config.get("account") or "").lower() or None
        self.payment_payload = config.get("payment_payload")
        self.rpc_url = config.get("rpc_url")
        self.facilitator_url = (config.get("facilitator_url") or "").rstrip("/")
        self.api_key = config.get("api_key") or ""
        self.usdc_address = (config.get("usdc_address") or "").lower()
        self.network = config.get("network", "base")
        self.timeout = config.get("timeout", 15.0)
        self.settle_timeout = config.get("settle_timeout", self.timeout)
        self.lookup_blocks = config.get("lookup_blocks", 50_000)
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.Client(timeout=self.timeout, headers=headers)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def is_available(self) -> bool:
        return bool(self.rpc_url and self.facilitator_url and self.usdc_address)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _call(self, method: str, func, *args: Any) -> Any:
        start = time.time()
        breaker = get_circuit_breaker("wallet")
        try:
            result = breaker.call(func, *args)
            wallet_requests_total.labels(method=method, status="success").inc()
            return result
        except pybreaker.CircuitBreakerError as e:
            # breaker opened by this very call: the original timeout is the cause
            if _is_delivered_timeout(e.__cause__ or e.__context__):
                wallet_requests_total.labels(method=method, status="timeout").inc()
                raise WalletTimeout(f"Wallet request timed out: {method}") from e
            wallet_requests_total.labels(method=method, status="breaker_open").inc()
            raise WalletUnavailable("Wallet service temporarily unavailable") from e
        except httpx.TimeoutException as e:
            wallet_requests_total.labels(method=method, status="timeout").inc()
            logger.warning("wallet_request_timeout", extra={"method": method, "error": str(e)})
            if _is_delivered_timeout(e):
                raise WalletTimeout(f"Wallet request timed out: {method}") from e
            raise WalletUnavailable(f"Wallet request failed: {method}") from e
        except (httpx.HTTPError, ValueError) as e:
            wallet_requests_total.labels(method=method, status="error").inc()
            logger.warning("wallet_request_failed", extra={"method": method, "error": str(e)})
            raise WalletUnavailable(f"Wallet request failed: {method}") from e
        finally:
            wallet_request_duration_seconds.labels(method=method).observe(time.time() - start)

    def _rpc(self, rpc_method: str, params: list) -> Any:
        def do_rpc() -> Any:
            resp = self.client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": rpc_method, "params": params},
            )
            resp.raise_for_status()
            body = resp.json()
            if body.get("error"):
                raise ValueError(f"RPC error: {body['error']}")
            return body.get("result")

        return self._call(rpc_method, do_rpc)

    def _facilitator(self, path: str, payload: dict, timeout: float | None = None) -> dict:
        def do_post() -> dict:
            resp = self.client.post(
                f"{self.facilitator_url}/{path}",
                json=payload,
                timeout=timeout if timeout is not None else self.timeout,
            )
            resp.raise_for_status()
            return resp.json()

        return self._call(f"facilitator_{path}", do_post)

    # ------------------------------------------------------------------
    # WalletProvider
    # ------------------------------------------------------------------

    def connect(self) -> str:
        if not self.account:
            raise WalletUnavailable("Wallet not connected")
        return self.account

    def get_balance(self, account: str) -> int:
        data = BALANCE_OF_SELECTOR + _pad_address(account)
        raw = self._rpc("eth_call", [{"to": self.usdc_address, "data": data}, "latest"])
        if not raw or raw == "0x":
            return 0
        return usdc_units_to_cents(int(raw, 16))

    def _requirements(self, amount_cents: int, recipient: str, metadata: dict[str, Any]) -> dict:
        return {
            "scheme": "exact",
            "network": self.network,
            "maxAmountRequired": str(cents_to_usdc_units(amount_cents)),
            "resource": metadata.get("resource", ""),
            "description": metadata.get("description", ""),
            "mimeType": "application/json",
            "payTo": recipient,
            "maxTimeoutSeconds": int(self.timeout),
            "asset": self.usdc_address,
            "extra": {"idempotency_key": metadata.get("idempotency_key")},
        }

    def submit_payment(self, amount_cents: int, recipient: str, metadata: dict[str, Any]) -> PaymentSubmission:
        if not self.payment_payload:
            return PaymentSubmission(success=False, error="Payment authorization missing")
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": self.payment_payload,
            "paymentRequirements": self._requirements(amount_cents, recipient, metadata),
        }
        result = self._facilitator("settle", body, timeout=self.settle_timeout)
        if result.get("success") and result.get("transaction"):
            return PaymentSubmission(success=True, reference=result["transaction"])
        return PaymentSubmission(
            success=False,
            error=result.get("errorReason") or "Payment failed",
        )

    def get_payment_status(self, reference: str) -> PaymentStatus:
        receipt = self._rpc("eth_getTransactionReceipt", [reference])
        if receipt is None:
            return PaymentStatus(reference=reference, state="pending")
        if receipt.get("status") != "0x1":
            return PaymentStatus(reference=reference, state="failed", detail={"status": receipt.get("status")})

        head = int(self._rpc("eth_blockNumber", []), 16)
        block = int(receipt.get("blockNumber") or "0x0", 16)
        confirmations = max(0, head - block + 1)

        recipient = None
        amount_cents = None
        for log in receipt.get("logs") or []:
            topics = log.get("topics") or []
            if (
                (log.get("address") or "").lower() == self.usdc_address
                and len(topics) == 3
                and topics[0].lower() == TRANSFER_TOPIC
            ):
                recipient = _topic_to_address(topics[2])
                amount_cents = usdc_units_to_cents(int(log.get("data") or "0x0", 16))
                break

        return PaymentStatus(
            reference=reference,
            state="confirmed",
            confirmations=confirmations,
            recipient=recipient,
            amount_cents=amount_cents,
        )

    # ------------------------------------------------------------------
    # Lost settle responses
    # ------------------------------------------------------------------

    def payment_locator(self) -> str | None:
        authorization = ((self.payment_payload or {}).get("payload") or {}).get("authorization") or {}
        if not (authorization.get("from") and authorization.get("nonce") and authorization.get("validBefore")):
            return None
        try:
            valid_before = int(authorization["validBefore"])
        except (TypeError, ValueError):
            return None
        return json.dumps({
            "from": authorization["from"].lower(),
            "nonce": authorization["nonce"].lower(),
            "valid_before": valid_before,
        })

    def find_payment(self, idempotency_key: str, locator: str | None = None) -> str | None:
        """Settlement tx of the stored authorization: USDC emits AuthorizationUsed(authorizer, nonce)."""
        if not locator:
            return None
        auth = _parse_locator(locator)
        head = int(self._rpc("eth_blockNumber", []), 16)
        logs = self._rpc("eth_getLogs", [{
            "address": self.usdc_address,
            "topics": [AUTHORIZATION_USED_TOPIC, "0x" + _pad_address(auth["from"]), auth["nonce"]],
            "fromBlock": hex(max(0, head - self.lookup_blocks)),
            "toBlock": "latest",
        }]) or []
        for log in logs:
            if log.get("transactionHash"):
                logger.info(
                    "wallet_payment_found",
                    extra={"transaction_id": idempotency_key, "reference": log["transactionHash"]},
                )
                return log["transactionHash"]
        return None

    def payment_may_settle(self, locator: str | None) -> bool:
        if not locator:
            return True
        auth = _parse_locator(locator)
        if time.time() < auth["valid_before"]:
            return True
        data = AUTHORIZATION_STATE_SELECTOR + _pad_address(auth["from"]) + auth["nonce"].removeprefix("0x").rjust(64, "0")
        raw = self._rpc("eth_call", [{"to": self.usdc_address, "data": data}, "latest"])
        used = bool(raw and raw != "0x" and int(raw, 16))
        # использованная авторизация уже на chain (лог вне окна поиска): исход не «никогда»
        return used
