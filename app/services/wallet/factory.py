"""
Factory for creating wallet providers based on configuration.
"""
import logging
from typing import Any

from app.services.wallet.base import WalletProvider
from app.services.wallet.providers.x402 import X402WalletProvider, decode_payment_header

logger = logging.getLogger(__name__)


class WalletProviderFactory:
    """Factory for creating wallet providers."""

    PROVIDERS = {
        "x402": X402WalletProvider,
    }

    @classmethod
    def create(cls, provider_name: str, config: dict) -> WalletProvider:
        """
        Create provider instance by name.

        Raises:
            ValueError: If provider name is unknown
        """
        provider_class = cls.PROVIDERS.get(provider_name.lower())

        if not provider_class:
            available = ", ".join(cls.PROVIDERS.keys())
            raise ValueError(
                f"Unknown wallet provider: {provider_name}. "
                f"Available providers: {available}"
            )

        provider = provider_class(config)
        if not provider.is_available():
            logger.warning(f"Wallet provider {provider_name} created but not fully configured")
        return provider

    @classmethod
    def create_from_settings(
        cls,
        settings: Any,
        account: str | None = None,
        payment_header: str | None = None,
    ) -> WalletProvider:
        """
        Create a per-request provider bound to the caller's wallet.

        Args:
            settings: Application settings object
            account: Connected wallet address (None = not connected)
            payment_header: Signed x402 payment (X-PAYMENT header), needed only for submission
        """
        provider_name = settings.wallet_provider
        if provider_name == "x402":
            config = {
                "account": account,
                "payment_payload": decode_payment_header(payment_header) if payment_header else None,
                "rpc_url": settings.base_rpc_url,
                "facilitator_url": settings.x402_facilitator_url,
                "api_key": settings.x402_api_key,
                "usdc_address": settings.usdc_contract_address,
                "timeout": settings.wallet_request_timeout,
                "settle_timeout": settings.x402_settle_timeout,
                "lookup_blocks": settings.x402_lookup_blocks,
            }
        else:
            raise ValueError(f"Wallet provider {provider_name} not supported in settings")
        return cls.create(provider_name, config)
