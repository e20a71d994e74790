"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated (e.g. http://localhost:3000,https://pocketlegal.app). Empty = default list in code.
    cors_origins: str = ""
    # Header carrying the connected wallet address (set by the mini-app frontend)
    wallet_address_header: str = "X-Wallet-Address"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # Docker-compose variables (not used by app directly)
    postgres_db: str | None = None
    postgres_user: str | None = None
    postgres_password: str | None = None

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # WALLET / PAYMENTS (USDC on Base, x402)
    # ===========================================
    wallet_provider: str = "x402"
    base_rpc_url: str = "https://mainnet.base.org"
    usdc_contract_address: str = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    # x402 facilitator that signs and relays the USDC transfer for the connected wallet
    x402_facilitator_url: str = "https://x402.org/facilitator"
    x402_api_key: str = ""
    wallet_request_timeout: float = 15.0
    # settle waits for the on-chain transfer; kept below payment_submit_timeout_seconds
    x402_settle_timeout: float = 55.0
    # AuthorizationUsed lookback when a settle response was lost (~2s blocks on Base)
    x402_lookup_blocks: int = 50_000
    # Recipient of all purchases. Empty = payments disabled (POST /purchases answers 503).
    payment_recipient_address: str = ""
    payment_currency: str = "USDC"
    # Bounded wait for the submission call. On timeout the transaction stays pending for reconciliation.
    payment_submit_timeout_seconds: float = 60.0
    # On-chain verification after submission; confirmations required before completing a purchase.
    payment_verify_enabled: bool = True
    payment_min_confirmations: int = 1

    # ===========================================
    # PURCHASE FLOW
    # ===========================================
    purchase_lock_ttl_seconds: int = 120
    # Optional access expiry for new grants (0 = lifetime access)
    access_grant_ttl_days: int = 0

    # ===========================================
    # RECONCILIATION
    # ===========================================
    reconcile_pending_after_minutes: int = 5
    reconcile_abandon_after_hours: int = 24
    reconcile_batch_size: int = 100

    # ===========================================
    # DRAFT GENERATION (OpenAI-compatible API, OpenRouter by default)
    # ===========================================
    openai_api_key: str = ""
    openai_base_url: str = "https://openrouter.ai/api/v1"
    draft_model: str = "google/gemini-2.0-flash-001"
    draft_max_tokens: int = 1500
    draft_temperature: float = 0.3
    content_max_tokens: int = 1000
    content_temperature: float = 0.7
    openai_request_timeout: float = 60.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("payment_recipient_address", "usdc_contract_address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        """Addresses are compared lower-cased everywhere."""
        return v.strip().lower()

    @field_validator("payment_min_confirmations")
    @classmethod
    def validate_confirmations(cls, v: int) -> int:
        if v < 0:
            raise ValueError("payment_min_confirmations must be >= 0")
        return v

    @property
    def payments_enabled(self) -> bool:
        return bool(self.payment_recipient_address)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
