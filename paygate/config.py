"""Application configuration via environment variables."""

from typing import Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings

from paygate.models.enums import ProviderEnvironment, ProviderName


class ProviderConfig(BaseModel):
    """Declarative routing entry for one provider."""

    name: ProviderName
    environment: ProviderEnvironment
    enabled: bool = True
    weight: float = 1.0  # > 1 favoured, < 1 penalised
    priority: int = 100  # lower wins under the "priority" strategy


DEFAULT_PROVIDER_CONFIGS = [
    ProviderConfig(name=ProviderName.CINETPAY, environment=ProviderEnvironment.PRODUCTION, weight=1.1),
    ProviderConfig(name=ProviderName.FLUTTERWAVE, environment=ProviderEnvironment.PRODUCTION, weight=1.0),
    ProviderConfig(name=ProviderName.PAYSTACK, environment=ProviderEnvironment.PRODUCTION, weight=1.0),
    ProviderConfig(name=ProviderName.STRIPE, environment=ProviderEnvironment.PRODUCTION, weight=1.2),
    ProviderConfig(name=ProviderName.SANDBOX, environment=ProviderEnvironment.SANDBOX, weight=0.1),
]


class Settings(BaseSettings):
    environment: ProviderEnvironment = ProviderEnvironment.SANDBOX
    database_url: str = "sqlite+aiosqlite:///./paygate.db"
    log_level: str = "INFO"

    # Outbound webhook_url is always {public_base_url}/webhooks/{provider}
    public_base_url: str = "http://localhost:8000"

    # Provider credentials
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    paystack_secret_key: Optional[str] = None  # also signs Paystack webhooks
    flutterwave_secret_key: Optional[str] = None
    flutterwave_webhook_hash: Optional[str] = None
    cinetpay_api_key: Optional[str] = None
    cinetpay_site_id: Optional[str] = None
    cinetpay_webhook_secret: Optional[str] = None

    stripe_base_url: str = "https://api.stripe.com/v1"
    paystack_base_url: str = "https://api.paystack.co"
    flutterwave_base_url: str = "https://api.flutterwave.com/v3"
    cinetpay_base_url: str = "https://api-checkout.cinetpay.com/v2"

    # Outbound call policy
    http_timeout_seconds: float = 15.0
    max_retries: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0

    # Webhook policy
    stripe_signature_tolerance_seconds: int = 300
    cinetpay_signature_tolerance_seconds: int = 300  # 0 disables the window
    allow_unsigned_webhooks: Optional[bool] = None
    event_queue_size: int = 10_000
    ledger_max_attempts: int = 3
    ledger_retry_delay: float = 0.5
    webhook_nonce_ttl_seconds: int = 600
    webhook_nonce_cache_size: int = 100_000

    # Sandbox simulator
    sandbox_latency_ms: int = 350
    sandbox_max_latency_ms: int = 3_000

    # Routing
    routing_strategy: str = "weighted"  # "weighted" or "priority"
    provider_configs: list[ProviderConfig] = DEFAULT_PROVIDER_CONFIGS

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def unsigned_webhooks_allowed(self) -> bool:
        """Whether a provider with no webhook secret configured is trusted."""
        if self.allow_unsigned_webhooks is not None:
            return self.allow_unsigned_webhooks
        return self.environment != ProviderEnvironment.PRODUCTION

    def webhook_url(self, provider: ProviderName) -> str:
        return f"{self.public_base_url.rstrip('/')}/webhooks/{provider.value.lower()}"


settings = Settings()
