"""Provider registry: the one place adapters are constructed and looked up."""

import logging
from typing import Iterator, Optional, Union

import httpx

from paygate.config import Settings
from paygate.models.enums import ErrorCode, ProviderName
from paygate.providers.base import PaymentProvider
from paygate.providers.cinetpay import CinetPayProvider
from paygate.providers.errors import PermanentError
from paygate.providers.flutterwave import FlutterwaveProvider
from paygate.providers.paystack import PaystackProvider
from paygate.providers.sandbox import SandboxProvider
from paygate.providers.stripe import StripeProvider

logger = logging.getLogger("paygate.registry")


class ProviderRegistry:
    """Maps ProviderName to a configured adapter instance."""

    def __init__(self, providers: Optional[list[PaymentProvider]] = None):
        self._providers: dict[ProviderName, PaymentProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: PaymentProvider) -> None:
        if provider.name in self._providers:
            logger.info("Replacing registered provider %s", provider.name.value)
        self._providers[provider.name] = provider

    def get(self, name: Union[str, ProviderName, None]) -> Optional[PaymentProvider]:
        """Case-insensitive lookup; None for unknown or unregistered names."""
        key = name if isinstance(name, ProviderName) else ProviderName.parse(name)
        if key is None:
            return None
        return self._providers.get(key)

    def require(self, name: Union[str, ProviderName]) -> PaymentProvider:
        provider = self.get(name)
        if provider is None:
            raise PermanentError(
                f"Provider {name} is not registered",
                code=ErrorCode.NO_PROVIDER_AVAILABLE,
                status_code=404,
            )
        return provider

    def names(self) -> list[ProviderName]:
        return list(self._providers)

    def __iter__(self) -> Iterator[PaymentProvider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, name: object) -> bool:
        return self.get(name) is not None  # type: ignore[arg-type]


def build_registry(settings: Settings, http_client: httpx.AsyncClient) -> ProviderRegistry:
    """Construct all five adapters with their secrets injected from settings."""
    allow_unsigned = settings.unsigned_webhooks_allowed
    timeout = settings.http_timeout_seconds
    rail_environment = settings.environment
    providers: list[PaymentProvider] = [
        StripeProvider(
            http_client,
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            base_url=settings.stripe_base_url,
            environment=rail_environment,
            timeout=timeout,
            tolerance_seconds=settings.stripe_signature_tolerance_seconds,
            allow_unsigned=allow_unsigned,
        ),
        PaystackProvider(
            http_client,
            secret_key=settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            environment=rail_environment,
            timeout=timeout,
            allow_unsigned=allow_unsigned,
        ),
        FlutterwaveProvider(
            http_client,
            secret_key=settings.flutterwave_secret_key,
            webhook_hash=settings.flutterwave_webhook_hash,
            base_url=settings.flutterwave_base_url,
            environment=rail_environment,
            timeout=timeout,
            allow_unsigned=allow_unsigned,
        ),
        CinetPayProvider(
            http_client,
            api_key=settings.cinetpay_api_key,
            site_id=settings.cinetpay_site_id,
            webhook_secret=settings.cinetpay_webhook_secret,
            base_url=settings.cinetpay_base_url,
            environment=rail_environment,
            timeout=timeout,
            tolerance_seconds=settings.cinetpay_signature_tolerance_seconds,
            allow_unsigned=allow_unsigned,
        ),
        SandboxProvider(
            latency_ms=settings.sandbox_latency_ms,
            max_latency_ms=settings.sandbox_max_latency_ms,
        ),
    ]
    registry = ProviderRegistry(providers)
    logger.info(
        "Registered providers: %s (unsigned webhooks %s)",
        ", ".join(p.value for p in registry.names()),
        "allowed" if allow_unsigned else "rejected",
    )
    return registry
