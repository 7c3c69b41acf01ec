"""First pipeline stage: resolve the adapter and check authenticity. Never parses."""

import logging
from dataclasses import dataclass
from typing import Optional

from paygate.models.enums import ErrorCode
from paygate.providers.base import Headers, PaymentProvider
from paygate.routing.registry import ProviderRegistry
from paygate.webhooks.nonces import NonceCache, delivery_fingerprint, nonce_from

logger = logging.getLogger("paygate.webhooks")


@dataclass
class ValidationResult:
    valid: bool
    provider: Optional[PaymentProvider] = None
    error: Optional[ErrorCode] = None
    fingerprint: Optional[str] = None
    nonce_key: Optional[str] = None


class WebhookValidator:
    def __init__(self, registry: ProviderRegistry, nonces: Optional[NonceCache] = None):
        self.registry = registry
        self.nonces = nonces

    def validate(self, provider_name: str, headers: Headers, raw_body: bytes) -> ValidationResult:
        provider = self.registry.get(provider_name)
        if provider is None:
            logger.warning("Webhook for unknown provider %r rejected", provider_name)
            return ValidationResult(
                valid=False,
                error=ErrorCode.AUTHENTICATION_FAILED,
                fingerprint=delivery_fingerprint(provider_name, raw_body),
            )

        name = provider.name.value
        fingerprint = delivery_fingerprint(name, raw_body)
        if not provider.validate_webhook_signature(headers, raw_body):
            logger.warning("Webhook signature rejected for %s (%d bytes)", name, len(raw_body))
            return ValidationResult(
                valid=False, provider=provider, error=ErrorCode.SIGNATURE_INVALID, fingerprint=fingerprint
            )

        # Only authenticated deliveries reach the nonce cache.
        nonce = nonce_from(headers) if self.nonces is not None else None
        nonce_key = f"{name}:{nonce}" if nonce else None
        if nonce_key and not self.nonces.check_and_add(nonce_key):
            logger.warning("Replayed %s webhook nonce rejected (fingerprint=%s)", name, fingerprint[:12])
            return ValidationResult(
                valid=False, provider=provider, error=ErrorCode.AUTHENTICATION_FAILED, fingerprint=fingerprint
            )

        return ValidationResult(valid=True, provider=provider, fingerprint=fingerprint, nonce_key=nonce_key)

    def release(self, result: ValidationResult) -> None:
        """Forget an accepted nonce so the provider's redelivery is not taken for a replay."""
        if self.nonces is not None and result.nonce_key:
            self.nonces.discard(result.nonce_key)
