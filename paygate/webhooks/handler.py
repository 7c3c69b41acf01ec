"""
Webhook handler: validate -> parse -> normalize -> dedupe -> hand-off.

Provider deliveries are at-least-once and may arrive duplicated or out of
order. The dedupe claim is the only synchronization point: an event reaches
the ledger only after winning its claim, and a failed hand-off releases the
claim so the provider's redelivery can apply it.

Outcomes and the HTTP status answered to the provider:
  - unknown provider      -> 404
  - bad signature         -> 401 (parse is never called)
  - replayed nonce        -> 401
  - unusable payload      -> 200, audited for manual review
  - pending refund        -> 200, ignored
  - already applied       -> 200, no hand-off
  - stale created event   -> 200, no hand-off
  - first application     -> 200
  - store or sink failure -> 503, provider redelivers
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from paygate.audit.logger import AuditTrail
from paygate.models.enums import WebhookOutcome
from paygate.providers.base import Headers, NormalizedWebhookEvent
from paygate.providers.errors import ProviderError
from paygate.routing.registry import ProviderRegistry
from paygate.webhooks.dedupe import DedupeStore, dedupe_key, is_superseded
from paygate.webhooks.mapper import WebhookMapper
from paygate.webhooks.nonces import NonceCache
from paygate.webhooks.sink import EventSink
from paygate.webhooks.validator import WebhookValidator

logger = logging.getLogger("paygate.webhooks")


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    http_status: int
    event: Optional[NormalizedWebhookEvent] = None
    dedupe_key: Optional[str] = None

    @property
    def acknowledged(self) -> bool:
        return 200 <= self.http_status < 300


class WebhookHandler:
    def __init__(
        self,
        registry: ProviderRegistry,
        dedupe: DedupeStore,
        sink: EventSink,
        audit: Optional[AuditTrail] = None,
        nonces: Optional[NonceCache] = None,
    ):
        self.validator = WebhookValidator(registry, nonces)
        self.mapper = WebhookMapper()
        self.dedupe = dedupe
        self.sink = sink
        self.audit = audit

    async def handle(self, provider_name: str, headers: Headers, raw_body: bytes) -> WebhookResult:
        validation = self.validator.validate(provider_name, headers, raw_body)
        fingerprint = validation.fingerprint
        if validation.provider is None:
            await self._audit("webhook_unknown_provider", provider_name, None, {
                "size": len(raw_body),
                "fingerprint": fingerprint,
            })
            return WebhookResult(WebhookOutcome.UNKNOWN_PROVIDER, 404)

        provider = validation.provider
        name = provider.name.value
        if not validation.valid:
            await self._audit("webhook_rejected", name, None, {
                "error": validation.error.value if validation.error else None,
                "size": len(raw_body),
                "fingerprint": fingerprint,
            })
            return WebhookResult(WebhookOutcome.REJECTED, 401)

        try:
            event = self.mapper.map(provider, headers, raw_body)
        except Exception as e:
            if not isinstance(e, ProviderError):
                logger.exception("Unexpected error parsing %s webhook", name)
            error = provider.normalize_error(e)
            # Acknowledged so the provider does not retry a payload that will never parse.
            logger.warning("Unparseable %s webhook acknowledged for review: %s", name, error.message)
            await self._audit("webhook_parse_failed", name, None, {
                "error": error.code.value,
                "message": error.message,
                "body_sha256": hashlib.sha256(raw_body).hexdigest(),
                "size": len(raw_body),
                "fingerprint": fingerprint,
            }, needs_review=True)
            return WebhookResult(WebhookOutcome.PARSE_FAILED, 200)

        if event is None:
            logger.info("Ignoring %s webhook with no state transition", name)
            await self._audit("webhook_ignored", name, None, {
                "reason": "refund still pending",
                "fingerprint": fingerprint,
            })
            return WebhookResult(WebhookOutcome.IGNORED, 200)

        key = dedupe_key(event)
        try:
            superseded = await is_superseded(self.dedupe, event)
            claimed = not superseded and await self.dedupe.claim(key, event)
        except Exception:
            logger.exception("Dedupe store unavailable for %s", key)
            self.validator.release(validation)
            return WebhookResult(WebhookOutcome.FAILED, 503, event, key)

        if superseded:
            logger.info("Late %s for %s after a terminal state, acknowledged", event.event_type.value, key)
            await self._audit("webhook_superseded", name, event.reference, {
                "dedupe_key": key,
                "event_id": event.event_id,
                "fingerprint": fingerprint,
            })
            return WebhookResult(WebhookOutcome.DUPLICATE, 200, event, key)

        if not claimed:
            logger.info("Duplicate webhook %s (event_id=%s) acknowledged", key, event.event_id or "-")
            await self._audit("webhook_duplicate", name, event.reference, {
                "dedupe_key": key,
                "event_id": event.event_id,
                "fingerprint": fingerprint,
            })
            return WebhookResult(WebhookOutcome.DUPLICATE, 200, event, key)

        try:
            await self.sink.publish(event)
        except Exception:
            logger.exception("Hand-off failed for %s, releasing claim", key)
            await self.dedupe.release(key)
            self.validator.release(validation)
            await self._audit("webhook_handoff_failed", name, event.reference, {
                "dedupe_key": key,
                "fingerprint": fingerprint,
            })
            return WebhookResult(WebhookOutcome.FAILED, 503, event, key)

        logger.info(
            "Applied %s %s -> %s %s",
            name,
            event.reference,
            event.event_type.value,
            event.status.value,
        )
        await self._audit("webhook_applied", name, event.reference, {
            "dedupe_key": key,
            "event_type": event.event_type.value,
            "status": event.status.value,
            "amount": event.amount,
            "currency": event.currency,
            "event_id": event.event_id,
            "fingerprint": fingerprint,
        })
        return WebhookResult(WebhookOutcome.APPLIED, 200, event, key)

    async def _audit(
        self,
        action: str,
        provider: Optional[str],
        reference: Optional[str],
        details: dict,
        needs_review: bool = False,
    ) -> None:
        if self.audit is not None:
            await self.audit.record(action, provider, reference, details, needs_review)
