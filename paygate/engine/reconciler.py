"""
Batch reconciliation.

Pulls settlement records from a provider for a date range and pushes each
one through the same normalize -> dedupe -> hand-off path as a webhook, so
a payment whose webhook never arrived still reaches the ledger exactly once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from paygate.audit.logger import AuditTrail
from paygate.engine.retry import with_retry
from paygate.models.enums import ProviderName
from paygate.providers.errors import ProviderError
from paygate.routing.registry import ProviderRegistry
from paygate.webhooks.dedupe import DedupeStore, dedupe_key, is_superseded
from paygate.webhooks.mapper import WebhookMapper
from paygate.webhooks.sink import EventSink

logger = logging.getLogger("paygate.reconciler")


@dataclass
class ReconciliationSummary:
    provider: ProviderName
    start: datetime
    end: datetime
    fetched: int = 0
    applied: int = 0
    duplicates: int = 0
    ignored: int = 0
    failed: int = 0
    applied_references: list[str] = field(default_factory=list)


class Reconciler:
    def __init__(
        self,
        registry: ProviderRegistry,
        dedupe: DedupeStore,
        sink: EventSink,
        audit: Optional[AuditTrail] = None,
        max_retries: int = 3,
    ):
        self.registry = registry
        self.mapper = WebhookMapper()
        self.dedupe = dedupe
        self.sink = sink
        self.audit = audit
        self.max_retries = max_retries

    async def run(self, provider_name: ProviderName, start: datetime, end: datetime) -> ReconciliationSummary:
        """
        Reconcile one provider over [start, end].

        Raises:
            ProviderError: UNSUPPORTED_OPERATION for rails without a reconciliation
                API, or the provider's error once retries are exhausted.
        """
        provider = self.registry.require(provider_name)
        payloads = await with_retry(
            provider.reconcile, start, end, max_retries=self.max_retries, normalize_error=provider.normalize_error
        )
        summary = ReconciliationSummary(provider=provider.name, start=start, end=end, fetched=len(payloads))

        for payload in payloads:
            try:
                event = self.mapper.normalize(provider, payload)
            except ProviderError as e:
                logger.warning("Skipping unusable %s record: %s", provider.name.value, e.message)
                summary.failed += 1
                continue
            if event is None:
                summary.ignored += 1
                continue

            key = dedupe_key(event)
            if await is_superseded(self.dedupe, event) or not await self.dedupe.claim(key, event):
                summary.duplicates += 1
                continue
            try:
                await self.sink.publish(event)
            except Exception:
                logger.exception("Hand-off failed for reconciled %s, releasing claim", key)
                await self.dedupe.release(key)
                summary.failed += 1
                continue
            summary.applied += 1
            summary.applied_references.append(event.reference)

        logger.info(
            "Reconciled %s %s..%s: fetched=%d applied=%d duplicates=%d ignored=%d failed=%d",
            provider.name.value,
            start.isoformat(),
            end.isoformat(),
            summary.fetched,
            summary.applied,
            summary.duplicates,
            summary.ignored,
            summary.failed,
        )
        if self.audit is not None:
            await self.audit.record("reconciliation_completed", provider.name.value, None, {
                "start": start.isoformat(),
                "end": end.isoformat(),
                "fetched": summary.fetched,
                "applied": summary.applied,
                "duplicates": summary.duplicates,
                "ignored": summary.ignored,
                "failed": summary.failed,
            })
        return summary
