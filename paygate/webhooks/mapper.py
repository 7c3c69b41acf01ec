"""
Second pipeline stage: provider-shaped payload to NormalizedWebhookEvent.

Status and amount normalization are delegated to the adapter, so this module
holds no provider-specific knowledge beyond the event-type rules.
"""

from datetime import datetime, timezone
from typing import Optional

from paygate.models.enums import ErrorCode, NormalizedEventType, NormalizedStatus
from paygate.providers.base import Headers, NormalizedWebhookEvent, PaymentProvider, ProviderWebhookPayload
from paygate.providers.errors import PermanentError

PAYMENT_EVENT_TYPES = {
    NormalizedStatus.SUCCESS: NormalizedEventType.PAYMENT_SUCCESS,
    NormalizedStatus.FAILED: NormalizedEventType.PAYMENT_FAILED,
    NormalizedStatus.PENDING: NormalizedEventType.PAYMENT_CREATED,
}

REFUND_EVENT_TYPES = {
    NormalizedStatus.SUCCESS: NormalizedEventType.REFUND_SUCCESS,
    NormalizedStatus.FAILED: NormalizedEventType.REFUND_FAILED,
}


class WebhookMapper:
    def map(
        self,
        provider: PaymentProvider,
        headers: Headers,
        raw_body: bytes,
        received_at: Optional[datetime] = None,
    ) -> Optional[NormalizedWebhookEvent]:
        """
        Parse and normalize one authenticated webhook.

        Returns None for events that carry no state transition (a refund
        still in progress).

        Raises:
            ProviderError: PARSE_FAILED for unusable bodies or a missing reference.
        """
        payload = provider.parse_webhook(headers, raw_body)
        return self.normalize(provider, payload, received_at)

    def normalize(
        self,
        provider: PaymentProvider,
        payload: ProviderWebhookPayload,
        received_at: Optional[datetime] = None,
    ) -> Optional[NormalizedWebhookEvent]:
        if not payload.reference:
            raise PermanentError(
                f"{provider.name.value} webhook has no reference",
                code=ErrorCode.PARSE_FAILED,
                provider=provider.name,
            )

        status = provider.normalize_status(payload.status)
        if provider.is_refund_event(payload):
            event_type = REFUND_EVENT_TYPES.get(status)
            if event_type is None:
                return None
        else:
            event_type = PAYMENT_EVENT_TYPES[status]

        return NormalizedWebhookEvent(
            provider=provider.name,
            event_type=event_type,
            status=status,
            reference=payload.reference,
            amount=provider.to_major_units(payload.amount, payload.currency),
            currency=payload.currency,
            received_at=received_at or datetime.now(timezone.utc),
            provider_reference=payload.provider_reference,
            event_id=payload.event_id,
            occurred_at=payload.occurred_at,
            raw=payload.raw,
        )
