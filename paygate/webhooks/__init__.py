from paygate.webhooks.dedupe import DedupeStore, MemoryDedupeStore, SqlDedupeStore, dedupe_key, is_superseded
from paygate.webhooks.handler import WebhookHandler, WebhookResult
from paygate.webhooks.mapper import WebhookMapper
from paygate.webhooks.nonces import NonceCache, delivery_fingerprint
from paygate.webhooks.sink import CallbackEventSink, EventSink, QueueEventSink
from paygate.webhooks.validator import ValidationResult, WebhookValidator

__all__ = [
    "CallbackEventSink",
    "DedupeStore",
    "EventSink",
    "MemoryDedupeStore",
    "NonceCache",
    "QueueEventSink",
    "SqlDedupeStore",
    "ValidationResult",
    "WebhookHandler",
    "WebhookMapper",
    "WebhookResult",
    "WebhookValidator",
    "dedupe_key",
    "delivery_fingerprint",
    "is_superseded",
]
