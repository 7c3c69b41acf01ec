from paygate.models.enums import (
    ErrorCode,
    NormalizedEventType,
    NormalizedStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderEnvironment,
    ProviderName,
    RefundStatus,
    WebhookOutcome,
)
from paygate.models.records import AuditLog, Base, ProcessedWebhook

__all__ = [
    "Base",
    "AuditLog",
    "ProcessedWebhook",
    "ErrorCode",
    "NormalizedEventType",
    "NormalizedStatus",
    "PaymentMethod",
    "PaymentStatus",
    "ProviderEnvironment",
    "ProviderName",
    "RefundStatus",
    "WebhookOutcome",
]
