from paygate.providers.base import (
    Customer,
    NormalizedWebhookEvent,
    PaymentProvider,
    ProviderCapabilities,
    ProviderHealthStatus,
    ProviderPaymentRequest,
    ProviderPaymentResponse,
    ProviderRefundRequest,
    ProviderRefundResponse,
    ProviderWebhookPayload,
)
from paygate.providers.cinetpay import CinetPayProvider
from paygate.providers.errors import PermanentError, ProviderError, RateLimitError
from paygate.providers.flutterwave import FlutterwaveProvider
from paygate.providers.paystack import PaystackProvider
from paygate.providers.sandbox import SandboxProvider
from paygate.providers.stripe import StripeProvider

__all__ = [
    "CinetPayProvider",
    "Customer",
    "FlutterwaveProvider",
    "NormalizedWebhookEvent",
    "PaymentProvider",
    "PaystackProvider",
    "PermanentError",
    "ProviderCapabilities",
    "ProviderError",
    "ProviderHealthStatus",
    "ProviderPaymentRequest",
    "ProviderPaymentResponse",
    "ProviderRefundRequest",
    "ProviderRefundResponse",
    "ProviderWebhookPayload",
    "RateLimitError",
    "SandboxProvider",
    "StripeProvider",
]
