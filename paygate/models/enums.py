"""Enumerations for the payment gateway domain model."""

from enum import Enum
from typing import Optional


class ProviderName(str, Enum):
    """External payment rails the gateway can drive."""

    STRIPE = "STRIPE"
    PAYSTACK = "PAYSTACK"
    FLUTTERWAVE = "FLUTTERWAVE"
    CINETPAY = "CINETPAY"
    SANDBOX = "SANDBOX"

    @classmethod
    def parse(cls, value: object) -> Optional["ProviderName"]:
        """Case-insensitive lookup; None for anything unknown."""
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class ProviderEnvironment(str, Enum):
    SANDBOX = "SANDBOX"
    STAGING = "STAGING"
    PRODUCTION = "PRODUCTION"


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "MOBILE_MONEY"
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    USSD = "USSD"
    QR = "QR"
    WALLET = "WALLET"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PaymentStatus(str, Enum):
    """Outcome of a payment initiation call."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REQUIRES_ACTION = "REQUIRES_ACTION"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class NormalizedStatus(str, Enum):
    """The only statuses that ever reach the ledger."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class NormalizedEventType(str, Enum):
    PAYMENT_CREATED = "PAYMENT_CREATED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_SUCCESS = "REFUND_SUCCESS"
    REFUND_FAILED = "REFUND_FAILED"


class ActionType(str, Enum):
    USSD = "USSD"
    QR = "QR"
    DEEPLINK = "DEEPLINK"


class ErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""

    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    PARSE_FAILED = "PARSE_FAILED"
    NO_PROVIDER_AVAILABLE = "NO_PROVIDER_AVAILABLE"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNSUPPORTED_METHOD = "UNSUPPORTED_METHOD"
    UNSUPPORTED_CURRENCY = "UNSUPPORTED_CURRENCY"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    FRAUD_SUSPECTED = "FRAUD_SUSPECTED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class WebhookOutcome(str, Enum):
    """Terminal state of one inbound webhook delivery."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"
    PARSE_FAILED = "parse_failed"
    UNKNOWN_PROVIDER = "unknown_provider"
    FAILED = "failed"
