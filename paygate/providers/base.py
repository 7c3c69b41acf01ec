"""
Abstract payment provider contract.

Every external rail (card processors, mobile-money aggregators, the sandbox
simulator) implements this interface. The router and the webhook pipeline
only ever depend on PaymentProvider, never on a concrete adapter.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from paygate.models.enums import (
    ActionType,
    ErrorCode,
    NormalizedEventType,
    NormalizedStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderEnvironment,
    ProviderName,
    RefundStatus,
    RiskLevel,
)
from paygate.providers.errors import PermanentError, ProviderError

Headers = Mapping[str, Any]

# Currencies whose smallest unit is the major unit (no cents).
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def to_decimal(value: Any) -> Optional[Decimal]:
    """Lenient numeric coercion for provider payloads; None when not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def minor_to_major(amount: Any, currency: Optional[str]) -> Optional[Decimal]:
    """
    Convert a minor-unit amount (cents, kobo) to major units.

    Exact decimal division, quantized to two places with ROUND_HALF_UP.
    Zero-decimal currencies pass through unchanged.
    """
    value = to_decimal(amount)
    if value is None:
        return None
    if currency and currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return value
    return (value / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def major_to_minor(amount: Decimal, currency: str) -> int:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def refund_currency(request: "ProviderRefundRequest", provider: ProviderName) -> str:
    """Currency for a partial refund amount; guessing one would misscale minor units."""
    if not request.currency:
        raise PermanentError(
            f"{provider.value} partial refund requires a currency",
            code=ErrorCode.INVALID_REQUEST,
            provider=provider,
        )
    return request.currency


def decode_json_body(raw_body: bytes, provider: ProviderName) -> dict[str, Any]:
    """Decode a webhook body; anything but a JSON object is a parse failure."""
    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise PermanentError(
            f"Malformed {provider.value} webhook body: {e}",
            code=ErrorCode.PARSE_FAILED,
            provider=provider,
        ) from e
    if not isinstance(body, dict):
        raise PermanentError(
            f"{provider.value} webhook body is not a JSON object",
            code=ErrorCode.PARSE_FAILED,
            provider=provider,
        )
    return body


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string or epoch seconds to an aware datetime; None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, ValueError, OSError):
            return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static description of a rail, queried before every routing decision."""

    name: ProviderName
    methods: frozenset[PaymentMethod]
    supported_countries: frozenset[str]
    supported_currencies: frozenset[str]
    primary_regions: frozenset[str] = frozenset()
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    fees_percent: Optional[float] = None
    supports_webhooks: bool = True
    supports_refunds: bool = True
    supports_partial_refunds: bool = False
    supports_reconciliation: bool = False
    supports_signature_validation: bool = True
    supports_idempotency: bool = True
    pci_compliant: bool = False
    gdpr_compliant: bool = False
    risk_level: RiskLevel = RiskLevel.MEDIUM

    def covers(
        self,
        currency: str,
        method: PaymentMethod,
        country: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> bool:
        """Whether this rail can carry the given payment at all."""
        if currency.upper() not in self.supported_currencies:
            return False
        if method not in self.methods:
            return False
        if country and country.upper() not in self.supported_countries:
            return False
        if amount is not None:
            if self.min_amount is not None and amount < self.min_amount:
                return False
            if self.max_amount is not None and amount > self.max_amount:
                return False
        return True


@dataclass(frozen=True)
class Customer:
    """Soft-KYC customer fields forwarded to the rail."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class ProviderPaymentRequest:
    """
    One payment attempt. Created once by the payment core, never mutated.

    reference is the internal idempotency key; webhook_url is always the
    platform's canonical endpoint for the chosen provider.
    """

    reference: str
    amount: Decimal  # major units
    currency: str
    method: PaymentMethod
    webhook_url: str
    customer: Customer = field(default_factory=Customer)
    description: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)
    callback_url: Optional[str] = None
    idempotency_key: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def outbound_idempotency_key(self) -> str:
        return self.idempotency_key or self.reference


@dataclass(frozen=True)
class ActionPayload:
    type: ActionType
    value: str


@dataclass(frozen=True)
class ProviderPaymentResponse:
    provider_reference: str
    status: PaymentStatus
    redirect_url: Optional[str] = None
    action_payload: Optional[ActionPayload] = None
    fee: Optional[Decimal] = None
    raw: Any = None  # retained for audit


@dataclass(frozen=True)
class ProviderRefundRequest:
    provider_reference: str
    amount: Optional[Decimal] = None  # None means full refund
    currency: Optional[str] = None
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class ProviderRefundResponse:
    status: RefundStatus
    provider_refund_reference: Optional[str] = None
    raw: Any = None


@dataclass(frozen=True)
class ProviderWebhookPayload:
    """Provider-agnostic parsed webhook. status and amount are still native."""

    provider: ProviderName
    event: str
    reference: Optional[str]
    status: Optional[str]
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    provider_reference: Optional[str] = None
    event_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    raw: Any = None


@dataclass(frozen=True)
class NormalizedWebhookEvent:
    """
    Canonical event handed to the ledger.

    amount is always in major units and status is one of exactly three
    values. raw is the provider body exactly as received.
    """

    provider: ProviderName
    event_type: NormalizedEventType
    status: NormalizedStatus
    reference: str
    amount: Optional[Decimal]
    currency: Optional[str]
    received_at: datetime
    provider_reference: Optional[str] = None
    event_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    raw: Any = None


@dataclass(frozen=True)
class ProviderHealthStatus:
    provider: ProviderName
    environment: ProviderEnvironment
    online: bool
    checked_at: datetime
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class PaymentProvider(ABC):
    """Abstract base class for payment providers."""

    name: ProviderName
    environment: ProviderEnvironment = ProviderEnvironment.PRODUCTION

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        """Static capability table. Pure, no I/O."""
        ...

    @abstractmethod
    async def initiate_payment(self, request: ProviderPaymentRequest) -> ProviderPaymentResponse:
        """
        Submit a payment to the rail.

        Must be safe to retry with the same reference / idempotency key.

        Raises:
            ProviderError: retryable on transport failure, permanent otherwise.
        """
        ...

    @abstractmethod
    async def refund_payment(self, request: ProviderRefundRequest) -> ProviderRefundResponse:
        """Refund a captured payment. An omitted amount means a full refund."""
        ...

    @abstractmethod
    def validate_webhook_signature(self, headers: Headers, raw_body: bytes) -> bool:
        """
        Cryptographic authenticity check for one inbound webhook.

        Must stay side-effect free and fast: no I/O, no logging, no state.
        """
        ...

    @abstractmethod
    def parse_webhook(self, headers: Headers, raw_body: bytes) -> ProviderWebhookPayload:
        """
        Parse an already-authenticated webhook.

        Never re-validates. Missing optional fields become None.

        Raises:
            ProviderError: with code PARSE_FAILED when the body is unusable.
        """
        ...

    @abstractmethod
    def normalize_status(self, status: Optional[str]) -> NormalizedStatus:
        """Total mapping from the rail's status vocabulary to PENDING/SUCCESS/FAILED."""
        ...

    def to_major_units(self, amount: Optional[Decimal], currency: Optional[str]) -> Optional[Decimal]:
        """Convert a parsed webhook amount to major units. Default: already major."""
        return amount

    def is_refund_event(self, payload: ProviderWebhookPayload) -> bool:
        return "refund" in (payload.event or "").lower()

    def normalize_error(self, error: BaseException) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        return ProviderError(
            str(error) or f"{self.name.value} unknown error",
            code=ErrorCode.UNKNOWN_ERROR,
            provider=self.name,
            retryable=True,
            raw=repr(error),
        )

    async def health_check(self) -> ProviderHealthStatus:
        raise PermanentError(
            f"{self.name.value} does not expose a health check",
            code=ErrorCode.UNSUPPORTED_OPERATION,
            provider=self.name,
        )

    async def reconcile(self, start: datetime, end: datetime) -> list[ProviderWebhookPayload]:
        """Pull settlement confirmations for a date range (optional)."""
        raise PermanentError(
            f"{self.name.value} does not support reconciliation",
            code=ErrorCode.UNSUPPORTED_OPERATION,
            provider=self.name,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name.value} {self.environment.value}>"
