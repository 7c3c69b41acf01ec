"""
Deterministic sandbox rail.

Hashes reference + operator + amount into a bucket in [0, 100) and maps the
bucket to a scenario, so the same input always reproduces the same outcome
without any network call. The only side effect is a capped simulated latency.
"""

import asyncio
import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from paygate.models.enums import (
    ErrorCode,
    NormalizedStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderEnvironment,
    ProviderName,
    RefundStatus,
    RiskLevel,
)
from paygate.providers.base import (
    Headers,
    PaymentProvider,
    ProviderCapabilities,
    ProviderHealthStatus,
    ProviderPaymentRequest,
    ProviderPaymentResponse,
    ProviderRefundRequest,
    ProviderRefundResponse,
    ProviderWebhookPayload,
    as_str,
    decode_json_body,
    parse_timestamp,
    to_decimal,
)
from paygate.providers.errors import ProviderError

DEFAULT_LATENCY_MS = 350
MAX_LATENCY_MS = 3_000
DEFAULT_OPERATOR = "CARD"
SANDBOX_CHECKOUT_URL = "https://sandbox.paygate.local/pay"


class SandboxScenario(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    FRAUD = "FRAUD"
    CANCELLED = "CANCELLED"
    NETWORK_FLAP = "NETWORK_FLAP"


# Upper bucket bound (exclusive) per scenario, in order.
SCENARIO_BUCKETS = [
    (70, SandboxScenario.SUCCESS),
    (80, SandboxScenario.FAILED),
    (85, SandboxScenario.TIMEOUT),
    (90, SandboxScenario.FRAUD),
    (95, SandboxScenario.CANCELLED),
    (100, SandboxScenario.NETWORK_FLAP),
]

PAYMENT_STATUSES = {
    SandboxScenario.SUCCESS: PaymentStatus.SUCCESS,
    SandboxScenario.TIMEOUT: PaymentStatus.PENDING,
}

FAILED_STATUSES = {"FAILED", "FRAUD", "CANCELLED", "NETWORK_FLAP"}


def amount_token(amount: Optional[Decimal]) -> str:
    """Render an amount without trailing zeros: 100.00 -> "100", 10.50 -> "10.5"."""
    if amount is None:
        return "0"
    return format(Decimal(str(amount)).normalize(), "f")


def seed_bucket(seed: str) -> int:
    return int(hashlib.md5(seed.encode("utf-8")).hexdigest()[:8], 16) % 100


def scenario_for_bucket(bucket: int) -> SandboxScenario:
    for upper, scenario in SCENARIO_BUCKETS:
        if bucket < upper:
            return scenario
    raise ValueError(f"bucket out of range: {bucket}")


def sandbox_reference(seed: str) -> str:
    return "SANDBOX-" + hashlib.sha1(seed.encode("utf-8")).hexdigest()[:12]


class SandboxProvider(PaymentProvider):
    name = ProviderName.SANDBOX

    def __init__(
        self,
        latency_ms: int = DEFAULT_LATENCY_MS,
        max_latency_ms: int = MAX_LATENCY_MS,
        environment: ProviderEnvironment = ProviderEnvironment.SANDBOX,
    ):
        self.latency_ms = latency_ms
        self.max_latency_ms = max_latency_ms
        self.environment = environment

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            name=self.name,
            methods=frozenset({PaymentMethod.MOBILE_MONEY, PaymentMethod.CARD, PaymentMethod.BANK_TRANSFER}),
            supported_countries=frozenset({"CD", "CI", "SN", "CM", "NG", "KE", "ZA", "GH", "FR", "US"}),
            supported_currencies=frozenset({"CDF", "XOF", "XAF", "NGN", "KES", "GHS", "USD", "EUR"}),
            fees_percent=0.0,
            supports_partial_refunds=True,
            supports_signature_validation=False,
            risk_level=RiskLevel.LOW,
        )

    def seed_for(self, request: ProviderPaymentRequest) -> str:
        operator = str(request.metadata.get("operator") or DEFAULT_OPERATOR).upper()
        return f"{request.reference}{operator}{amount_token(request.amount)}"

    def scenario_for(self, request: ProviderPaymentRequest) -> SandboxScenario:
        forced = str(request.metadata.get("scenario") or "").upper()
        if forced in SandboxScenario.__members__:
            return SandboxScenario(forced)
        return scenario_for_bucket(seed_bucket(self.seed_for(request)))

    def _latency_seconds(self, request: ProviderPaymentRequest) -> float:
        requested = request.metadata.get("latency_ms")
        latency = self.latency_ms
        if requested is not None:
            try:
                latency = max(0, int(requested))
            except (TypeError, ValueError):
                pass
        return min(latency, self.max_latency_ms) / 1000

    async def initiate_payment(self, request: ProviderPaymentRequest) -> ProviderPaymentResponse:
        seed = self.seed_for(request)
        scenario = self.scenario_for(request)
        await asyncio.sleep(self._latency_seconds(request))
        return ProviderPaymentResponse(
            provider_reference=sandbox_reference(seed),
            status=PAYMENT_STATUSES.get(scenario, PaymentStatus.FAILED),
            redirect_url=SANDBOX_CHECKOUT_URL if request.method == PaymentMethod.CARD else None,
            raw={"sandbox": True, "scenario": scenario.value, "bucket": seed_bucket(seed), "seed": seed},
        )

    async def refund_payment(self, request: ProviderRefundRequest) -> ProviderRefundResponse:
        seed = f"{request.provider_reference}{amount_token(request.amount)}"
        scenario = scenario_for_bucket(seed_bucket(seed))
        return ProviderRefundResponse(
            status=RefundStatus.SUCCESS if scenario == SandboxScenario.SUCCESS else RefundStatus.FAILED,
            provider_refund_reference=sandbox_reference(seed).replace("SANDBOX-", "SANDBOX-RF-"),
            raw={"sandbox": True, "scenario": scenario.value},
        )

    def simulated_webhook(
        self,
        request: ProviderPaymentRequest,
        response: ProviderPaymentResponse,
    ) -> bytes:
        """Body of the webhook the sandbox would deliver for an initiated payment."""
        body = {
            "event": "sandbox.payment",
            "reference": request.reference,
            "status": response.raw.get("scenario") if isinstance(response.raw, dict) else None,
            "amount": str(request.amount),
            "currency": request.currency.upper(),
            "provider_reference": response.provider_reference,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(body).encode("utf-8")

    def validate_webhook_signature(self, headers: Headers, raw_body: bytes) -> bool:
        return True

    def parse_webhook(self, headers: Headers, raw_body: bytes) -> ProviderWebhookPayload:
        body = decode_json_body(raw_body, self.name)
        currency = as_str(body.get("currency"))
        return ProviderWebhookPayload(
            provider=self.name,
            event=as_str(body.get("event")) or "sandbox.simulation",
            reference=as_str(body.get("reference")),
            status=as_str(body.get("status")),
            amount=to_decimal(body.get("amount")),
            currency=currency.upper() if currency else None,
            provider_reference=as_str(body.get("provider_reference")),
            event_id=as_str(body.get("id")),
            occurred_at=parse_timestamp(body.get("occurred_at")),
            raw=body,
        )

    def normalize_status(self, status: Optional[str]) -> NormalizedStatus:
        if not status:
            return NormalizedStatus.PENDING
        s = status.upper()
        if s == "SUCCESS":
            return NormalizedStatus.SUCCESS
        if s in FAILED_STATUSES:
            return NormalizedStatus.FAILED
        return NormalizedStatus.PENDING

    def normalize_error(self, error: BaseException) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        return ProviderError(
            str(error) or "Sandbox simulation error",
            code=ErrorCode.UNKNOWN_ERROR,
            provider=self.name,
            retryable=False,
            raw=repr(error),
        )

    async def health_check(self) -> ProviderHealthStatus:
        return ProviderHealthStatus(
            provider=self.name,
            environment=self.environment,
            online=True,
            checked_at=datetime.now(timezone.utc),
            latency_ms=0.0,
        )
