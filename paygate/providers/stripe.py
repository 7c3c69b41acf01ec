"""Stripe adapter: global cards and bank debits, amounts in minor units."""

import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx

from paygate.models.enums import (
    ActionType,
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
    ActionPayload,
    Headers,
    ProviderCapabilities,
    ProviderPaymentRequest,
    ProviderPaymentResponse,
    ProviderRefundRequest,
    ProviderRefundResponse,
    ProviderWebhookPayload,
    as_dict,
    as_str,
    decode_json_body,
    major_to_minor,
    minor_to_major,
    parse_timestamp,
    refund_currency,
    to_decimal,
)
from paygate.providers.http import HttpPaymentProvider
from paygate.providers.signatures import header, hmac_hex, is_fresh, secure_compare

SUCCESS_STATUSES = {"succeeded", "paid"}
FAILED_STATUSES = {"failed", "canceled"}

# Event types whose object status lags behind the event itself.
FORCED_STATUSES = {
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "canceled",
}

RECONCILED_EVENT_TYPES = [
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
    "charge.refunded",
]


def parse_signature_header(value: str) -> tuple[Optional[int], list[str]]:
    """Split "t=...,v1=...,v1=..." into the timestamp and every v1 signature."""
    timestamp = None
    signatures = []
    for part in value.split(","):
        key, _, item = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(item)
            except ValueError:
                return None, []
        elif key == "v1" and item:
            signatures.append(item)
    return timestamp, signatures


class StripeProvider(HttpPaymentProvider):
    name = ProviderName.STRIPE
    health_path = "/balance"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: str = "https://api.stripe.com/v1",
        environment: ProviderEnvironment = ProviderEnvironment.PRODUCTION,
        timeout: float = 15.0,
        tolerance_seconds: int = 300,
        allow_unsigned: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(http_client, base_url, environment, timeout, allow_unsigned)
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.clock = clock

    def auth_headers(self) -> dict[str, str]:
        if not self.secret_key:
            return {}
        return {"Authorization": f"Bearer {self.secret_key}"}

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            name=self.name,
            methods=frozenset({PaymentMethod.CARD, PaymentMethod.BANK_TRANSFER}),
            supported_countries=frozenset({
                "US", "CA", "FR", "DE", "GB", "NL", "BE", "ES", "IT", "PT", "AE", "SG", "JP",
            }),
            supported_currencies=frozenset({"USD", "EUR", "GBP", "CAD", "JPY"}),
            primary_regions=frozenset({"NA", "EU"}),
            min_amount=Decimal("0.50"),
            fees_percent=2.9,
            supports_partial_refunds=True,
            supports_reconciliation=True,
            pci_compliant=True,
            gdpr_compliant=True,
            risk_level=RiskLevel.LOW,
        )

    # Outbound

    async def initiate_payment(self, request: ProviderPaymentRequest) -> ProviderPaymentResponse:
        form = {
            "amount": str(major_to_minor(request.amount, request.currency)),
            "currency": request.currency.lower(),
            "metadata[reference]": request.reference,
            "automatic_payment_methods[enabled]": "true",
        }
        if request.description:
            form["description"] = request.description
        if request.customer.email:
            form["receipt_email"] = request.customer.email
        if request.callback_url:
            form["return_url"] = request.callback_url
        for key, value in request.metadata.items():
            if key != "reference":
                form[f"metadata[{key}]"] = str(value)

        body = await self._request(
            "POST",
            "/payment_intents",
            data=form,
            headers={"Idempotency-Key": request.outbound_idempotency_key},
            reference=request.reference,
        )

        intent_status = str(body.get("status") or "")
        next_action = as_dict(body.get("next_action"))
        redirect_url = as_str(as_dict(next_action.get("redirect_to_url")).get("url"))
        if intent_status == "succeeded":
            status = PaymentStatus.SUCCESS
        elif intent_status == "canceled":
            status = PaymentStatus.FAILED
        elif intent_status == "requires_action" or redirect_url:
            status = PaymentStatus.REQUIRES_ACTION
        else:
            status = PaymentStatus.PENDING

        action = None
        client_secret = as_str(body.get("client_secret"))
        if client_secret and not redirect_url:
            action = ActionPayload(type=ActionType.DEEPLINK, value=client_secret)

        return ProviderPaymentResponse(
            provider_reference=str(body.get("id")),
            status=status,
            redirect_url=redirect_url,
            action_payload=action,
            raw=body,
        )

    async def refund_payment(self, request: ProviderRefundRequest) -> ProviderRefundResponse:
        form = {"payment_intent": request.provider_reference}
        if request.amount is not None:
            form["amount"] = str(major_to_minor(request.amount, refund_currency(request, self.name)))
        if request.reason:
            form["metadata[reason]"] = request.reason
        headers = {"Idempotency-Key": request.idempotency_key} if request.idempotency_key else None

        body = await self._request("POST", "/refunds", data=form, headers=headers)
        refund_status = str(body.get("status") or "").lower()
        if refund_status == "succeeded":
            status = RefundStatus.SUCCESS
        elif refund_status in FAILED_STATUSES:
            status = RefundStatus.FAILED
        else:
            status = RefundStatus.PENDING
        return ProviderRefundResponse(
            status=status,
            provider_refund_reference=as_str(body.get("id")),
            raw=body,
        )

    async def reconcile(self, start: datetime, end: datetime) -> list[ProviderWebhookPayload]:
        payloads = []
        params: dict[str, Any] = {
            "created[gte]": int(start.timestamp()),
            "created[lte]": int(end.timestamp()),
            "limit": 100,
            "types[]": RECONCILED_EVENT_TYPES,
        }
        while True:
            body = await self._request("GET", "/events", params=params)
            events = [e for e in body.get("data") or [] if isinstance(e, dict)]
            payloads.extend(self._payload_from_event(e) for e in events)
            if not body.get("has_more") or not events:
                return payloads
            params["starting_after"] = events[-1].get("id")

    # Webhooks

    def validate_webhook_signature(self, headers: Headers, raw_body: bytes) -> bool:
        if not self.webhook_secret:
            return self.allow_unsigned

        signature_header = header(headers, "stripe-signature")
        if not signature_header:
            return False
        timestamp, signatures = parse_signature_header(signature_header)
        if timestamp is None or not signatures:
            return False
        if not is_fresh(timestamp, self.clock(), self.tolerance_seconds):
            return False

        expected = hmac_hex(self.webhook_secret, f"{timestamp}.".encode("utf-8") + raw_body)
        # Evaluate every candidate so timing does not reveal which one matched.
        matches = [secure_compare(expected, candidate) for candidate in signatures]
        return any(matches)

    def parse_webhook(self, headers: Headers, raw_body: bytes) -> ProviderWebhookPayload:
        return self._payload_from_event(decode_json_body(raw_body, self.name))

    def _payload_from_event(self, body: dict[str, Any]) -> ProviderWebhookPayload:
        obj = as_dict(as_dict(body.get("data")).get("object"))
        event = as_str(body.get("type")) or "stripe.unknown"

        status = FORCED_STATUSES.get(event) or as_str(obj.get("status"))
        amount = obj.get("amount_received")
        if amount in (None, 0):
            amount = obj.get("amount")
        currency = as_str(obj.get("currency"))

        return ProviderWebhookPayload(
            provider=self.name,
            event=event,
            reference=as_str(as_dict(obj.get("metadata")).get("reference")) or as_str(obj.get("id")),
            status=status,
            amount=to_decimal(amount),
            currency=currency.upper() if currency else None,
            provider_reference=as_str(obj.get("payment_intent")) or as_str(obj.get("id")),
            event_id=as_str(body.get("id")),
            occurred_at=parse_timestamp(body.get("created")),
            raw=body,
        )

    def normalize_status(self, status: Optional[str]) -> NormalizedStatus:
        if not status:
            return NormalizedStatus.PENDING
        s = status.lower()
        if s in SUCCESS_STATUSES:
            return NormalizedStatus.SUCCESS
        if s in FAILED_STATUSES:
            return NormalizedStatus.FAILED
        return NormalizedStatus.PENDING

    def to_major_units(self, amount: Optional[Decimal], currency: Optional[str]) -> Optional[Decimal]:
        return minor_to_major(amount, currency)

    def classify_client_error(self, body: Any) -> ErrorCode:
        decline = as_dict(as_dict(body).get("error")).get("decline_code")
        if decline == "insufficient_funds":
            return ErrorCode.INSUFFICIENT_FUNDS
        if decline == "fraudulent":
            return ErrorCode.FRAUD_SUSPECTED
        return ErrorCode.INVALID_REQUEST
