"""CinetPay adapter: francophone Africa mobile money, amounts in major units."""

import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx

from paygate.models.enums import (
    ErrorCode,
    NormalizedStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderEnvironment,
    ProviderName,
    RiskLevel,
)
from paygate.providers.base import (
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
    parse_timestamp,
    to_decimal,
)
from paygate.providers.errors import PermanentError
from paygate.providers.http import HttpPaymentProvider
from paygate.providers.signatures import header, hmac_hex, is_fresh, secure_compare

SUCCESS_STATUSES = {"accepted", "completed", "success"}
FAILED_STATUSES = {"failed", "cancelled", "canceled", "refused"}

CREATED_CODE = "201"


def _format_amount(amount: Decimal) -> str:
    return str(int(amount)) if amount == amount.to_integral_value() else str(amount)


class CinetPayProvider(HttpPaymentProvider):
    name = ProviderName.CINETPAY

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        site_id: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: str = "https://api-checkout.cinetpay.com/v2",
        environment: ProviderEnvironment = ProviderEnvironment.PRODUCTION,
        timeout: float = 15.0,
        tolerance_seconds: int = 300,
        allow_unsigned: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(http_client, base_url, environment, timeout, allow_unsigned)
        self.api_key = api_key
        self.site_id = site_id
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.clock = clock

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            name=self.name,
            methods=frozenset({PaymentMethod.MOBILE_MONEY}),
            supported_countries=frozenset({"CD", "CI", "SN", "CM", "BJ", "TG", "BF", "ML", "NE"}),
            supported_currencies=frozenset({"CDF", "XOF", "XAF"}),
            primary_regions=frozenset({"WEST_AFRICA", "CENTRAL_AFRICA"}),
            min_amount=Decimal("100"),
            fees_percent=3.0,
            supports_refunds=False,
            supports_partial_refunds=False,
            supports_reconciliation=False,
            supports_idempotency=True,
            risk_level=RiskLevel.MEDIUM,
        )

    async def initiate_payment(self, request: ProviderPaymentRequest) -> ProviderPaymentResponse:
        payload: dict[str, Any] = {
            "apikey": self.api_key,
            "site_id": self.site_id,
            "transaction_id": request.reference,
            "amount": _format_amount(request.amount),
            "currency": request.currency.upper(),
            "description": request.description or request.reference,
            "notify_url": request.webhook_url,
            "channels": "MOBILE_MONEY",
            "metadata": request.reference,
        }
        if request.callback_url:
            payload["return_url"] = request.callback_url
        if request.customer.name:
            payload["customer_name"] = request.customer.name
        if request.customer.email:
            payload["customer_email"] = request.customer.email
        if request.customer.phone:
            payload["customer_phone_number"] = request.customer.phone

        body = await self._request("POST", "/payment", json=payload, reference=request.reference)
        # CinetPay answers HTTP 200 and reports failures in its own code field.
        code = as_str(body.get("code"))
        if code != CREATED_CODE:
            raise PermanentError(
                as_str(body.get("description")) or as_str(body.get("message")) or "CinetPay rejected payment",
                code=ErrorCode.INVALID_REQUEST,
                provider=self.name,
                raw=body,
                reference=request.reference,
            )
        data = as_dict(body.get("data"))
        payment_url = as_str(data.get("payment_url"))
        return ProviderPaymentResponse(
            provider_reference=as_str(data.get("payment_token")) or request.reference,
            status=PaymentStatus.REQUIRES_ACTION if payment_url else PaymentStatus.PENDING,
            redirect_url=payment_url,
            raw=body,
        )

    async def refund_payment(self, request: ProviderRefundRequest) -> ProviderRefundResponse:
        raise PermanentError(
            "CinetPay has no refund API",
            code=ErrorCode.UNSUPPORTED_OPERATION,
            provider=self.name,
        )

    async def reconcile(self, start: datetime, end: datetime) -> list[ProviderWebhookPayload]:
        raise PermanentError(
            "CinetPay has no reconciliation API",
            code=ErrorCode.UNSUPPORTED_OPERATION,
            provider=self.name,
        )

    def validate_webhook_signature(self, headers: Headers, raw_body: bytes) -> bool:
        if not self.webhook_secret:
            return self.allow_unsigned
        signature = header(headers, "x-cinetpay-signature")
        timestamp = header(headers, "x-cinetpay-timestamp")
        if not signature or not timestamp:
            return False
        if self.tolerance_seconds > 0:
            try:
                sent_at = int(timestamp.strip())
            except ValueError:
                return False
            if sent_at > 10**12:  # milliseconds
                sent_at //= 1000
            if not is_fresh(sent_at, self.clock(), self.tolerance_seconds):
                return False
        expected = hmac_hex(self.webhook_secret, raw_body + timestamp.encode("utf-8"))
        return secure_compare(expected, signature)

    def parse_webhook(self, headers: Headers, raw_body: bytes) -> ProviderWebhookPayload:
        body = decode_json_body(raw_body, self.name)
        # Envelope {"event", "data": {...}} or the flat notification form.
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        currency = as_str(data.get("currency")) or as_str(data.get("cpm_currency"))
        return ProviderWebhookPayload(
            provider=self.name,
            event=as_str(body.get("event")) or "cinetpay.payment",
            reference=as_str(data.get("transaction_id")) or as_str(data.get("cpm_trans_id")),
            status=as_str(data.get("status")),
            amount=to_decimal(data.get("amount", data.get("cpm_amount"))),
            currency=currency.upper() if currency else None,
            provider_reference=as_str(data.get("payment_token")) or as_str(data.get("operator_id")),
            occurred_at=parse_timestamp(data.get("payment_date")),
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
