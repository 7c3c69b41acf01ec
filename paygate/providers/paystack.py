"""Paystack adapter: Nigeria, Ghana, Kenya. Amounts in kobo / pesewas."""

import hashlib
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx

from paygate.models.enums import (
    ErrorCode,
    NormalizedStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderEnvironment,
    ProviderName,
    RefundStatus,
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
    major_to_minor,
    minor_to_major,
    parse_timestamp,
    refund_currency,
    to_decimal,
)
from paygate.providers.errors import PermanentError
from paygate.providers.http import HttpPaymentProvider
from paygate.providers.signatures import header, hmac_hex, secure_compare

SUCCESS_STATUSES = {"success", "processed"}
FAILED_STATUSES = {"failed", "abandoned", "reversed"}

CHANNELS = {
    PaymentMethod.CARD: "card",
    PaymentMethod.BANK_TRANSFER: "bank_transfer",
    PaymentMethod.MOBILE_MONEY: "mobile_money",
    PaymentMethod.USSD: "ussd",
    PaymentMethod.QR: "qr",
}


class PaystackProvider(HttpPaymentProvider):
    name = ProviderName.PAYSTACK
    health_path = "/bank?perPage=1"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret_key: Optional[str] = None,
        base_url: str = "https://api.paystack.co",
        environment: ProviderEnvironment = ProviderEnvironment.PRODUCTION,
        timeout: float = 15.0,
        allow_unsigned: bool = False,
    ):
        super().__init__(http_client, base_url, environment, timeout, allow_unsigned)
        # The API secret key also signs webhooks.
        self.secret_key = secret_key

    def auth_headers(self) -> dict[str, str]:
        if not self.secret_key:
            return {}
        return {"Authorization": f"Bearer {self.secret_key}"}

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            name=self.name,
            methods=frozenset({PaymentMethod.MOBILE_MONEY, PaymentMethod.CARD, PaymentMethod.BANK_TRANSFER}),
            supported_countries=frozenset({"NG", "GH", "KE", "ZA"}),
            supported_currencies=frozenset({"NGN", "GHS", "KES", "USD"}),
            primary_regions=frozenset({"WEST_AFRICA", "EAST_AFRICA"}),
            fees_percent=1.5,
            supports_partial_refunds=True,
            supports_reconciliation=True,
            pci_compliant=True,
        )

    async def initiate_payment(self, request: ProviderPaymentRequest) -> ProviderPaymentResponse:
        if not request.customer.email:
            raise PermanentError(
                "Paystack requires a customer email",
                code=ErrorCode.INVALID_REQUEST,
                provider=self.name,
                reference=request.reference,
            )
        payload: dict[str, Any] = {
            "email": request.customer.email,
            "amount": str(major_to_minor(request.amount, request.currency)),
            "currency": request.currency.upper(),
            "reference": request.reference,
            "metadata": {**request.metadata, "webhook_url": request.webhook_url},
        }
        if request.callback_url:
            payload["callback_url"] = request.callback_url
        if request.method in CHANNELS:
            payload["channels"] = [CHANNELS[request.method]]

        body = await self._request("POST", "/transaction/initialize", json=payload, reference=request.reference)
        data = as_dict(body.get("data"))
        redirect_url = as_str(data.get("authorization_url"))
        return ProviderPaymentResponse(
            provider_reference=as_str(data.get("reference")) or request.reference,
            status=PaymentStatus.REQUIRES_ACTION if redirect_url else PaymentStatus.PENDING,
            redirect_url=redirect_url,
            raw=body,
        )

    async def refund_payment(self, request: ProviderRefundRequest) -> ProviderRefundResponse:
        payload: dict[str, Any] = {"transaction": request.provider_reference}
        if request.amount is not None:
            payload["amount"] = str(major_to_minor(request.amount, refund_currency(request, self.name)))
        if request.reason:
            payload["merchant_note"] = request.reason

        body = await self._request("POST", "/refund", json=payload)
        data = as_dict(body.get("data"))
        refund_status = str(data.get("status") or "").lower()
        if refund_status in SUCCESS_STATUSES:
            status = RefundStatus.SUCCESS
        elif refund_status in FAILED_STATUSES:
            status = RefundStatus.FAILED
        else:
            status = RefundStatus.PENDING
        return ProviderRefundResponse(
            status=status,
            provider_refund_reference=as_str(data.get("id")),
            raw=body,
        )

    async def reconcile(self, start: datetime, end: datetime) -> list[ProviderWebhookPayload]:
        payloads = []
        page = 1
        while True:
            body = await self._request(
                "GET",
                "/transaction",
                params={"from": start.isoformat(), "to": end.isoformat(), "perPage": 100, "page": page},
            )
            for transaction in body.get("data") or []:
                if not isinstance(transaction, dict):
                    continue
                status = as_str(transaction.get("status")) or "pending"
                payloads.append(self._payload_from_body({"event": f"charge.{status}", "data": transaction}))
            meta = as_dict(body.get("meta"))
            if page >= int(meta.get("pageCount") or 1):
                return payloads
            page += 1

    def validate_webhook_signature(self, headers: Headers, raw_body: bytes) -> bool:
        if not self.secret_key:
            return self.allow_unsigned
        signature = header(headers, "x-paystack-signature")
        if not signature:
            return False
        expected = hmac_hex(self.secret_key, raw_body, hashlib.sha512)
        return secure_compare(expected, signature)

    def parse_webhook(self, headers: Headers, raw_body: bytes) -> ProviderWebhookPayload:
        return self._payload_from_body(decode_json_body(raw_body, self.name))

    def _payload_from_body(self, body: dict[str, Any]) -> ProviderWebhookPayload:
        data = as_dict(body.get("data"))
        currency = as_str(data.get("currency"))
        return ProviderWebhookPayload(
            provider=self.name,
            event=as_str(body.get("event")) or "paystack.charge",
            # Refund events carry the original charge as transaction_reference.
            reference=as_str(data.get("reference")) or as_str(data.get("transaction_reference")),
            status=as_str(data.get("status")),
            amount=to_decimal(data.get("amount")),
            currency=currency.upper() if currency else None,
            provider_reference=as_str(data.get("id")),
            occurred_at=parse_timestamp(data.get("paid_at") or data.get("paidAt") or data.get("created_at")),
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
