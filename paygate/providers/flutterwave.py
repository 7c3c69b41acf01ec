"""Flutterwave adapter: pan-African cards and mobile money, amounts in major units."""

from datetime import datetime
from typing import Any, Optional

import httpx

from paygate.models.enums import (
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
    parse_timestamp,
    to_decimal,
)
from paygate.providers.http import HttpPaymentProvider
from paygate.providers.signatures import header, secure_compare, sha256_hex

SUCCESS_STATUSES = {"successful", "completed"}
FAILED_STATUSES = {"failed", "cancelled"}

PAYMENT_OPTIONS = {
    PaymentMethod.CARD: "card",
    PaymentMethod.BANK_TRANSFER: "banktransfer",
    PaymentMethod.MOBILE_MONEY: "mobilemoney",
    PaymentMethod.USSD: "ussd",
}


class FlutterwaveProvider(HttpPaymentProvider):
    name = ProviderName.FLUTTERWAVE
    health_path = "/banks/NG"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret_key: Optional[str] = None,
        webhook_hash: Optional[str] = None,
        base_url: str = "https://api.flutterwave.com/v3",
        environment: ProviderEnvironment = ProviderEnvironment.PRODUCTION,
        timeout: float = 15.0,
        allow_unsigned: bool = False,
    ):
        super().__init__(http_client, base_url, environment, timeout, allow_unsigned)
        self.secret_key = secret_key
        self.webhook_hash = webhook_hash

    def auth_headers(self) -> dict[str, str]:
        if not self.secret_key:
            return {}
        return {"Authorization": f"Bearer {self.secret_key}"}

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            name=self.name,
            methods=frozenset({PaymentMethod.MOBILE_MONEY, PaymentMethod.CARD, PaymentMethod.BANK_TRANSFER}),
            supported_countries=frozenset({
                "CD", "NG", "GH", "KE", "UG", "TZ", "RW", "ZA", "CI", "SN", "CM", "BJ", "TG", "FR", "US",
            }),
            supported_currencies=frozenset({"CDF", "NGN", "GHS", "KES", "UGX", "TZS", "XOF", "XAF", "USD", "EUR"}),
            primary_regions=frozenset({"WEST_AFRICA", "EAST_AFRICA", "CENTRAL_AFRICA"}),
            fees_percent=1.4,
            supports_partial_refunds=True,
            supports_reconciliation=True,
            pci_compliant=True,
        )

    async def initiate_payment(self, request: ProviderPaymentRequest) -> ProviderPaymentResponse:
        customer = {
            key: value
            for key, value in {
                "email": request.customer.email,
                "phonenumber": request.customer.phone,
                "name": request.customer.name,
            }.items()
            if value
        }
        payload: dict[str, Any] = {
            "tx_ref": request.reference,
            "amount": str(request.amount),
            "currency": request.currency.upper(),
            "customer": customer,
            "meta": dict(request.metadata),
        }
        if request.callback_url:
            payload["redirect_url"] = request.callback_url
        if request.method in PAYMENT_OPTIONS:
            payload["payment_options"] = PAYMENT_OPTIONS[request.method]
        if request.description:
            payload["customizations"] = {"description": request.description}

        body = await self._request("POST", "/payments", json=payload, reference=request.reference)
        link = as_str(as_dict(body.get("data")).get("link"))
        # Flutterwave assigns its numeric id only once the customer pays.
        return ProviderPaymentResponse(
            provider_reference=request.reference,
            status=PaymentStatus.REQUIRES_ACTION if link else PaymentStatus.PENDING,
            redirect_url=link,
            raw=body,
        )

    async def refund_payment(self, request: ProviderRefundRequest) -> ProviderRefundResponse:
        payload = {}
        if request.amount is not None:
            payload["amount"] = str(request.amount)
        if request.reason:
            payload["comments"] = request.reason

        body = await self._request("POST", f"/transactions/{request.provider_reference}/refund", json=payload)
        data = as_dict(body.get("data"))
        normalized = self.normalize_status(as_str(data.get("status")))
        return ProviderRefundResponse(
            status=RefundStatus(normalized.value),
            provider_refund_reference=as_str(data.get("id")),
            raw=body,
        )

    async def reconcile(self, start: datetime, end: datetime) -> list[ProviderWebhookPayload]:
        payloads = []
        page = 1
        while True:
            body = await self._request(
                "GET",
                "/transactions",
                params={"from": start.date().isoformat(), "to": end.date().isoformat(), "page": page},
            )
            for transaction in body.get("data") or []:
                if isinstance(transaction, dict):
                    payloads.append(self._payload_from_body({"event": "charge.completed", "data": transaction}))
            page_info = as_dict(as_dict(body.get("meta")).get("page_info"))
            if page >= int(page_info.get("total_pages") or 1):
                return payloads
            page += 1

    def validate_webhook_signature(self, headers: Headers, raw_body: bytes) -> bool:
        if not self.webhook_hash:
            return self.allow_unsigned
        received = header(headers, "verif-hash")
        if not received:
            return False
        expected = sha256_hex(raw_body + self.webhook_hash.encode("utf-8"))
        return secure_compare(expected, received)

    def parse_webhook(self, headers: Headers, raw_body: bytes) -> ProviderWebhookPayload:
        return self._payload_from_body(decode_json_body(raw_body, self.name))

    def _payload_from_body(self, body: dict[str, Any]) -> ProviderWebhookPayload:
        data = as_dict(body.get("data"))
        currency = as_str(data.get("currency"))
        return ProviderWebhookPayload(
            provider=self.name,
            event=as_str(body.get("event")) or "flutterwave.unknown",
            reference=as_str(data.get("tx_ref")),
            status=as_str(data.get("status")),
            amount=to_decimal(data.get("amount")),
            currency=currency.upper() if currency else None,
            provider_reference=as_str(data.get("id")),
            occurred_at=parse_timestamp(data.get("created_at")),
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
