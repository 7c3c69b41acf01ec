"""
Outbound payment execution.

The flow for each payment:

  1. Request construction (canonical webhook URL, never client-supplied)
  2. Provider routing (capabilities, config, environment)
  3. Provider execution (bounded retry with per-attempt timeout)
  4. Audit logging

There is no automatic fail-over to a fallback provider: once a provider
has been called, a timed-out attempt may still have charged the customer,
and only a webhook or reconciliation can tell. The routing decision's
fallbacks are returned for the caller to decide.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from paygate.audit.logger import AuditTrail
from paygate.config import Settings
from paygate.engine.retry import with_retry
from paygate.models.enums import ErrorCode, PaymentMethod, ProviderName
from paygate.providers.base import (
    Customer,
    ProviderPaymentRequest,
    ProviderPaymentResponse,
    ProviderRefundRequest,
    ProviderRefundResponse,
)
from paygate.providers.errors import PermanentError, ProviderError
from paygate.routing.registry import ProviderRegistry
from paygate.routing.router import ProviderRouter, RoutingDecision

logger = logging.getLogger("paygate.payments")


@dataclass
class PaymentResult:
    decision: RoutingDecision
    request: ProviderPaymentRequest
    response: ProviderPaymentResponse


class PaymentService:
    def __init__(
        self,
        settings: Settings,
        registry: ProviderRegistry,
        router: ProviderRouter,
        audit: Optional[AuditTrail] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.router = router
        self.audit = audit

    def _retry_policy(self) -> dict[str, Any]:
        return {
            "max_retries": self.settings.max_retries,
            "base_delay": self.settings.retry_base_delay,
            "max_delay": self.settings.retry_max_delay,
            # Slightly above the HTTP timeout so transport timeouts surface first.
            "timeout": self.settings.http_timeout_seconds + 5,
        }

    async def initiate(
        self,
        reference: str,
        amount: Decimal,
        currency: str,
        method: PaymentMethod,
        customer: Optional[Customer] = None,
        country: Optional[str] = None,
        description: str = "",
        metadata: Optional[dict[str, Any]] = None,
        callback_url: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        provider: Optional[ProviderName] = None,
    ) -> PaymentResult:
        """
        Route and submit one payment.

        Args:
            provider: Pin a provider instead of routing; it must still cover the request.

        Raises:
            ProviderError: NO_PROVIDER_AVAILABLE, permanent rail errors, or
                retryable errors once retries are exhausted.
        """
        customer = customer or Customer(country=country)
        country = country or customer.country
        decision = self.router.select(currency=currency, method=method, country=country, amount=amount)
        if provider is not None and decision.name != provider:
            pinned = [p for p in [decision.provider, *decision.fallbacks] if p.name == provider]
            if not pinned:
                raise PermanentError(
                    f"Provider {provider.value} cannot carry this payment",
                    code=ErrorCode.NO_PROVIDER_AVAILABLE,
                    provider=provider,
                    status_code=422,
                )
            others = [p for p in [decision.provider, *decision.fallbacks] if p.name != provider]
            decision = RoutingDecision(pinned[0], others, decision.strategy, f"{provider.value} (pinned)")

        adapter = decision.provider
        request = ProviderPaymentRequest(
            reference=reference,
            amount=amount,
            currency=currency.upper(),
            method=method,
            webhook_url=self.settings.webhook_url(adapter.name),
            customer=customer,
            description=description,
            metadata=metadata or {},
            callback_url=callback_url,
            idempotency_key=idempotency_key,
        )

        try:
            response = await with_retry(
                adapter.initiate_payment, request, normalize_error=adapter.normalize_error, **self._retry_policy()
            )
        except ProviderError as e:
            await self._audit("payment_failed", adapter.name, reference, {
                "code": e.code.value,
                "retryable": e.retryable,
                "message": e.message,
            })
            raise

        logger.info(
            "Payment %s initiated on %s: %s (%s)",
            reference,
            adapter.name.value,
            response.status.value,
            response.provider_reference,
        )
        await self._audit("payment_initiated", adapter.name, reference, {
            "provider_reference": response.provider_reference,
            "status": response.status.value,
            "amount": amount,
            "currency": request.currency,
            "route": decision.label,
        })
        return PaymentResult(decision=decision, request=request, response=response)

    async def refund(
        self,
        provider: ProviderName,
        provider_reference: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProviderRefundResponse:
        adapter = self.registry.require(provider)
        request = ProviderRefundRequest(
            provider_reference=provider_reference,
            amount=amount,
            currency=currency.upper() if currency else None,
            reason=reason,
            idempotency_key=idempotency_key,
        )
        try:
            response = await with_retry(
                adapter.refund_payment, request, normalize_error=adapter.normalize_error, **self._retry_policy()
            )
        except ProviderError as e:
            await self._audit("refund_failed", adapter.name, provider_reference, {
                "code": e.code.value,
                "message": e.message,
            })
            raise
        await self._audit("refund_requested", adapter.name, provider_reference, {
            "status": response.status.value,
            "amount": amount,
            "refund_reference": response.provider_refund_reference,
        })
        return response

    async def _audit(self, action: str, provider: ProviderName, reference: str, details: dict) -> None:
        if self.audit is not None:
            await self.audit.record(action, provider.value, reference, details)
