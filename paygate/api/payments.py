"""
Payment endpoints.

POST /payments                     : Route and initiate a payment.
POST /payments/{provider}/refunds  : Refund a payment on the provider that captured it.
"""

from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from paygate.api.deps import get_payment_service
from paygate.engine.payments import PaymentService
from paygate.models.enums import ActionType, PaymentMethod, PaymentStatus, ProviderName, RefundStatus
from paygate.providers.base import Customer

router = APIRouter(prefix="/payments", tags=["payments"])


class CustomerIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    ip_address: Optional[str] = None


class PaymentCreate(BaseModel):
    reference: str = Field(min_length=1, max_length=120)
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    method: PaymentMethod
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    customer: Optional[CustomerIn] = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    callback_url: Optional[str] = None
    idempotency_key: Optional[str] = None
    provider: Optional[ProviderName] = None


class ActionOut(BaseModel):
    type: ActionType
    value: str


class PaymentOut(BaseModel):
    reference: str
    provider: ProviderName
    provider_reference: str
    status: PaymentStatus
    redirect_url: Optional[str] = None
    action: Optional[ActionOut] = None
    fallbacks: list[ProviderName] = []


class RefundCreate(BaseModel):
    provider_reference: str = Field(min_length=1)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None


class RefundOut(BaseModel):
    provider: ProviderName
    provider_reference: str
    status: RefundStatus
    provider_refund_reference: Optional[str] = None


@router.post("", response_model=PaymentOut, status_code=201)
async def create_payment(body: PaymentCreate, service: PaymentService = Depends(get_payment_service)):
    """
    Initiate a payment on the best eligible provider.

    Idempotent per reference: retrying the same reference is forwarded to the
    provider's own idempotency mechanism.
    """
    customer = Customer(**body.customer.model_dump()) if body.customer else None
    result = await service.initiate(
        reference=body.reference,
        amount=body.amount,
        currency=body.currency,
        method=body.method,
        customer=customer,
        country=body.country,
        description=body.description,
        metadata=body.metadata,
        callback_url=body.callback_url,
        idempotency_key=body.idempotency_key,
        provider=body.provider,
    )
    response = result.response
    action = response.action_payload
    return PaymentOut(
        reference=result.request.reference,
        provider=result.decision.name,
        provider_reference=response.provider_reference,
        status=response.status,
        redirect_url=response.redirect_url,
        action=ActionOut(type=action.type, value=action.value) if action else None,
        fallbacks=[p.name for p in result.decision.fallbacks],
    )


@router.post("/{provider}/refunds", response_model=RefundOut, status_code=201)
async def create_refund(
    provider: str,
    body: RefundCreate,
    service: PaymentService = Depends(get_payment_service),
):
    """Refund a payment. Omitting amount refunds it in full."""
    name = ProviderName.parse(provider)
    if name is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    response = await service.refund(
        provider=name,
        provider_reference=body.provider_reference,
        amount=body.amount,
        currency=body.currency,
        reason=body.reason,
        idempotency_key=body.idempotency_key,
    )
    return RefundOut(
        provider=name,
        provider_reference=body.provider_reference,
        status=response.status,
        provider_refund_reference=response.provider_refund_reference,
    )
