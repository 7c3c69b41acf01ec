"""
Provider endpoints.

GET /providers        : Capabilities and routing config of every registered provider.
GET /providers/health : Live health check of every registered provider.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from paygate.api.deps import get_registry, get_router
from paygate.models.enums import PaymentMethod, ProviderEnvironment, ProviderName, RiskLevel
from paygate.providers.base import PaymentProvider, ProviderHealthStatus
from paygate.providers.errors import ProviderError
from paygate.routing.registry import ProviderRegistry
from paygate.routing.router import ProviderRouter

router = APIRouter(prefix="/providers", tags=["providers"])


class ProviderOut(BaseModel):
    name: ProviderName
    environment: ProviderEnvironment
    enabled: bool
    weight: Optional[float] = None
    priority: Optional[int] = None
    methods: list[PaymentMethod]
    countries: list[str]
    currencies: list[str]
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    fees_percent: Optional[float] = None
    supports_refunds: bool
    supports_partial_refunds: bool
    supports_reconciliation: bool
    risk_level: RiskLevel


class ProviderHealthOut(BaseModel):
    provider: ProviderName
    environment: ProviderEnvironment
    online: bool
    latency_ms: Optional[float] = None
    checked_at: datetime
    message: Optional[str] = None


@router.get("", response_model=list[ProviderOut])
async def list_providers(
    registry: ProviderRegistry = Depends(get_registry),
    provider_router: ProviderRouter = Depends(get_router),
):
    configs = {
        c.name: c
        for c in provider_router.configs
        if c.environment == provider_router.environment
    }
    out = []
    for provider in registry:
        caps = provider.get_capabilities()
        config = configs.get(provider.name)
        out.append(ProviderOut(
            name=provider.name,
            environment=provider.environment,
            enabled=bool(config and config.enabled),
            weight=config.weight if config else None,
            priority=config.priority if config else None,
            methods=sorted(caps.methods, key=lambda m: m.value),
            countries=sorted(caps.supported_countries),
            currencies=sorted(caps.supported_currencies),
            min_amount=caps.min_amount,
            max_amount=caps.max_amount,
            fees_percent=caps.fees_percent,
            supports_refunds=caps.supports_refunds,
            supports_partial_refunds=caps.supports_partial_refunds,
            supports_reconciliation=caps.supports_reconciliation,
            risk_level=caps.risk_level,
        ))
    return out


async def _check(provider: PaymentProvider) -> ProviderHealthStatus:
    try:
        return await provider.health_check()
    except ProviderError as e:
        return ProviderHealthStatus(
            provider=provider.name,
            environment=provider.environment,
            online=False,
            checked_at=datetime.now(timezone.utc),
            message=e.code.value,
        )


@router.get("/health", response_model=list[ProviderHealthOut])
async def providers_health(registry: ProviderRegistry = Depends(get_registry)):
    statuses = await asyncio.gather(*(_check(p) for p in registry))
    return [
        ProviderHealthOut(
            provider=s.provider,
            environment=s.environment,
            online=s.online,
            latency_ms=s.latency_ms,
            checked_at=s.checked_at,
            message=s.message,
        )
        for s in statuses
    ]
