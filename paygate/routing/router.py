"""
Outbound provider routing.

Selects the provider for a payment based on:
  1. Registration (an adapter exists for the configured name)
  2. Configuration (enabled, environment matches the deployment)
  3. Capabilities (currency, method, country, amount bounds)

Survivors are ordered by weighted random sampling without replacement
("weighted") or by priority then weight ("priority"). The first survivor
is the chosen provider; the rest are fallbacks the caller may try.
An empty survivor set is a non-retryable NO_PROVIDER_AVAILABLE error,
never an incompatible pick.
"""

import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from paygate.config import ProviderConfig
from paygate.models.enums import ErrorCode, PaymentMethod, ProviderEnvironment, ProviderName
from paygate.providers.base import PaymentProvider
from paygate.providers.errors import PermanentError
from paygate.routing.registry import ProviderRegistry

logger = logging.getLogger("paygate.router")

STRATEGIES = ("weighted", "priority")


@dataclass
class RoutingDecision:
    """Result of the provider selection process."""

    provider: PaymentProvider
    fallbacks: list[PaymentProvider] = field(default_factory=list)
    strategy: str = "weighted"
    label: str = ""

    @property
    def name(self) -> ProviderName:
        return self.provider.name


class ProviderRouter:
    def __init__(
        self,
        registry: ProviderRegistry,
        configs: list[ProviderConfig],
        environment: ProviderEnvironment,
        strategy: str = "weighted",
        rng: Optional[random.Random] = None,
    ):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown routing strategy: {strategy}")
        self.registry = registry
        self.configs = list(configs)
        self.environment = environment
        self.strategy = strategy
        self.rng = rng or random.Random()

    def update_configs(self, configs: list[ProviderConfig]) -> None:
        """Hot-reload the routing table."""
        self.configs = list(configs)
        logger.info("Provider config updated: %s", ", ".join(c.name.value for c in self.configs))

    def candidates(
        self,
        currency: str,
        method: PaymentMethod,
        country: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> list[tuple[ProviderConfig, PaymentProvider]]:
        survivors = []
        for config in self.configs:
            if not config.enabled or config.environment != self.environment or config.weight <= 0:
                continue
            provider = self.registry.get(config.name)
            if provider is None:
                logger.warning("Configured provider %s is not registered", config.name.value)
                continue
            caps = provider.get_capabilities()
            if caps.covers(currency=currency, method=method, country=country, amount=amount):
                survivors.append((config, provider))
        return survivors

    def select(
        self,
        currency: str,
        method: PaymentMethod,
        country: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> RoutingDecision:
        """
        Pick a provider for one payment.

        Raises:
            PermanentError: NO_PROVIDER_AVAILABLE when nothing qualifies.
        """
        survivors = self.candidates(currency, method, country, amount)
        if not survivors:
            raise PermanentError(
                f"No provider available for {method.value} in {currency.upper()}"
                + (f" ({country.upper()})" if country else ""),
                code=ErrorCode.NO_PROVIDER_AVAILABLE,
                status_code=422,
            )

        if self.strategy == "priority":
            ordered = sorted(survivors, key=lambda s: (s[0].priority, -s[0].weight))
        else:
            ordered = self._weighted_order(survivors)

        providers = [provider for _, provider in ordered]
        decision = RoutingDecision(
            provider=providers[0],
            fallbacks=providers[1:],
            strategy=self.strategy,
            label=f"{providers[0].name.value} ({self.strategy}, {len(providers)} eligible)",
        )
        logger.info(
            "Routed %s %s%s to %s",
            method.value,
            currency.upper(),
            f" {country.upper()}" if country else "",
            decision.label,
        )
        return decision

    def _weighted_order(
        self, survivors: list[tuple[ProviderConfig, PaymentProvider]]
    ) -> list[tuple[ProviderConfig, PaymentProvider]]:
        """Weighted random sampling without replacement."""
        pool = list(survivors)
        ordered = []
        while pool:
            total = sum(config.weight for config, _ in pool)
            pick = self.rng.uniform(0, total)
            cumulative = 0.0
            chosen = len(pool) - 1
            for i, (config, _) in enumerate(pool):
                cumulative += config.weight
                if pick < cumulative:
                    chosen = i
                    break
            ordered.append(pool.pop(chosen))
        return ordered
