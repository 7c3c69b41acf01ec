from paygate.routing.registry import ProviderRegistry, build_registry
from paygate.routing.router import ProviderRouter, RoutingDecision

__all__ = ["ProviderRegistry", "ProviderRouter", "RoutingDecision", "build_registry"]
