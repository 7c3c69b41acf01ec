"""GET /health: liveness plus the registered provider set."""

from fastapi import APIRouter, Depends

from paygate.api.deps import get_registry, get_settings
from paygate.config import Settings
from paygate.routing.registry import ProviderRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    settings: Settings = Depends(get_settings),
    registry: ProviderRegistry = Depends(get_registry),
):
    return {
        "status": "ok",
        "environment": settings.environment.value,
        "providers": [name.value for name in registry.names()],
    }
