"""FastAPI dependencies resolving the services built in the app lifespan."""

from fastapi import Request

from paygate.config import Settings
from paygate.engine.payments import PaymentService
from paygate.engine.reconciler import Reconciler
from paygate.routing.registry import ProviderRegistry
from paygate.routing.router import ProviderRouter
from paygate.webhooks.handler import WebhookHandler


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_router(request: Request) -> ProviderRouter:
    return request.app.state.router


def get_webhook_handler(request: Request) -> WebhookHandler:
    return request.app.state.webhook_handler


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payments


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler
