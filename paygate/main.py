"""
paygate: multi-provider payment gateway.

One payment core drives Stripe, Paystack, Flutterwave, CinetPay and a
deterministic sandbox through a single provider contract, and ingests their
at-least-once webhooks into one deduplicated canonical event stream.

Start the server:
    uvicorn paygate.main:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from paygate.api.health import router as health_router
from paygate.api.payments import router as payments_router
from paygate.api.providers import router as providers_router
from paygate.api.reconciliation import router as reconciliation_router
from paygate.api.webhooks import router as webhooks_router
from paygate.audit.logger import AuditTrail
from paygate.config import Settings, settings as default_settings
from paygate.database import build_engine, init_db
from paygate.engine.payments import PaymentService
from paygate.engine.reconciler import Reconciler
from paygate.providers.errors import ProviderError
from paygate.routing.registry import build_registry
from paygate.routing.router import ProviderRouter
from paygate.webhooks.dedupe import SqlDedupeStore
from paygate.webhooks.handler import WebhookHandler
from paygate.webhooks.nonces import NonceCache
from paygate.webhooks.sink import EventSink, LedgerCallback, QueueEventSink, log_ledger_event

logging.basicConfig(
    level=getattr(logging, default_settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("paygate.main")


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    sink: Optional[EventSink] = None,
    ledger: Optional[LedgerCallback] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Defaults to the environment-loaded settings.
        http_client: Shared outbound client; created and closed by the app when omitted.
        sink: Ledger hand-off; defaults to a bounded queue drained in the background.
        ledger: Consumer for the default queue sink; defaults to logging each event.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine, session_factory = build_engine(settings.database_url)
        await init_db(engine)

        client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        registry = build_registry(settings, client)
        router = ProviderRouter(
            registry,
            settings.provider_configs,
            environment=settings.environment,
            strategy=settings.routing_strategy,
        )
        audit = AuditTrail(session_factory)
        dedupe = SqlDedupeStore(session_factory)

        consumer = None
        event_sink = sink
        if event_sink is None:
            event_sink = QueueEventSink(
                maxsize=settings.event_queue_size,
                dedupe=dedupe,
                max_attempts=settings.ledger_max_attempts,
                retry_delay=settings.ledger_retry_delay,
            )
            consumer = asyncio.create_task(event_sink.run(ledger or log_ledger_event))

        app.state.settings = settings
        app.state.session_factory = session_factory
        app.state.registry = registry
        app.state.router = router
        app.state.sink = event_sink
        nonces = NonceCache(settings.webhook_nonce_ttl_seconds, settings.webhook_nonce_cache_size)
        app.state.webhook_handler = WebhookHandler(registry, dedupe, event_sink, audit, nonces)
        app.state.payments = PaymentService(settings, registry, router, audit)
        app.state.reconciler = Reconciler(registry, dedupe, event_sink, audit, max_retries=settings.max_retries)
        logger.info("paygate started in %s", settings.environment.value)
        try:
            yield
        finally:
            if consumer is not None:
                consumer.cancel()
                with suppress(asyncio.CancelledError):
                    await consumer
            if http_client is None:
                await client.aclose()
            await engine.dispose()

    app = FastAPI(
        title="paygate",
        description=(
            "Multi-provider payment gateway: weighted routing across card and mobile-money "
            "rails, authenticated idempotent webhook ingestion, and an append-only audit trail."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(payments_router, prefix="/api")
    app.include_router(providers_router, prefix="/api")
    app.include_router(reconciliation_router, prefix="/api")
    return app


app = create_app()
