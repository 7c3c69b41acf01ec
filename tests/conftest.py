"""Shared test fixtures."""

import json

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from paygate.audit.logger import AuditTrail
from paygate.models.records import Base
from paygate.providers.sandbox import SandboxProvider
from paygate.routing.registry import ProviderRegistry
from paygate.webhooks.dedupe import MemoryDedupeStore
from paygate.webhooks.handler import WebhookHandler
from paygate.webhooks.sink import CallbackEventSink


class Ledger:
    """Stand-in ledger collaborator recording every event it is handed."""

    def __init__(self):
        self.events = []
        self.fail_next = False

    async def apply(self, event):
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("ledger unavailable")
        self.events.append(event)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def ledger():
    return Ledger()


@pytest.fixture
def sandbox():
    return SandboxProvider(latency_ms=0)


@pytest.fixture
def registry(sandbox):
    return ProviderRegistry([sandbox])


@pytest.fixture
def dedupe():
    return MemoryDedupeStore()


@pytest.fixture
def handler(registry, dedupe, ledger, session_factory):
    return WebhookHandler(registry, dedupe, CallbackEventSink(ledger.apply), AuditTrail(session_factory))


@pytest.fixture
def sandbox_body():
    def build(reference="TX-1", status="FAILED", amount="50", currency="USD", **extra):
        body = {"event": "sandbox.payment", "reference": reference, "status": status,
                "amount": amount, "currency": currency, **extra}
        return json.dumps(body).encode()
    return build
