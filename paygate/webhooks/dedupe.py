"""
Dedupe stores for webhook events.

claim() is an atomic check-and-set: it returns True exactly once per key,
however many concurrent deliveries race for it. No store ever reads and then
writes; the memory store holds a lock across the test-and-set and the SQL
store relies on the unique index.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paygate.models.enums import NormalizedEventType
from paygate.models.records import ProcessedWebhook
from paygate.providers.base import NormalizedWebhookEvent

logger = logging.getLogger("paygate.dedupe")

TERMINAL_PAYMENT_EVENTS = {NormalizedEventType.PAYMENT_SUCCESS, NormalizedEventType.PAYMENT_FAILED}


def dedupe_key(event: NormalizedWebhookEvent) -> str:
    """
    provider:reference:event_type.

    PAYMENT_SUCCESS and PAYMENT_FAILED share one PAYMENT_TERMINAL slot so a
    reference reaches a terminal payment state at most once.
    """
    slot = "PAYMENT_TERMINAL" if event.event_type in TERMINAL_PAYMENT_EVENTS else event.event_type.value
    return f"{event.provider.value}:{event.reference}:{slot}"


def terminal_key(event: NormalizedWebhookEvent) -> str:
    return f"{event.provider.value}:{event.reference}:PAYMENT_TERMINAL"


async def is_superseded(store: "DedupeStore", event: NormalizedWebhookEvent) -> bool:
    """A PAYMENT_CREATED whose reference has already reached a terminal state."""
    if event.event_type != NormalizedEventType.PAYMENT_CREATED:
        return False
    return await store.is_claimed(terminal_key(event))


class DedupeStore(ABC):
    @abstractmethod
    async def claim(self, key: str, event: Optional[NormalizedWebhookEvent] = None) -> bool:
        """Mark key as applied. True if this call claimed it, False if already claimed."""

    @abstractmethod
    async def release(self, key: str) -> None:
        """Undo a claim whose hand-off failed, so a redelivery can apply it."""

    @abstractmethod
    async def is_claimed(self, key: str) -> bool:
        """Read-only lookup. Never a substitute for claim()."""


class MemoryDedupeStore(DedupeStore):
    """Process-wide store for tests and single-instance deployments."""

    def __init__(self):
        self._claimed: dict[str, Optional[str]] = {}
        self._lock = asyncio.Lock()

    async def claim(self, key: str, event: Optional[NormalizedWebhookEvent] = None) -> bool:
        async with self._lock:
            if key in self._claimed:
                return False
            self._claimed[key] = event.event_id if event else None
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._claimed.pop(key, None)

    async def is_claimed(self, key: str) -> bool:
        async with self._lock:
            return key in self._claimed

    def __contains__(self, key: str) -> bool:
        return key in self._claimed

    def __len__(self) -> int:
        return len(self._claimed)


class SqlDedupeStore(DedupeStore):
    """Durable store backed by the processed_webhooks unique index."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def claim(self, key: str, event: Optional[NormalizedWebhookEvent] = None) -> bool:
        provider, reference, event_type = (key.split(":", 2) + ["", ""])[:3]
        row = ProcessedWebhook(
            dedupe_key=key,
            provider=event.provider.value if event else provider,
            reference=event.reference if event else reference,
            event_type=event.event_type.value if event else event_type,
            status=event.status.value if event else "",
            event_id=event.event_id if event else None,
        )
        async with self.session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("Dedupe key already claimed: %s", key)
                return False
        return True

    async def release(self, key: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(ProcessedWebhook).where(ProcessedWebhook.dedupe_key == key))
            await session.commit()

    async def is_claimed(self, key: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProcessedWebhook.id).where(ProcessedWebhook.dedupe_key == key)
            )
            return result.first() is not None
