"""
Hand-off of normalized events to the ledger collaborator.

The ledger only ever receives validated, normalized, deduplicated events.
QueueEventSink decouples the webhook response from slow downstream work:
publish() is a bounded put, and a background task drives the consumer.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from paygate.providers.base import NormalizedWebhookEvent
from paygate.webhooks.dedupe import DedupeStore, dedupe_key

logger = logging.getLogger("paygate.sink")

LedgerCallback = Callable[[NormalizedWebhookEvent], Awaitable[None]]


class SinkFullError(RuntimeError):
    """The hand-off queue is at capacity."""


class EventSink(ABC):
    @abstractmethod
    async def publish(self, event: NormalizedWebhookEvent) -> None:
        """Hand one event to the ledger. Raises if the hand-off did not happen."""


class CallbackEventSink(EventSink):
    """Synchronous hand-off: the ledger callback runs inside the request."""

    def __init__(self, callback: LedgerCallback):
        self.callback = callback

    async def publish(self, event: NormalizedWebhookEvent) -> None:
        await self.callback(event)


class QueueEventSink(EventSink):
    """
    Bounded in-process queue between the webhook response and the ledger.

    The dedupe claim is already held when an event is queued. A failing
    ledger call is retried with backoff; once attempts are exhausted the
    claim is released so the provider's next redelivery (or a reconciliation
    run) can apply the event.
    """

    def __init__(
        self,
        maxsize: int = 10_000,
        dedupe: Optional[DedupeStore] = None,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ):
        self.queue: asyncio.Queue[NormalizedWebhookEvent] = asyncio.Queue(maxsize=maxsize)
        self.dedupe = dedupe
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay

    async def publish(self, event: NormalizedWebhookEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull as e:
            raise SinkFullError(f"Event queue full ({self.queue.maxsize})") from e

    async def run(self, consumer: LedgerCallback) -> None:
        """Consume forever. Cancel the task to stop."""
        while True:
            event = await self.queue.get()
            try:
                await self._deliver(consumer, event)
            finally:
                self.queue.task_done()

    async def _deliver(self, consumer: LedgerCallback, event: NormalizedWebhookEvent) -> None:
        key = dedupe_key(event)
        delay = self.retry_delay
        for attempt in range(1, self.max_attempts + 1):
            try:
                await consumer(event)
                return
            except Exception:
                logger.exception("Ledger consumer failed for %s (attempt %d/%d)", key, attempt, self.max_attempts)
            if attempt < self.max_attempts:
                await asyncio.sleep(delay)
                delay *= 2

        if self.dedupe is None:
            logger.error("Dropped %s after %d attempts", key, self.max_attempts)
            return
        try:
            await self.dedupe.release(key)
        except Exception:
            logger.exception("Could not release %s, event needs a manual replay", key)
        else:
            logger.error("Gave up on %s after %d attempts, claim released for redelivery", key, self.max_attempts)

    async def drain(self) -> None:
        """Wait until every queued event has been consumed."""
        await self.queue.join()


async def log_ledger_event(event: NormalizedWebhookEvent) -> None:
    """Default consumer when no ledger is wired in: record the event in the log."""
    logger.info(
        "LEDGER | %s %s %s %s %s %s",
        event.provider.value,
        event.reference,
        event.event_type.value,
        event.status.value,
        event.amount if event.amount is not None else "-",
        event.currency or "-",
    )
