"""Tests for webhook dedupe keys and claim stores."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from paygate.models.enums import NormalizedEventType, NormalizedStatus, ProviderName
from paygate.models.records import ProcessedWebhook
from paygate.providers.base import NormalizedWebhookEvent
from paygate.webhooks.dedupe import MemoryDedupeStore, SqlDedupeStore, dedupe_key, is_superseded, terminal_key


def make_event(event_type=NormalizedEventType.PAYMENT_SUCCESS, reference="ORD-1", event_id="evt_1"):
    status = {
        NormalizedEventType.PAYMENT_SUCCESS: NormalizedStatus.SUCCESS,
        NormalizedEventType.PAYMENT_FAILED: NormalizedStatus.FAILED,
        NormalizedEventType.PAYMENT_CREATED: NormalizedStatus.PENDING,
        NormalizedEventType.REFUND_SUCCESS: NormalizedStatus.SUCCESS,
        NormalizedEventType.REFUND_FAILED: NormalizedStatus.FAILED,
    }[event_type]
    return NormalizedWebhookEvent(
        provider=ProviderName.PAYSTACK,
        event_type=event_type,
        status=status,
        reference=reference,
        amount=Decimal("10.00"),
        currency="NGN",
        received_at=datetime.now(timezone.utc),
        event_id=event_id,
    )


class TestDedupeKey:
    def test_terminal_payment_events_share_a_slot(self):
        success = dedupe_key(make_event(NormalizedEventType.PAYMENT_SUCCESS))
        failed = dedupe_key(make_event(NormalizedEventType.PAYMENT_FAILED))
        assert success == failed == "PAYSTACK:ORD-1:PAYMENT_TERMINAL"

    def test_other_events_keep_their_type(self):
        assert dedupe_key(make_event(NormalizedEventType.PAYMENT_CREATED)) == "PAYSTACK:ORD-1:PAYMENT_CREATED"
        assert dedupe_key(make_event(NormalizedEventType.REFUND_SUCCESS)) == "PAYSTACK:ORD-1:REFUND_SUCCESS"

    def test_event_id_is_not_part_of_the_key(self):
        assert dedupe_key(make_event(event_id="a")) == dedupe_key(make_event(event_id="b"))

    def test_terminal_key_ignores_event_type(self):
        created = make_event(NormalizedEventType.PAYMENT_CREATED)
        assert terminal_key(created) == dedupe_key(make_event(NormalizedEventType.PAYMENT_FAILED))


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_claim_once(self):
        store = MemoryDedupeStore()
        assert await store.claim("k") is True
        assert await store.claim("k") is False
        assert "k" in store

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self):
        store = MemoryDedupeStore()
        results = await asyncio.gather(*(store.claim("k", make_event()) for _ in range(50)))
        assert results.count(True) == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_release_allows_reclaim(self):
        store = MemoryDedupeStore()
        await store.claim("k")
        await store.release("k")
        assert await store.claim("k") is True

    @pytest.mark.asyncio
    async def test_release_unknown_key_is_noop(self):
        await MemoryDedupeStore().release("missing")

    @pytest.mark.asyncio
    async def test_is_claimed_does_not_claim(self):
        store = MemoryDedupeStore()
        assert await store.is_claimed("k") is False
        assert await store.claim("k") is True
        assert await store.is_claimed("k") is True

    @pytest.mark.asyncio
    async def test_created_is_superseded_by_terminal_state(self):
        store = MemoryDedupeStore()
        created = make_event(NormalizedEventType.PAYMENT_CREATED)
        assert await is_superseded(store, created) is False

        success = make_event(NormalizedEventType.PAYMENT_SUCCESS)
        await store.claim(dedupe_key(success), success)
        assert await is_superseded(store, created) is True
        assert await is_superseded(store, success) is False
        assert await is_superseded(store, make_event(NormalizedEventType.REFUND_SUCCESS)) is False


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_claim_once(self, session_factory):
        store = SqlDedupeStore(session_factory)
        event = make_event()
        key = dedupe_key(event)
        assert await store.claim(key, event) is True
        assert await store.claim(key, event) is False

        async with session_factory() as session:
            row = (await session.execute(select(ProcessedWebhook))).scalar_one()
        assert row.dedupe_key == key
        assert row.provider == "PAYSTACK"
        assert row.event_type == "PAYMENT_SUCCESS"
        assert row.event_id == "evt_1"

    @pytest.mark.asyncio
    async def test_failed_after_success_is_duplicate(self, session_factory):
        store = SqlDedupeStore(session_factory)
        success = make_event(NormalizedEventType.PAYMENT_SUCCESS)
        failed = make_event(NormalizedEventType.PAYMENT_FAILED, event_id="evt_2")
        assert await store.claim(dedupe_key(success), success) is True
        assert await store.claim(dedupe_key(failed), failed) is False

    @pytest.mark.asyncio
    async def test_claim_without_event(self, session_factory):
        store = SqlDedupeStore(session_factory)
        assert await store.claim("SANDBOX:TX-1:PAYMENT_TERMINAL") is True

        async with session_factory() as session:
            row = (await session.execute(select(ProcessedWebhook))).scalar_one()
        assert row.provider == "SANDBOX"
        assert row.reference == "TX-1"

    @pytest.mark.asyncio
    async def test_release(self, session_factory):
        store = SqlDedupeStore(session_factory)
        event = make_event()
        key = dedupe_key(event)
        await store.claim(key, event)
        await store.release(key)

        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(ProcessedWebhook))).scalar_one()
        assert count == 0
        assert await store.claim(key, event) is True

    @pytest.mark.asyncio
    async def test_is_claimed(self, session_factory):
        store = SqlDedupeStore(session_factory)
        event = make_event()
        key = dedupe_key(event)
        assert await store.is_claimed(key) is False
        await store.claim(key, event)
        assert await store.is_claimed(key) is True
        assert await is_superseded(store, make_event(NormalizedEventType.PAYMENT_CREATED)) is True
        await store.release(key)
        assert await store.is_claimed(key) is False
