"""Tests for the webhook pipeline: validate, parse, normalize, dedupe, hand-off."""

import asyncio
import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from paygate.audit.logger import AuditTrail
from paygate.models.enums import (
    NormalizedEventType,
    NormalizedStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderName,
    WebhookOutcome,
)
from paygate.models.records import AuditLog
from paygate.providers.base import ProviderPaymentRequest
from paygate.providers.paystack import PaystackProvider
from paygate.routing.registry import ProviderRegistry
from paygate.webhooks.dedupe import MemoryDedupeStore, SqlDedupeStore
from paygate.webhooks.handler import WebhookHandler
from paygate.webhooks.nonces import NonceCache
from paygate.webhooks.sink import CallbackEventSink, QueueEventSink

PAYSTACK_SECRET = "sk_test_paystack"


async def audit_rows(session_factory, action=None):
    async with session_factory() as session:
        query = select(AuditLog).order_by(AuditLog.id)
        if action:
            query = query.where(AuditLog.action == action)
        return list((await session.execute(query)).scalars())


class BrokenDedupe(MemoryDedupeStore):
    async def claim(self, key, event=None):
        raise ConnectionError("store down")


class TestSandboxFlow:
    @pytest.mark.asyncio
    async def test_failed_payment_applied(self, handler, ledger, sandbox_body, session_factory):
        result = await handler.handle("sandbox", {}, sandbox_body(reference="TX-1", status="FAILED"))

        assert result.outcome == WebhookOutcome.APPLIED
        assert result.http_status == 200
        assert result.dedupe_key == "SANDBOX:TX-1:PAYMENT_TERMINAL"
        assert len(ledger.events) == 1
        event = ledger.events[0]
        assert event.event_type == NormalizedEventType.PAYMENT_FAILED
        assert event.status == NormalizedStatus.FAILED
        assert event.reference == "TX-1"

        rows = await audit_rows(session_factory, "webhook_applied")
        assert len(rows) == 1
        assert rows[0].provider == "SANDBOX"
        assert rows[0].reference == "TX-1"
        assert rows[0].needs_review is False

    @pytest.mark.asyncio
    async def test_initiated_payment_webhook_matches_outcome(self, sandbox, handler, ledger):
        request = ProviderPaymentRequest(
            reference="TX-1",
            amount=Decimal("50"),
            currency="USD",
            method=PaymentMethod.CARD,
            webhook_url="http://localhost:8000/webhooks/sandbox",
        )
        response = await sandbox.initiate_payment(request)
        assert response.status == PaymentStatus.FAILED

        body = sandbox.simulated_webhook(request, response)
        first = await handler.handle("sandbox", {}, body)
        second = await handler.handle("sandbox", {}, body)

        assert first.outcome == WebhookOutcome.APPLIED
        assert second.outcome == WebhookOutcome.DUPLICATE
        assert len(ledger.events) == 1
        assert ledger.events[0].status.value == response.status.value
        assert ledger.events[0].provider_reference == response.provider_reference

    @pytest.mark.asyncio
    async def test_provider_name_is_case_insensitive(self, handler, ledger, sandbox_body):
        result = await handler.handle("SandBox", {}, sandbox_body())
        assert result.outcome == WebhookOutcome.APPLIED

    @pytest.mark.asyncio
    async def test_redeliveries_hand_off_once(self, handler, ledger, sandbox_body):
        body = sandbox_body(reference="TX-2", status="SUCCESS")
        results = [await handler.handle("sandbox", {}, body) for _ in range(5)]

        assert [r.outcome for r in results] == [WebhookOutcome.APPLIED] + [WebhookOutcome.DUPLICATE] * 4
        assert all(r.http_status == 200 for r in results)
        assert len(ledger.events) == 1

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_hand_off_once(self, registry, ledger, sandbox_body):
        handler = WebhookHandler(registry, MemoryDedupeStore(), CallbackEventSink(ledger.apply))
        body = sandbox_body(reference="TX-3", status="SUCCESS")
        results = await asyncio.gather(*(handler.handle("sandbox", {}, body) for _ in range(20)))

        outcomes = [r.outcome for r in results]
        assert outcomes.count(WebhookOutcome.APPLIED) == 1
        assert outcomes.count(WebhookOutcome.DUPLICATE) == 19
        assert len(ledger.events) == 1

    @pytest.mark.asyncio
    async def test_terminal_state_reached_once(self, handler, ledger, sandbox_body):
        await handler.handle("sandbox", {}, sandbox_body(reference="TX-4", status="SUCCESS"))
        late = await handler.handle("sandbox", {}, sandbox_body(reference="TX-4", status="FAILED"))

        assert late.outcome == WebhookOutcome.DUPLICATE
        assert [e.status for e in ledger.events] == [NormalizedStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_pending_then_terminal_both_applied(self, handler, ledger, sandbox_body):
        await handler.handle("sandbox", {}, sandbox_body(reference="TX-5", status="TIMEOUT"))
        await handler.handle("sandbox", {}, sandbox_body(reference="TX-5", status="SUCCESS"))
        assert [e.event_type for e in ledger.events] == [
            NormalizedEventType.PAYMENT_CREATED,
            NormalizedEventType.PAYMENT_SUCCESS,
        ]

    @pytest.mark.asyncio
    async def test_late_pending_after_terminal_is_duplicate(self, handler, ledger, sandbox_body, session_factory):
        await handler.handle("sandbox", {}, sandbox_body(reference="TX-7", status="SUCCESS"))
        late = await handler.handle("sandbox", {}, sandbox_body(reference="TX-7", status="TIMEOUT"))

        assert late.outcome == WebhookOutcome.DUPLICATE
        assert late.http_status == 200
        assert late.dedupe_key == "SANDBOX:TX-7:PAYMENT_CREATED"
        assert [e.status for e in ledger.events] == [NormalizedStatus.SUCCESS]
        assert len(await audit_rows(session_factory, "webhook_superseded")) == 1

    @pytest.mark.asyncio
    async def test_every_audit_entry_carries_fingerprint(self, handler, sandbox_body, session_factory):
        body = sandbox_body(reference="TX-8", status="SUCCESS")
        await handler.handle("sandbox", {}, body)
        await handler.handle("sandbox", {}, body)

        expected = hashlib.sha256(b"SANDBOX:" + body).hexdigest()
        rows = await audit_rows(session_factory)
        assert [r.action for r in rows] == ["webhook_applied", "webhook_duplicate"]
        assert {json.loads(r.details)["fingerprint"] for r in rows} == {expected}

    @pytest.mark.asyncio
    async def test_pending_refund_ignored(self, handler, ledger, sandbox_body):
        body = sandbox_body(event="sandbox.refund", status="PROCESSING")
        result = await handler.handle("sandbox", {}, body)
        assert result.outcome == WebhookOutcome.IGNORED
        assert result.http_status == 200
        assert ledger.events == []


class TestRejections:
    @pytest.mark.asyncio
    async def test_unknown_provider(self, handler, ledger, session_factory):
        result = await handler.handle("mpesa", {}, b"{}")
        assert result.outcome == WebhookOutcome.UNKNOWN_PROVIDER
        assert result.http_status == 404
        assert not result.acknowledged
        assert ledger.events == []
        assert len(await audit_rows(session_factory, "webhook_unknown_provider")) == 1

    @pytest.mark.asyncio
    async def test_bad_signature_never_parses(self, ledger, session_factory):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        provider = PaystackProvider(httpx.AsyncClient(transport=transport), secret_key=PAYSTACK_SECRET)
        handler = WebhookHandler(
            ProviderRegistry([provider]),
            MemoryDedupeStore(),
            CallbackEventSink(ledger.apply),
            AuditTrail(session_factory),
        )
        body = json.dumps({"event": "charge.success", "data": {"reference": "ORD-1", "status": "success"}}).encode()

        with patch.object(PaystackProvider, "parse_webhook") as parse:
            result = await handler.handle("paystack", {"x-paystack-signature": "00" * 64}, body)

        assert result.outcome == WebhookOutcome.REJECTED
        assert result.http_status == 401
        parse.assert_not_called()
        assert ledger.events == []
        rows = await audit_rows(session_factory, "webhook_rejected")
        assert json.loads(rows[0].details)["error"] == "SIGNATURE_INVALID"

    @pytest.mark.asyncio
    async def test_signed_paystack_applied(self, ledger, session_factory):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        provider = PaystackProvider(httpx.AsyncClient(transport=transport), secret_key=PAYSTACK_SECRET)
        handler = WebhookHandler(ProviderRegistry([provider]), MemoryDedupeStore(), CallbackEventSink(ledger.apply))
        body = json.dumps({"event": "charge.success", "data": {
            "reference": "ORD-1", "status": "success", "amount": 150000, "currency": "NGN",
        }}).encode()
        signature = hmac.new(PAYSTACK_SECRET.encode(), body, hashlib.sha512).hexdigest()

        result = await handler.handle("paystack", {"X-Paystack-Signature": signature}, body)

        assert result.outcome == WebhookOutcome.APPLIED
        assert ledger.events[0].provider == ProviderName.PAYSTACK
        assert str(ledger.events[0].amount) == "1500.00"

    @pytest.mark.asyncio
    async def test_unparseable_body_acknowledged_for_review(self, handler, ledger, session_factory):
        raw = b"{not json"
        result = await handler.handle("sandbox", {}, raw)

        assert result.outcome == WebhookOutcome.PARSE_FAILED
        assert result.http_status == 200
        assert ledger.events == []
        rows = await audit_rows(session_factory, "webhook_parse_failed")
        assert len(rows) == 1
        assert rows[0].needs_review is True
        details = json.loads(rows[0].details)
        assert details["error"] == "PARSE_FAILED"
        assert details["body_sha256"] == hashlib.sha256(raw).hexdigest()

    @pytest.mark.asyncio
    async def test_missing_reference_acknowledged(self, handler, ledger, sandbox_body):
        result = await handler.handle("sandbox", {}, sandbox_body(reference=None))
        assert result.outcome == WebhookOutcome.PARSE_FAILED
        assert ledger.events == []

    @pytest.mark.asyncio
    async def test_out_of_range_timestamp_is_dropped(self, handler, ledger, sandbox_body):
        result = await handler.handle("sandbox", {}, sandbox_body(reference="TX-9", occurred_at=1e20))
        assert result.outcome == WebhookOutcome.APPLIED
        assert ledger.events[0].occurred_at is None

    @pytest.mark.asyncio
    async def test_unexpected_parse_error_acknowledged(self, sandbox, handler, ledger, sandbox_body, session_factory):
        with patch.object(sandbox, "parse_webhook", side_effect=KeyError("status")):
            result = await handler.handle("sandbox", {}, sandbox_body())

        assert result.outcome == WebhookOutcome.PARSE_FAILED
        assert result.http_status == 200
        assert ledger.events == []
        rows = await audit_rows(session_factory, "webhook_parse_failed")
        assert rows[0].needs_review is True
        assert json.loads(rows[0].details)["error"] == "UNKNOWN_ERROR"


class TestReplayProtection:
    @pytest.fixture
    def guarded(self, registry, ledger, session_factory):
        return WebhookHandler(
            registry,
            MemoryDedupeStore(),
            CallbackEventSink(ledger.apply),
            AuditTrail(session_factory),
            NonceCache(ttl_seconds=600),
        )

    @pytest.mark.asyncio
    async def test_reused_nonce_rejected(self, guarded, ledger, sandbox_body, session_factory):
        first = await guarded.handle("sandbox", {"X-Nonce": "n-1"}, sandbox_body(reference="N-1"))
        replay = await guarded.handle("sandbox", {"X-Nonce": "n-1"}, sandbox_body(reference="N-2"))

        assert first.outcome == WebhookOutcome.APPLIED
        assert replay.outcome == WebhookOutcome.REJECTED
        assert replay.http_status == 401
        assert [e.reference for e in ledger.events] == ["N-1"]
        rows = await audit_rows(session_factory, "webhook_rejected")
        details = json.loads(rows[0].details)
        assert details["error"] == "AUTHENTICATION_FAILED"
        assert details["fingerprint"] == hashlib.sha256(b"SANDBOX:" + sandbox_body(reference="N-2")).hexdigest()

    @pytest.mark.asyncio
    async def test_idempotency_key_header_is_a_nonce(self, guarded, sandbox_body):
        await guarded.handle("sandbox", {"Idempotency-Key": "k-1"}, sandbox_body(reference="N-3"))
        replay = await guarded.handle("sandbox", {"idempotency-key": "k-1"}, sandbox_body(reference="N-4"))
        assert replay.http_status == 401

    @pytest.mark.asyncio
    async def test_deliveries_without_nonce_are_deduplicated(self, guarded, ledger, sandbox_body):
        body = sandbox_body(reference="N-5")
        results = [await guarded.handle("sandbox", {}, body) for _ in range(2)]
        assert [r.outcome for r in results] == [WebhookOutcome.APPLIED, WebhookOutcome.DUPLICATE]
        assert len(ledger.events) == 1

    @pytest.mark.asyncio
    async def test_nonce_released_after_503(self, guarded, ledger, sandbox_body):
        body = sandbox_body(reference="N-6")
        ledger.fail_next = True

        failed = await guarded.handle("sandbox", {"X-Nonce": "n-6"}, body)
        retried = await guarded.handle("sandbox", {"X-Nonce": "n-6"}, body)

        assert failed.http_status == 503
        assert retried.outcome == WebhookOutcome.APPLIED
        assert len(ledger.events) == 1

    @pytest.mark.asyncio
    async def test_bad_signature_does_not_consume_nonce(self, ledger):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        provider = PaystackProvider(httpx.AsyncClient(transport=transport), secret_key=PAYSTACK_SECRET)
        registry = ProviderRegistry([provider])
        nonces = NonceCache()
        guarded = WebhookHandler(registry, MemoryDedupeStore(), CallbackEventSink(ledger.apply), nonces=nonces)

        result = await guarded.handle(
            "paystack", {"X-Paystack-Signature": "0" * 128, "X-Nonce": "n-7"}, b"{}"
        )
        assert result.http_status == 401
        assert len(nonces) == 0


class TestHandOffFailures:
    @pytest.mark.asyncio
    async def test_sink_failure_releases_claim(self, handler, ledger, dedupe, sandbox_body, session_factory):
        body = sandbox_body(reference="TX-6", status="SUCCESS")
        ledger.fail_next = True

        failed = await handler.handle("sandbox", {}, body)
        assert failed.outcome == WebhookOutcome.FAILED
        assert failed.http_status == 503
        assert failed.dedupe_key not in dedupe
        assert len(await audit_rows(session_factory, "webhook_handoff_failed")) == 1

        retried = await handler.handle("sandbox", {}, body)
        assert retried.outcome == WebhookOutcome.APPLIED
        assert len(ledger.events) == 1

    @pytest.mark.asyncio
    async def test_dedupe_store_down(self, registry, ledger, sandbox_body):
        handler = WebhookHandler(registry, BrokenDedupe(), CallbackEventSink(ledger.apply))
        result = await handler.handle("sandbox", {}, sandbox_body())
        assert result.outcome == WebhookOutcome.FAILED
        assert result.http_status == 503
        assert ledger.events == []

    @pytest.mark.asyncio
    async def test_full_queue_answers_503(self, registry, sandbox_body):
        sink = QueueEventSink(maxsize=1)
        handler = WebhookHandler(registry, MemoryDedupeStore(), sink)

        first = await handler.handle("sandbox", {}, sandbox_body(reference="Q-1"))
        second = await handler.handle("sandbox", {}, sandbox_body(reference="Q-2"))
        assert first.outcome == WebhookOutcome.APPLIED
        assert second.outcome == WebhookOutcome.FAILED
        assert second.http_status == 503

    @pytest.mark.asyncio
    async def test_audit_outage_does_not_change_outcome(self, registry, ledger, sandbox_body):
        class BrokenFactory:
            def __call__(self):
                raise OperationalError("INSERT", {}, Exception("disk full"))

        handler = WebhookHandler(
            registry, MemoryDedupeStore(), CallbackEventSink(ledger.apply), AuditTrail(BrokenFactory())
        )
        result = await handler.handle("sandbox", {}, sandbox_body())
        assert result.outcome == WebhookOutcome.APPLIED
        assert len(ledger.events) == 1


class TestQueueSink:
    @pytest.mark.asyncio
    async def test_consumer_receives_events(self, registry, ledger, sandbox_body):
        sink = QueueEventSink(maxsize=10)
        consumer = asyncio.create_task(sink.run(ledger.apply))
        handler = WebhookHandler(registry, MemoryDedupeStore(), sink)
        try:
            await handler.handle("sandbox", {}, sandbox_body(reference="Q-1"))
            await handler.handle("sandbox", {}, sandbox_body(reference="Q-2"))
            await asyncio.wait_for(sink.drain(), 1)
        finally:
            consumer.cancel()
        assert [e.reference for e in ledger.events] == ["Q-1", "Q-2"]

    @pytest.mark.asyncio
    async def test_ledger_failure_is_retried(self, registry, ledger, sandbox_body):
        dedupe = MemoryDedupeStore()
        sink = QueueEventSink(maxsize=10, dedupe=dedupe, retry_delay=0)
        consumer = asyncio.create_task(sink.run(ledger.apply))
        handler = WebhookHandler(registry, dedupe, sink)
        ledger.fail_next = True
        try:
            await handler.handle("sandbox", {}, sandbox_body(reference="Q-1"))
            await handler.handle("sandbox", {}, sandbox_body(reference="Q-2"))
            await asyncio.wait_for(sink.drain(), 1)
        finally:
            consumer.cancel()
        assert [e.reference for e in ledger.events] == ["Q-1", "Q-2"]
        assert "SANDBOX:Q-1:PAYMENT_TERMINAL" in dedupe

    @pytest.mark.asyncio
    async def test_exhausted_ledger_attempts_allow_redelivery(self, registry, sandbox_body, session_factory):
        applied = []
        failures = {"left": 2}

        async def flaky_ledger(event):
            if failures["left"]:
                failures["left"] -= 1
                raise RuntimeError("ledger unavailable")
            applied.append(event)

        dedupe = SqlDedupeStore(session_factory)
        sink = QueueEventSink(maxsize=10, dedupe=dedupe, max_attempts=2, retry_delay=0)
        consumer = asyncio.create_task(sink.run(flaky_ledger))
        handler = WebhookHandler(registry, dedupe, sink)
        body = sandbox_body(reference="Q-3", status="SUCCESS")
        try:
            first = await handler.handle("sandbox", {}, body)
            await asyncio.wait_for(sink.drain(), 1)
            assert first.outcome == WebhookOutcome.APPLIED
            assert applied == []
            assert await dedupe.is_claimed(first.dedupe_key) is False

            redelivered = await handler.handle("sandbox", {}, body)
            await asyncio.wait_for(sink.drain(), 1)
        finally:
            consumer.cancel()
        assert redelivered.outcome == WebhookOutcome.APPLIED
        assert [e.reference for e in applied] == ["Q-3"]
        assert await dedupe.is_claimed(redelivered.dedupe_key) is True
