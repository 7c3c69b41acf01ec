"""Tests for webhook authenticity checks across every adapter."""

import hashlib
import hmac
import json

import httpx
import pytest

from paygate.providers.cinetpay import CinetPayProvider
from paygate.providers.flutterwave import FlutterwaveProvider
from paygate.providers.paystack import PaystackProvider
from paygate.providers.sandbox import SandboxProvider
from paygate.providers.signatures import header, is_fresh, secure_compare
from paygate.providers.stripe import StripeProvider, parse_signature_header

NOW = 1_700_000_000
SECRET = "whsec_test_secret"
BODY = json.dumps({
    "id": "evt_1",
    "type": "payment_intent.succeeded",
    "data": {"object": {"id": "pi_1", "status": "succeeded", "amount": 1050, "currency": "usd",
                        "metadata": {"reference": "ORD-1"}}},
}).encode()


def _client():
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))


def _mutate(body: bytes) -> bytes:
    return body[:10] + bytes([body[10] ^ 0x01]) + body[11:]


def stripe_headers(body: bytes, secret: str = SECRET, timestamp: int = NOW) -> dict:
    signature = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}"}


def paystack_headers(body: bytes, secret: str = SECRET) -> dict:
    return {"x-paystack-signature": hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()}


def flutterwave_headers(body: bytes, secret: str = SECRET) -> dict:
    return {"verif-hash": hashlib.sha256(body + secret.encode()).hexdigest()}


def cinetpay_headers(body: bytes, secret: str = SECRET, timestamp: int = NOW) -> dict:
    signature = hmac.new(secret.encode(), body + str(timestamp).encode(), hashlib.sha256).hexdigest()
    return {"x-cinetpay-signature": signature, "x-cinetpay-timestamp": str(timestamp)}


def stripe(**kwargs):
    kwargs.setdefault("webhook_secret", SECRET)
    return StripeProvider(_client(), clock=lambda: NOW, **kwargs)


def cinetpay(**kwargs):
    kwargs.setdefault("webhook_secret", SECRET)
    return CinetPayProvider(_client(), clock=lambda: NOW, **kwargs)


SIGNED = [
    ("stripe", lambda: stripe(), stripe_headers),
    ("paystack", lambda: PaystackProvider(_client(), secret_key=SECRET), paystack_headers),
    ("flutterwave", lambda: FlutterwaveProvider(_client(), webhook_hash=SECRET), flutterwave_headers),
    ("cinetpay", lambda: cinetpay(), cinetpay_headers),
]


class TestHelpers:
    def test_header_lookup_is_case_insensitive(self):
        assert header({"X-Paystack-Signature": "abc"}, "x-paystack-signature") == "abc"
        assert header({"verif-hash": ["h1", "h2"]}, "VERIF-HASH") == "h1"
        assert header({}, "verif-hash") is None

    def test_secure_compare(self):
        assert secure_compare("abcdef", "ABCDEF")
        assert not secure_compare("abcdef", "abcdee")
        assert not secure_compare("abcdef", "")
        assert not secure_compare("abcdef", None)

    def test_is_fresh(self):
        assert is_fresh(NOW - 300, NOW, 300)
        assert is_fresh(NOW + 300, NOW, 300)
        assert not is_fresh(NOW - 301, NOW, 300)

    def test_parse_stripe_header(self):
        assert parse_signature_header("t=12,v1=aa,v0=zz,v1=bb") == (12, ["aa", "bb"])
        assert parse_signature_header("t=abc,v1=aa") == (None, [])


class TestSignedProviders:
    @pytest.mark.parametrize("name,build,sign", SIGNED, ids=[s[0] for s in SIGNED])
    def test_valid_signature_accepted(self, name, build, sign):
        assert build().validate_webhook_signature(sign(BODY), BODY) is True

    @pytest.mark.parametrize("name,build,sign", SIGNED, ids=[s[0] for s in SIGNED])
    def test_single_mutated_byte_rejected(self, name, build, sign):
        assert build().validate_webhook_signature(sign(BODY), _mutate(BODY)) is False

    @pytest.mark.parametrize("name,build,sign", SIGNED, ids=[s[0] for s in SIGNED])
    def test_wrong_secret_rejected(self, name, build, sign):
        assert build().validate_webhook_signature(sign(BODY, "other-secret"), BODY) is False

    @pytest.mark.parametrize("name,build,sign", SIGNED, ids=[s[0] for s in SIGNED])
    def test_missing_headers_rejected(self, name, build, sign):
        assert build().validate_webhook_signature({}, BODY) is False


class TestMissingSecret:
    def test_unsigned_rejected_by_default(self):
        provider = StripeProvider(_client(), webhook_secret=None)
        assert provider.validate_webhook_signature({}, BODY) is False

    def test_unsigned_allowed_when_enabled(self):
        for provider in (
            StripeProvider(_client(), allow_unsigned=True),
            PaystackProvider(_client(), allow_unsigned=True),
            FlutterwaveProvider(_client(), allow_unsigned=True),
            CinetPayProvider(_client(), allow_unsigned=True),
        ):
            assert provider.validate_webhook_signature({}, BODY) is True

    def test_sandbox_always_valid(self):
        assert SandboxProvider(latency_ms=0).validate_webhook_signature({}, b"anything") is True


class TestStripeReplayWindow:
    def test_old_timestamp_rejected_even_with_matching_hmac(self):
        old = NOW - 301
        assert stripe().validate_webhook_signature(stripe_headers(BODY, timestamp=old), BODY) is False

    def test_future_timestamp_rejected(self):
        assert stripe().validate_webhook_signature(stripe_headers(BODY, timestamp=NOW + 301), BODY) is False

    def test_edge_of_window_accepted(self):
        assert stripe().validate_webhook_signature(stripe_headers(BODY, timestamp=NOW - 300), BODY) is True

    def test_any_of_several_v1_signatures(self):
        good = stripe_headers(BODY)["Stripe-Signature"].split(",")[1]
        headers = {"stripe-signature": f"t={NOW},v1={'0' * 64},{good}"}
        assert stripe().validate_webhook_signature(headers, BODY) is True

    def test_malformed_header(self):
        assert stripe().validate_webhook_signature({"stripe-signature": "garbage"}, BODY) is False


class TestCinetPayFreshness:
    def test_stale_timestamp_rejected(self):
        headers = cinetpay_headers(BODY, timestamp=NOW - 3600)
        assert cinetpay().validate_webhook_signature(headers, BODY) is False

    def test_window_disabled(self):
        headers = cinetpay_headers(BODY, timestamp=NOW - 3600)
        assert cinetpay(tolerance_seconds=0).validate_webhook_signature(headers, BODY) is True

    def test_millisecond_timestamp(self):
        timestamp = NOW * 1000
        signature = hmac.new(SECRET.encode(), BODY + str(timestamp).encode(), hashlib.sha256).hexdigest()
        headers = {"x-cinetpay-signature": signature, "x-cinetpay-timestamp": str(timestamp)}
        assert cinetpay().validate_webhook_signature(headers, BODY) is True

    def test_non_numeric_timestamp(self):
        headers = {**cinetpay_headers(BODY), "x-cinetpay-timestamp": "yesterday"}
        assert cinetpay().validate_webhook_signature(headers, BODY) is False
