"""
Replay protection for inbound webhooks.

A delivery that carries a nonce header (x-nonce, nonce or idempotency-key)
may be accepted once per TTL window. Entries expire in insertion order, so
the oldest entry is always at the front of the map.
"""

import hashlib
import time
from collections import OrderedDict
from typing import Callable, Optional

from paygate.providers.base import Headers
from paygate.providers.signatures import header

NONCE_HEADERS = ("x-nonce", "nonce", "idempotency-key")


def delivery_fingerprint(provider: str, raw_body: bytes) -> str:
    """sha256 of "PROVIDER:" + body, recorded on every audit entry of a delivery."""
    return hashlib.sha256(f"{provider}:".encode("utf-8") + raw_body).hexdigest()


def nonce_from(headers: Headers) -> Optional[str]:
    for name in NONCE_HEADERS:
        value = header(headers, name)
        if value and value.strip():
            return value.strip()
    return None


class NonceCache:
    """Bounded, TTL-expiring set of seen nonces. Not shared across processes."""

    def __init__(
        self,
        ttl_seconds: float = 600,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._expires: OrderedDict[str, float] = OrderedDict()

    def check_and_add(self, key: str) -> bool:
        """True if key was unseen (and is now recorded), False on a replay."""
        now = self.clock()
        self._purge(now)
        if key in self._expires:
            return False
        while len(self._expires) >= self.max_entries:
            self._expires.popitem(last=False)
        self._expires[key] = now + self.ttl_seconds
        return True

    def discard(self, key: str) -> None:
        self._expires.pop(key, None)

    def _purge(self, now: float) -> None:
        while self._expires:
            key, expires_at = next(iter(self._expires.items()))
            if expires_at > now:
                return
            del self._expires[key]

    def __contains__(self, key: str) -> bool:
        expires_at = self._expires.get(key)
        return expires_at is not None and expires_at > self.clock()

    def __len__(self) -> int:
        return len(self._expires)
