"""Pure helpers for webhook authenticity checks. No I/O, no logging."""

import hashlib
import hmac
from collections.abc import Mapping
from typing import Any, Optional, Union

BytesLike = Union[bytes, str]


def _to_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def hmac_hex(secret: BytesLike, message: BytesLike, digestmod=hashlib.sha256) -> str:
    return hmac.new(_to_bytes(secret), _to_bytes(message), digestmod).hexdigest()


def sha256_hex(message: BytesLike) -> str:
    return hashlib.sha256(_to_bytes(message)).hexdigest()


def secure_compare(expected: str, received: Optional[str]) -> bool:
    """Constant-time comparison of two hex digests."""
    if not received:
        return False
    return hmac.compare_digest(expected.lower().encode("ascii"), received.strip().lower().encode("ascii", "ignore"))


def header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup over a plain mapping."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            if isinstance(value, (list, tuple)):
                value = value[0] if value else None
            return str(value) if value is not None else None
    return None


def is_fresh(timestamp: int, now: float, tolerance_seconds: int) -> bool:
    """True when timestamp lies within tolerance of now, in either direction."""
    return abs(now - timestamp) <= tolerance_seconds
