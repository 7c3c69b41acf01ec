"""
Structured provider errors.

Every failure that leaves a provider adapter is a ProviderError carrying a
stable code and a retryable flag, so the router, the retry loop and the
API layer can branch without inspecting transport exceptions.
"""

from typing import Any, Optional

from paygate.models.enums import ErrorCode, ProviderName


class ProviderError(Exception):
    """Base exception for payment provider errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        provider: Optional[ProviderName] = None,
        retryable: bool = True,
        status_code: int = 500,
        raw: Any = None,
        reference: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code
        self.raw = raw
        self.reference = reference

    def to_dict(self) -> dict[str, Any]:
        """Caller-facing shape. Never includes the raw provider payload."""
        return {
            "provider": self.provider.value if self.provider else None,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"ProviderError(code={self.code.value}, provider={self.provider}, retryable={self.retryable})"


class RateLimitError(ProviderError):
    """429 Too Many Requests from the payment provider."""

    def __init__(
        self,
        message: str = "Rate limited",
        provider: Optional[ProviderName] = None,
        retry_after: Optional[float] = None,
        raw: Any = None,
    ):
        super().__init__(
            message,
            code=ErrorCode.RATE_LIMITED,
            provider=provider,
            retryable=True,
            status_code=429,
            raw=raw,
        )
        self.retry_after = retry_after


class PermanentError(ProviderError):
    """Non-retryable error (e.g. invalid request, unsupported operation)."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_REQUEST,
        provider: Optional[ProviderName] = None,
        status_code: int = 400,
        raw: Any = None,
        reference: Optional[str] = None,
    ):
        super().__init__(
            message,
            code=code,
            provider=provider,
            retryable=False,
            status_code=status_code,
            raw=raw,
            reference=reference,
        )
