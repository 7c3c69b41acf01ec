"""
Shared base for providers reached over HTTPS.

Owns the injected httpx.AsyncClient and turns every HTTP outcome into a
ProviderError so callers never see transport exceptions.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from paygate.models.enums import ErrorCode, ProviderEnvironment
from paygate.providers.base import PaymentProvider, ProviderHealthStatus
from paygate.providers.errors import PermanentError, ProviderError, RateLimitError

logger = logging.getLogger("paygate.providers")


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "description"):
            value = body.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if isinstance(value, str) and value:
                return value
    return fallback


class HttpPaymentProvider(PaymentProvider):
    """PaymentProvider backed by a JSON/HTTPS API."""

    health_path = "/"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        environment: ProviderEnvironment = ProviderEnvironment.PRODUCTION,
        timeout: float = 15.0,
        allow_unsigned: bool = False,
    ):
        self.http = http_client
        self.base_url = base_url.rstrip("/")
        self.environment = environment
        self.timeout = timeout
        self.allow_unsigned = allow_unsigned

    def auth_headers(self) -> dict[str, str]:
        return {}

    def classify_client_error(self, body: Any) -> ErrorCode:
        """Error code for a 4xx answer other than 401/403/429."""
        return ErrorCode.INVALID_REQUEST

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        reference: Optional[str] = None,
    ) -> dict[str, Any]:
        """Issue one request and return the decoded JSON object."""
        url = f"{self.base_url}{path}"
        merged = {**self.auth_headers(), **(headers or {})}
        try:
            response = await self.http.request(
                method,
                url,
                json=json,
                data=data,
                params=params,
                headers=merged,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"{self.name.value} request timed out",
                code=ErrorCode.TIMEOUT,
                provider=self.name,
                retryable=True,
                status_code=504,
                reference=reference,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"{self.name.value} transport error: {type(e).__name__}",
                code=ErrorCode.NETWORK_ERROR,
                provider=self.name,
                retryable=True,
                status_code=502,
                reference=reference,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        status = response.status_code
        if status == 429:
            raise RateLimitError(
                f"{self.name.value} rate limited",
                provider=self.name,
                retry_after=_retry_after(response),
                raw=body,
            )
        if status >= 500:
            raise ProviderError(
                _error_message(body, f"{self.name.value} unavailable ({status})"),
                code=ErrorCode.PROVIDER_UNAVAILABLE,
                provider=self.name,
                retryable=True,
                status_code=502,
                raw=body,
                reference=reference,
            )
        if status in (401, 403):
            raise PermanentError(
                f"{self.name.value} rejected credentials",
                code=ErrorCode.AUTHENTICATION_FAILED,
                provider=self.name,
                status_code=502,
                raw=body,
                reference=reference,
            )
        if status >= 400:
            raise PermanentError(
                _error_message(body, f"{self.name.value} rejected request ({status})"),
                code=self.classify_client_error(body),
                provider=self.name,
                status_code=400,
                raw=body,
                reference=reference,
            )
        if not isinstance(body, dict):
            raise ProviderError(
                f"{self.name.value} returned a non-JSON response",
                code=ErrorCode.UNKNOWN_ERROR,
                provider=self.name,
                retryable=True,
                status_code=502,
                reference=reference,
            )
        return body

    def normalize_error(self, error: BaseException) -> ProviderError:
        if isinstance(error, httpx.TimeoutException):
            return ProviderError(
                f"{self.name.value} request timed out",
                code=ErrorCode.TIMEOUT,
                provider=self.name,
                retryable=True,
            )
        if isinstance(error, httpx.HTTPError):
            return ProviderError(
                f"{self.name.value} transport error",
                code=ErrorCode.NETWORK_ERROR,
                provider=self.name,
                retryable=True,
            )
        return super().normalize_error(error)

    async def health_check(self) -> ProviderHealthStatus:
        """One timed request against the rail. Any non-5xx answer means reachable."""
        started = time.perf_counter()
        online = False
        message = None
        try:
            response = await self.http.get(
                f"{self.base_url}{self.health_path}",
                headers=self.auth_headers(),
                timeout=self.timeout,
            )
            online = response.status_code < 500
            if not online:
                message = f"HTTP {response.status_code}"
        except httpx.HTTPError as e:
            message = type(e).__name__
        latency_ms = round((time.perf_counter() - started) * 1000, 1)
        if not online:
            logger.warning("Health check failed for %s: %s", self.name.value, message)
        return ProviderHealthStatus(
            provider=self.name,
            environment=self.environment,
            online=online,
            checked_at=datetime.now(timezone.utc),
            latency_ms=latency_ms,
            message=message,
        )
