"""
HTTP plumbing shared by the protocol adapters.

Each adapter owns one HttpTransport (composition, no shared base state):
it pools the httpx connection, maps HTTP failures onto conduit error kinds,
runs the adapter's retry policy and splits Server-Sent-Events streams into
frames while honoring cancellation.
"""

import email.utils
import os
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx
from pydantic import SecretStr

from conduit.exceptions import ApiError, RateLimitError, TransportError
from conduit.runtime.control import CancellationToken, raise_if_cancelled
from conduit.utils.logging import get_logger
from conduit.utils.retry import RETRY_ON_RATE_LIMIT, RetryCallback, SleepFn, build_retrying

logger = get_logger(__name__)


@dataclass
class SSEFrame:
    """One ``data:`` payload and the ``event:`` name that preceded it, if any."""

    data: str
    event: str | None = None


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed is None:
        return None
    return max(parsed.timestamp() - time.time(), 0.0)


def raise_for_status(provider: str, response: httpx.Response, body: str) -> None:
    """Map a non-2xx response onto RateLimitError / ApiError."""
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise RateLimitError(
            message=f"{provider} rate limit exceeded",
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            response_body=body,
        )
    raise ApiError(
        message=f"{provider} API request failed",
        status_code=status,
        response_body=body,
    )


def resolve_api_key(
    explicit: str | SecretStr | None,
    configured: SecretStr | None,
    env_var: str,
) -> str | None:
    """Resolve API key: argument > settings > vendor env var."""
    if isinstance(explicit, SecretStr):
        return explicit.get_secret_value()
    if explicit:
        return explicit
    if configured is not None:
        return configured.get_secret_value()
    return os.getenv(env_var)


class HttpTransport:
    """Pooled HTTP client plus retry policy for one adapter instance."""

    def __init__(
        self,
        provider: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        retry_policy: Any = RETRY_ON_RATE_LIMIT,
        max_attempts: int | None = None,
        on_retry: RetryCallback | None = None,
        sleep: SleepFn | None = None,
    ):
        from conduit.config import settings

        self.provider = provider
        self.retry_policy = retry_policy
        self.max_attempts = settings.retry_max_attempts if max_attempts is None else max_attempts
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.on_retry = on_retry
        self._sleep = sleep

        if http_client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout or settings.http_timeout)
            )
            self._owns_client = True
        else:
            self._client = http_client
            self._owns_client = False

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    def _retrying(self):
        return build_retrying(
            self.provider,
            retry_policy=self.retry_policy,
            max_attempts=self.max_attempts,
            on_retry=self.on_retry,
            sleep=self._sleep,
        )

    async def post_json(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        cancellation: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON response."""
        raise_if_cancelled(cancellation)

        async for attempt in self._retrying():
            with attempt:
                raise_if_cancelled(cancellation)
                try:
                    response = await self._client.post(url, headers=headers, json=body)
                except httpx.TransportError as e:
                    raise TransportError(
                        f"{self.provider} connection failed", original_error=e
                    ) from e
                raise_for_status(self.provider, response, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                message=f"{self.provider} returned invalid JSON",
                status_code=response.status_code,
                response_body=response.text,
                original_error=e,
            ) from e

    async def open_stream(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        cancellation: CancellationToken | None = None,
    ) -> httpx.Response:
        """
        Open a streaming POST and return the response once its status is OK.

        Only connection setup is retried; the caller must close the response.
        """
        raise_if_cancelled(cancellation)

        async for attempt in self._retrying():
            with attempt:
                raise_if_cancelled(cancellation)
                request = self._client.build_request("POST", url, headers=headers, json=body)
                try:
                    response = await self._client.send(request, stream=True)
                except httpx.TransportError as e:
                    raise TransportError(
                        f"{self.provider} connection failed", original_error=e
                    ) from e
                if response.status_code >= 400:
                    try:
                        error_body = (await response.aread()).decode("utf-8", errors="replace")
                    finally:
                        await response.aclose()
                    raise_for_status(self.provider, response, error_body)

        return response

    async def iter_sse(
        self,
        response: httpx.Response,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[SSEFrame]:
        """
        Split an SSE body into frames, one per ``data:`` line.

        Stops reading and raises CancellationError as soon as the token is
        set; frames already read but not yet yielded are dropped.
        """
        event: str | None = None
        try:
            async for line in response.aiter_lines():
                raise_if_cancelled(cancellation)
                line = line.rstrip("\r")
                if not line:
                    event = None
                    continue
                if line.startswith(":"):
                    continue
                if line.startswith("event:"):
                    event = line[len("event:"):].strip()
                    continue
                if line.startswith("data:"):
                    yield SSEFrame(data=line[len("data:"):].strip(), event=event)
                    event = None
        except httpx.TransportError as e:
            raise TransportError(f"{self.provider} stream interrupted", original_error=e) from e
        finally:
            await response.aclose()

    async def close(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()


__all__ = [
    "HttpTransport",
    "SSEFrame",
    "parse_retry_after",
    "raise_for_status",
    "resolve_api_key",
]
