import asyncio
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from conduit.exceptions import ApiError, RateLimitError, TransportError
from conduit.utils.logging import get_logger

logger = get_logger(__name__)

# (attempt, delay_seconds, error)
RetryCallback = Callable[[int, float, BaseException], Any]
SleepFn = Callable[[float], Awaitable[None]]


class wait_retry_after(wait_base):
    """Honor a RateLimitError's retry-after value, else fall back to backoff."""

    def __init__(self, fallback: wait_base | None = None):
        self.fallback = fallback or wait_exponential(multiplier=1, min=1, max=10)

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return max(float(error.retry_after), 0.0)
        return self.fallback(retry_state)


def _is_server_error(error: BaseException) -> bool:
    return isinstance(error, ApiError) and error.status_code >= 500


# Pass-through adapter: 429 and connection failures
RETRY_ON_RATE_LIMIT = retry_if_exception_type((RateLimitError, TransportError))

# Anthropic / Gemini: additionally 5xx
RETRY_ON_RATE_LIMIT_OR_SERVER_ERROR = RETRY_ON_RATE_LIMIT | retry_if_exception(
    _is_server_error
)


def build_retrying(
    provider: str,
    retry_policy: Any = RETRY_ON_RATE_LIMIT,
    max_attempts: int = 3,
    on_retry: RetryCallback | None = None,
    sleep: SleepFn | None = None,
) -> AsyncRetrying:
    """
    Build the retry controller used around one provider request.

    Usage:
        async for attempt in build_retrying("openai"):
            with attempt:
                response = await do_request()
    """

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "llm_retry",
            provider=provider,
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            delay=delay,
            error=str(error),
            error_type=type(error).__name__,
        )
        if on_retry is not None and error is not None:
            on_retry(retry_state.attempt_number, delay, error)

    return AsyncRetrying(
        sleep=sleep or asyncio.sleep,
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait_retry_after(),
        retry=retry_policy,
        before_sleep=before_sleep,
    )


__all__ = [
    "RetryCallback",
    "SleepFn",
    "wait_retry_after",
    "build_retrying",
    "RETRY_ON_RATE_LIMIT",
    "RETRY_ON_RATE_LIMIT_OR_SERVER_ERROR",
]
