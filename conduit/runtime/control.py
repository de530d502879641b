"""
Cooperative cancellation for agent turns.
"""

import asyncio

from conduit.exceptions import CancellationError
from conduit.utils.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """
    One-way cancellation flag shared between a caller and one agent turn.

    Based on asyncio.Event, supports:
    - Synchronous status check (polled at loop, tool and stream boundaries)
    - Async wait for cancellation
    - Recording the cancellation reason

    Once cancelled, a token stays cancelled. Create a new token per turn.

    Examples:
        >>> token = CancellationToken()
        >>> task = asyncio.create_task(agent.run("hello", cancellation=token))
        >>> token.cancel("User pressed stop")
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "Cancelled by user") -> None:
        """Trigger cancellation. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info("cancellation_requested", reason=reason)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise CancellationError if the token has been flipped."""
        if self._event.is_set():
            raise CancellationError()

    async def wait(self) -> None:
        """Async wait for cancellation."""
        await self._event.wait()


def raise_if_cancelled(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


__all__ = ["CancellationToken", "raise_if_cancelled"]
