"""
Observable run state.

Other layers (UI, logs) either subscribe with a callback or consume
``changes()`` as an async stream of snapshots.
"""

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

from pydantic import BaseModel, ConfigDict, Field

from conduit.utils.logging import get_logger

logger = get_logger(__name__)


class RunStateSnapshot(BaseModel):
    """Immutable view of the run state at one point in time."""

    model_config = ConfigDict(frozen=True)

    is_running: bool = False
    current_step: str = ""
    error_message: str | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


StateListener = Callable[[RunStateSnapshot], None]


class RunState:
    """
    Tracks whether an agent is running, what it is doing and how it ended.

    Examples:
        >>> state = RunState()
        >>> unsubscribe = state.subscribe(lambda s: print(s.current_step))
        >>> state.start_run()
        Initializing agent run...
        >>> unsubscribe()
    """

    def __init__(self):
        self._snapshot = RunStateSnapshot()
        self._listeners: list[StateListener] = []
        self._queues: list[asyncio.Queue[RunStateSnapshot]] = []

    @property
    def is_running(self) -> bool:
        return self._snapshot.is_running

    @property
    def current_step(self) -> str:
        return self._snapshot.current_step

    @property
    def error_message(self) -> str | None:
        return self._snapshot.error_message

    def snapshot(self) -> RunStateSnapshot:
        return self._snapshot

    def start_run(self) -> None:
        self._update(is_running=True, current_step="Initializing agent run...", error_message=None)

    def update_step(self, step: str) -> None:
        self._update(is_running=self._snapshot.is_running, current_step=step,
                     error_message=self._snapshot.error_message)

    def complete_run(self) -> None:
        self._update(is_running=False, current_step="Run completed", error_message=None)

    def fail_run(self, error: str) -> None:
        self._update(is_running=False, current_step="Run failed", error_message=error)

    def reset(self) -> None:
        self._update(is_running=False, current_step="", error_message=None)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def changes(self) -> AsyncIterator[RunStateSnapshot]:
        """Yield every snapshot published after the call, until the consumer stops."""
        queue: asyncio.Queue[RunStateSnapshot] = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(queue)

    def _update(self, is_running: bool, current_step: str, error_message: str | None) -> None:
        self._snapshot = RunStateSnapshot(
            is_running=is_running,
            current_step=current_step,
            error_message=error_message,
        )
        logger.debug(
            "run_state_changed",
            is_running=is_running,
            current_step=current_step,
            error=error_message,
        )
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception as e:
                logger.warning("run_state_listener_failed", error=str(e), exc_info=True)
        for queue in self._queues:
            queue.put_nowait(self._snapshot)


__all__ = ["RunState", "RunStateSnapshot", "StateListener"]
