from datetime import datetime, timezone

from pydantic import BaseModel, Field


class AgentStateCheckpoint(BaseModel):
    """
    Durable snapshot of an in-flight run.

    Written after each state-changing step and cleared on completion or
    cancellation; a leftover checkpoint means the process died mid-run.
    """

    is_running: bool = True
    current_step: str = ""
    iteration_count: int = Field(default=0, ge=0)
    error_message: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["AgentStateCheckpoint"]
