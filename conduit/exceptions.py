"""
Error kinds raised by conduit.

Adapters raise TransportError / ApiError / RateLimitError, the agent loop raises
CancellationError / IterationLimitExceededError / PromptTooLongError.
ToolExecutionError never leaves the loop: the tool executor hands it to
``on_tool_error`` and turns the failure into a tool result.
"""


class ConduitError(Exception):
    """Base exception for all conduit errors."""

    def __init__(self, message: str, original_error: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error is not None:
            return f"{self.message} (caused by {self.original_error!r})"
        return self.message


class TransportError(ConduitError):
    """Connection-level failure talking to a provider."""

    pass


class ApiError(ConduitError):
    """Provider answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: str | None = None,
        original_error: BaseException | None = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        return f"{self.message} (status {self.status_code})"


class RateLimitError(ApiError):
    """HTTP 429 from a provider."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message, status_code=429, response_body=response_body)
        self.retry_after = retry_after


class ToolExecutionError(ConduitError):
    """A tool failed. Caught at the dispatch site and fed back to the model."""

    def __init__(self, message: str, tool_name: str, original_error: BaseException | None = None):
        super().__init__(message, original_error)
        self.tool_name = tool_name


class CancellationError(ConduitError):
    """Cooperative cancellation was observed."""

    def __init__(self, message: str = "Operation was cancelled by user"):
        super().__init__(message)


class IterationLimitExceededError(ConduitError):
    """The reasoning loop ran past its iteration cap."""

    def __init__(self, max_iterations: int):
        super().__init__(f"Maximum reasoning iterations ({max_iterations}) exceeded")
        self.max_iterations = max_iterations


class PromptTooLongError(ConduitError):
    """Prompt is larger than the configured byte limit."""

    def __init__(self, length: int, limit: int):
        super().__init__(f"Prompt is too long ({length} bytes, limit {limit} bytes)")
        self.length = length
        self.limit = limit


__all__ = [
    "ConduitError",
    "TransportError",
    "ApiError",
    "RateLimitError",
    "ToolExecutionError",
    "CancellationError",
    "IterationLimitExceededError",
    "PromptTooLongError",
]
