"""
Tool dispatch for the agent loop.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Any, Callable

from conduit.domain import ToolCall, ToolResult
from conduit.exceptions import ToolExecutionError
from conduit.runtime.control import raise_if_cancelled
from conduit.tools.arguments import decode_tool_arguments
from conduit.utils.logging import get_logger

if TYPE_CHECKING:
    from conduit.runtime.control import CancellationToken
    from conduit.tools.base import BaseTool

logger = get_logger(__name__)

ToolErrorCallback = Callable[[str, ToolExecutionError], Any]

CONFIRMATION_FLAG = "confirmed"


class ToolExecutor:
    """Executes tool calls one by one and turns every failure into a ToolResult."""

    def __init__(
        self,
        tools: list["BaseTool"],
        on_tool_error: ToolErrorCallback | None = None,
    ):
        self.tools_map = {t.name: t for t in tools}
        self.on_tool_error = on_tool_error

    async def execute(
        self,
        tool_call: ToolCall,
        cancellation: "CancellationToken | None" = None,
    ) -> ToolResult:
        """
        Execute a single tool call.

        Raises:
            CancellationError: if the token is set before dispatch
        """
        raise_if_cancelled(cancellation)

        start_time = time.perf_counter()
        fn_name = tool_call.tool_name
        args = decode_tool_arguments(tool_call.arguments)

        tool = self.tools_map.get(fn_name)
        if tool is None:
            available = ", ".join(sorted(self.tools_map)) or "none"
            logger.warning("tool_not_registered", tool_name=fn_name, tool_call_id=tool_call.id)
            return self._create_result(
                tool_call,
                args,
                content=f'Error: Tool "{fn_name}" is not registered. Available tools: {available}',
                status="not_found",
                start_time=start_time,
            )

        try:
            needs_confirmation = tool.needs_confirmation(args)
        except Exception as e:
            return self._failure_result(
                tool_call,
                args,
                e,
                content=f"Error executing tool: confirmation check failed: {e}",
                start_time=start_time,
            )

        if needs_confirmation and args.get(CONFIRMATION_FLAG) is not True:
            logger.info("tool_confirmation_required", tool_name=fn_name, tool_call_id=tool_call.id)
            return self._create_result(
                tool_call,
                args,
                content=(
                    f"CONFIRMATION_REQUIRED: This operation ({tool.description}) is sensitive. "
                    "Please ask the user to confirm."
                ),
                status="confirmation_required",
                start_time=start_time,
            )

        timeout = tool.get_timeout()
        try:
            logger.debug("executing_tool", tool_name=fn_name, tool_call_id=tool_call.id)
            parsed = tool.parse_args(args)
            content = await asyncio.wait_for(tool.execute(parsed), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning("tool_execution_timeout", tool_name=fn_name, timeout=timeout)
            self._notify_error(
                fn_name,
                ToolExecutionError(f"timed out after {timeout:g} seconds", fn_name, original_error=e),
            )
            return self._create_result(
                tool_call,
                args,
                content=f"Error executing tool: timed out after {timeout:g} seconds",
                status="timeout",
                start_time=start_time,
                error=f"timeout after {timeout:g}s",
            )
        except Exception as e:
            return self._failure_result(
                tool_call, args, e, content=f"Error executing tool: {e}", start_time=start_time
            )

        result = self._create_result(
            tool_call,
            args,
            content=content if isinstance(content, str) else str(content),
            status="success",
            start_time=start_time,
        )
        logger.debug("tool_execution_completed", tool_name=fn_name, duration=result.duration)
        return result

    async def execute_batch(
        self,
        tool_calls: list[ToolCall],
        cancellation: "CancellationToken | None" = None,
    ) -> list[ToolResult]:
        """
        Execute tool calls sequentially, in the order the model returned them.

        Later calls may depend on the side effects of earlier ones.
        """
        results = []
        for tool_call in tool_calls:
            results.append(await self.execute(tool_call, cancellation=cancellation))
        return results

    def _failure_result(
        self,
        tool_call: ToolCall,
        args: dict[str, Any],
        error: Exception,
        content: str,
        start_time: float,
    ) -> ToolResult:
        logger.error(
            "tool_execution_failed",
            tool_name=tool_call.tool_name,
            error=str(error),
            error_type=type(error).__name__,
            exc_info=True,
        )
        wrapped = (
            error
            if isinstance(error, ToolExecutionError)
            else ToolExecutionError(str(error), tool_call.tool_name, original_error=error)
        )
        self._notify_error(tool_call.tool_name, wrapped)
        return self._create_result(
            tool_call,
            args,
            content=content,
            status="error",
            start_time=start_time,
            error=str(error),
        )

    def _notify_error(self, tool_name: str, error: ToolExecutionError) -> None:
        if self.on_tool_error is None:
            return
        try:
            self.on_tool_error(tool_name, error)
        except Exception as e:
            logger.warning("on_tool_error_callback_failed", error=str(e))

    def _create_result(
        self,
        tool_call: ToolCall,
        args: dict[str, Any],
        content: str,
        status: str,
        start_time: float,
        error: str | None = None,
    ) -> ToolResult:
        return ToolResult(
            tool_name=tool_call.tool_name,
            tool_call_id=tool_call.id,
            input_args=args,
            content=content,
            status=status,
            error=error if error is not None else (content if status != "success" else None),
            duration=time.perf_counter() - start_time,
        )


__all__ = ["ToolExecutor", "ToolErrorCallback"]
