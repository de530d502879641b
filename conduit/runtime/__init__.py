from conduit.runtime.control import CancellationToken
from conduit.runtime.state import RunState, RunStateSnapshot
from conduit.runtime.tool_executor import ToolExecutor

__all__ = ["CancellationToken", "RunState", "RunStateSnapshot", "ToolExecutor"]
