from conduit.tools.arguments import decode_tool_arguments
from conduit.tools.base import BaseTool

__all__ = ["BaseTool", "decode_tool_arguments"]
