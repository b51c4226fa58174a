"""Tool surface exposed to chat hosts."""

from poom_bridge.tools.dispatcher import ToolDispatcher
from poom_bridge.tools.envelope import ToolResponse

__all__ = ["ToolDispatcher", "ToolResponse"]
