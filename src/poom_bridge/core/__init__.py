"""Shared error types and backend wire models."""

from poom_bridge.core.errors import ErrorCode, ToolError, ToolErrorPayload

__all__ = ["ErrorCode", "ToolError", "ToolErrorPayload"]
