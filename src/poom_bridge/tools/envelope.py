from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from poom_bridge.core.errors import ToolError, ToolErrorPayload


class ToolResponse(BaseModel):
    """Uniform result of a tool call: a structured payload or a structured error, never both."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ok: bool
    text: str
    structured: Optional[dict[str, Any]] = None
    error: Optional[ToolErrorPayload] = None

    @classmethod
    def success(cls, structured: dict[str, Any], text: str) -> ToolResponse:
        return cls(ok=True, text=text, structured=structured)

    @classmethod
    def failure(cls, err: ToolError) -> ToolResponse:
        return cls(ok=False, text=f"{err.code}: {err.message}", error=err.to_payload())

    def data(self) -> dict[str, Any]:
        return dict(self.structured or {})
