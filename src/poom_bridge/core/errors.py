from __future__ import annotations

from typing import Any, Final, Mapping, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode:
    UPSTREAM_TIMEOUT: Final = "UPSTREAM_TIMEOUT"
    RUN_NOT_FOUND: Final = "RUN_NOT_FOUND"
    MANIFEST_INVALID: Final = "MANIFEST_INVALID"
    UPSTREAM_INVALID_RESPONSE: Final = "UPSTREAM_INVALID_RESPONSE"
    INVALID_ARGUMENTS: Final = "INVALID_ARGUMENTS"
    UNKNOWN_TOOL: Final = "UNKNOWN_TOOL"
    INTERNAL_ERROR: Final = "INTERNAL_ERROR"


class ToolErrorPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    code: str
    message: str
    retryable: bool = False


class ToolError(Exception):
    """The only error type raised by the upstream layer and handled by the tool dispatcher."""

    def __init__(self, code: str, message: str, *, retryable: bool = False) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"ToolError(code={self.code!r}, message={self.message!r}, retryable={self.retryable!r})"

    def to_payload(self) -> ToolErrorPayload:
        return ToolErrorPayload(code=self.code, message=self.message, retryable=self.retryable)

    @classmethod
    def from_upstream_body(cls, body: Any) -> Optional[ToolError]:
        """Return the error a backend embedded as `{"error": {...}}`, if there is a usable one."""
        if not isinstance(body, Mapping):
            return None
        embedded = body.get("error")
        if not isinstance(embedded, Mapping):
            return None
        code = embedded.get("code")
        message = embedded.get("message")
        if not isinstance(code, str) or not code or not isinstance(message, str) or not message:
            return None
        return cls(code, message, retryable=bool(embedded.get("retryable", False)))


def upstream_timeout(message: str) -> ToolError:
    return ToolError(ErrorCode.UPSTREAM_TIMEOUT, message, retryable=True)


def run_not_found(message: str) -> ToolError:
    return ToolError(ErrorCode.RUN_NOT_FOUND, message, retryable=False)


def manifest_invalid(message: str) -> ToolError:
    return ToolError(ErrorCode.MANIFEST_INVALID, message, retryable=False)


def invalid_response(message: str) -> ToolError:
    return ToolError(ErrorCode.UPSTREAM_INVALID_RESPONSE, message, retryable=False)
