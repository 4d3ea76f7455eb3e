"""Error types and JSON-RPC error codes shared by the dispatcher and transports."""

from __future__ import annotations

from typing import Any, Optional

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Durable guestbook store could not be reached
STORE_UNAVAILABLE = INTERNAL_ERROR


class ToolExecutionError(Exception):
    """Failure scoped to a single ``tools/call`` invocation."""

    def __init__(
        self,
        error_type: str,
        message: str,
        *,
        code: int = INTERNAL_ERROR,
        recoverable: bool = True,
        data: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.code = code
        self.recoverable = recoverable
        self.data = data or {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": str(self),
            "data": {
                "type": self.error_type,
                "recoverable": self.recoverable,
                **self.data,
            },
        }


class GuestbookUnavailableError(Exception):
    """Raised when the durable guestbook store cannot be read or written."""


class ProfileLoadError(Exception):
    """Raised when the static profile document is missing or malformed."""
