"""JSON-RPC 2.0 dispatcher for the MCP tool surface.

A request body holds one envelope or a batch of them. Every envelope is
handled in isolation: faults are reported on that entry only and never abort
its siblings. Tool calls are checked against the catalog, validated,
classified by access tier and only then executed.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Optional, Union

import structlog

from . import rich_logger
from .catalog import TOOLS, ToolDescriptor, denial_payload, get_tool, is_permitted
from .config import Settings
from .errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    STORE_UNAVAILABLE,
    GuestbookUnavailableError,
    ToolExecutionError,
)
from .executors import ToolContext, run_executor
from .guestbook import GuestbookStore
from .profile import ProfileStore
from .sessions import CallerContext, SessionState, SessionStore
from .tokens import verify_agent_token

logger = structlog.get_logger("protocol")

JSONRPC_VERSION = "2.0"
INSTRUCTIONS = (
    "Professional profile server. get_profile, get_projects, get_writing and leave_message are free. "
    "get_experience and get_skills unlock after leave_message() or when an Agent-Token header is sent."
)

_TYPE_CHECKS = {
    "string": lambda value: isinstance(value, str),
    "boolean": lambda value: isinstance(value, bool),
    "number": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
}

Envelope = dict[str, Any]


def success_envelope(request_id: Any, result: Any) -> Envelope:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_envelope(request_id: Any, code: int, message: str, data: Optional[dict[str, Any]] = None) -> Envelope:
    error: dict[str, Any] = {"code": code, "message": message}
    if data:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def text_content(payload: Any, *, is_error: bool = False, indent: Optional[int] = 2) -> dict[str, Any]:
    result: dict[str, Any] = {
        "content": [{"type": "text", "text": json.dumps(payload, indent=indent, ensure_ascii=False, default=str)}]
    }
    if is_error:
        result["isError"] = True
    return result


def validate_arguments(tool: ToolDescriptor, arguments: dict[str, Any]) -> dict[str, Any]:
    """Return the declared, non-null arguments for ``tool``.

    Raises ToolExecutionError (-32602) for a missing or empty required field
    or a value of the wrong JSON type. Undeclared keys are dropped.
    """
    cleaned: dict[str, Any] = {}
    for name, spec in tool.parameters.items():
        value = arguments.get(name)
        if value is None:
            if spec.required:
                raise ToolExecutionError(
                    "MISSING_PARAMETER",
                    f"Missing required parameter: {name}",
                    code=INVALID_PARAMS,
                    data={"parameter": name, "tool": tool.name},
                )
            continue
        check = _TYPE_CHECKS.get(spec.type)
        if check is not None and not check(value):
            raise ToolExecutionError(
                "INVALID_PARAMETER",
                f"Parameter '{name}' must be a {spec.type}",
                code=INVALID_PARAMS,
                data={"parameter": name, "tool": tool.name, "expected": spec.type},
            )
        if spec.required and spec.type == "string" and value == "":
            raise ToolExecutionError(
                "EMPTY_PARAMETER",
                f"Parameter '{name}' must not be empty",
                code=INVALID_PARAMS,
                data={"parameter": name, "tool": tool.name},
            )
        cleaned[name] = value
    return cleaned


class ProtocolDispatcher:
    """Routes JSON-RPC envelopes to the handshake, catalog and tool executors.

    The dispatcher owns no global state: the session store, profile store
    and guestbook store are handed in by whoever builds it.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        profile: ProfileStore,
        guestbook: GuestbookStore,
        sessions: SessionStore,
    ) -> None:
        self.settings = settings
        self.profile = profile
        self.guestbook = guestbook
        self.sessions = sessions

    def prime_session(self, caller: CallerContext, token: Optional[str]) -> SessionState:
        """Apply an out-of-band Agent Token to the caller's session.

        Runs before the body is dispatched so every call in the request sees
        the upgrade. A malformed token is logged and otherwise ignored.
        """
        session = self.sessions.get_or_create(caller.key)
        if not token:
            return session
        intent = verify_agent_token(token)
        if intent is None:
            return session
        logger.info(
            "agent_token_visit",
            intent_id=intent.intent_id,
            goal=intent.goal,
            mode=intent.mode,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        return self.sessions.grant(caller.key, credential=token, via="agent_token")

    async def handle_body(
        self, body: Union[bytes, str], caller: CallerContext
    ) -> tuple[int, Union[Envelope, list[Envelope]]]:
        """Decode ``body`` and dispatch it; returns ``(http_status, payload)``."""
        try:
            message = json.loads(body)
        except (ValueError, UnicodeDecodeError, RecursionError):
            return 400, error_envelope(None, PARSE_ERROR, "Parse error")
        return 200, await self.handle_payload(message, caller)

    async def handle_payload(self, message: Any, caller: CallerContext) -> Union[Envelope, list[Envelope]]:
        if isinstance(message, list):
            if not message:
                return error_envelope(None, INVALID_REQUEST, "Invalid Request: empty batch")
            # gather preserves input order
            return list(await asyncio.gather(*(self.handle_message(entry, caller) for entry in message)))
        return await self.handle_message(message, caller)

    async def handle_message(self, message: Any, caller: CallerContext) -> Envelope:
        if not isinstance(message, dict):
            return error_envelope(None, INVALID_REQUEST, "Invalid Request")
        request_id = message.get("id")
        method = message.get("method")
        if not isinstance(method, str) or not method:
            return error_envelope(request_id, INVALID_REQUEST, "Invalid Request: missing method")
        try:
            result = await self._route(method, message.get("params"), caller)
        except ToolExecutionError as exc:
            payload = exc.to_payload()
            return error_envelope(request_id, payload["code"], payload["message"], payload["data"])
        except GuestbookUnavailableError as exc:
            logger.error("tool_error", method=method, error=str(exc), type="STORE_UNAVAILABLE")
            return error_envelope(
                request_id,
                STORE_UNAVAILABLE,
                "Guestbook store unavailable",
                {"type": "STORE_UNAVAILABLE", "recoverable": True},
            )
        except Exception as exc:
            logger.exception("tool_error", method=method, error=str(exc))
            return error_envelope(
                request_id,
                INTERNAL_ERROR,
                "Internal error",
                {"type": type(exc).__name__, "recoverable": False},
            )
        return success_envelope(request_id, result)

    async def _route(self, method: str, params: Any, caller: CallerContext) -> Any:
        if method == "initialize":
            return self.initialize_result()
        if method in ("notifications/initialized", "ping"):
            return {}
        if method == "tools/list":
            return {"tools": [tool.to_mcp() for tool in TOOLS]}
        if method == "tools/call":
            return await self.call_tool(params, caller)
        raise ToolExecutionError(
            "METHOD_NOT_FOUND", f"Method not found: {method}", code=METHOD_NOT_FOUND, recoverable=False
        )

    def initialize_result(self) -> dict[str, Any]:
        return {
            "protocolVersion": self.settings.protocol_version,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": self.settings.server_name, "version": self.settings.server_version},
            "instructions": INSTRUCTIONS,
        }

    async def call_tool(self, params: Any, caller: CallerContext) -> dict[str, Any]:
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ToolExecutionError("INVALID_PARAMS", "params must be an object", code=INVALID_PARAMS)
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise ToolExecutionError("INVALID_PARAMS", "Missing tool name", code=INVALID_PARAMS)
        tool = get_tool(name)
        if tool is None:
            raise ToolExecutionError(
                "UNKNOWN_TOOL",
                f"Unknown tool: {name}",
                code=METHOD_NOT_FOUND,
                recoverable=False,
                data={"tool": name},
            )
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ToolExecutionError("INVALID_PARAMS", "arguments must be an object", code=INVALID_PARAMS)

        log_cm = (
            rich_logger.tool_call_logger(tool.name, arguments, caller=caller.key, tier=tool.tier.value)
            if self.settings.tools_log_enabled and self.settings.log_rich_enabled
            else nullcontext(None)
        )
        with log_cm as log_ctx:
            cleaned = validate_arguments(tool, arguments)
            session = self.sessions.get_or_create(caller.key)
            if not is_permitted(tool.name, session):
                denial = denial_payload(tool.name)
                logger.info("access_denied", tool=tool.name, key=caller.key)
                if log_ctx is not None:
                    log_ctx.result = denial
                    log_ctx.denied = True
                return text_content(denial, is_error=True, indent=None)

            ctx = ToolContext(profile=self.profile, guestbook=self.guestbook, caller=caller)
            result = await run_executor(tool.name, ctx, cleaned)
            if tool.grants_access:
                self.sessions.grant(caller.key, via=tool.name)
            if log_ctx is not None:
                log_ctx.result = result
            return text_content(result)
