"""HTTP transport: FastAPI app around the JSON-RPC dispatcher."""

from __future__ import annotations

import argparse
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any, Optional, cast

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from .catalog import ACCESS_TOLL, FREE_TOOLS, GATED_TOOLS, TOOLS, AccessTier
from .config import Settings, get_settings
from .errors import GuestbookUnavailableError
from .executors import ToolContext, leave_message
from .guestbook import GuestbookStore
from .profile import ProfileStore, load_profile
from .protocol import ProtocolDispatcher
from .sessions import CallerContext, SessionStore, build_caller_context

_LOGGING_CONFIGURED = False


def configure_logging(settings: Settings) -> None:
    """Initialize structlog and stdlib logging formatting."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event", "path", "status"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level)
    # aiosqlite logs every cursor operation at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.INFO)
    _LOGGING_CONFIGURED = True


def caller_from_request(request: Request, settings: Settings) -> CallerContext:
    return build_caller_context(
        request.headers,
        ip_headers=settings.http.client_ip_headers,
        peer_host=request.client.host if request.client else None,
        ua_chars=settings.http.user_agent_key_chars,
    )


def public_origin(request: Request, settings: Settings) -> str:
    if settings.http.public_origin:
        return settings.http.public_origin
    return f"{request.url.scheme}://{request.url.netloc}"


def discovery_document(settings: Settings, origin: str) -> dict[str, Any]:
    path = "" if settings.http.path == "/" else settings.http.path
    return {
        "endpoint": f"{origin}{path}",
        "protocol": "mcp",
        "protocolVersion": settings.protocol_version,
        "tools": [tool.name for tool in TOOLS],
        "access": {"free": list(FREE_TOOLS), "gated": list(GATED_TOOLS), "toll": ACCESS_TOLL},
        "agent_tokens": settings.agent_tokens_url,
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        start = time.time()
        response = await call_next(request)
        dur_ms = int((time.time() - start) * 1000)
        status_code = getattr(response, "status_code", 0)
        client = request.client.host if request.client else "-"
        with contextlib.suppress(Exception):
            structlog.get_logger("http").info(
                "request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=dur_ms,
                client_ip=client,
            )
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory token bucket per caller identity key.

    ``burst`` of 0 means a full minute's allowance may be spent at once.
    """

    def __init__(self, app: FastAPI, settings: Settings):
        super().__init__(app)
        self.settings = settings
        self._per_minute = int(settings.http.rate_limit_per_minute or 0)
        burst = int(settings.http.rate_limit_burst or 0)
        self._burst = burst if burst > 0 else max(1, self._per_minute)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._last_cleanup = time.monotonic()

    def _cleanup_buckets(self, now: float) -> None:
        # Buckets idle for an hour are full again; dropping them is lossless
        cutoff = now - 3600.0
        for key in [k for k, (_, ts) in self._buckets.items() if ts < cutoff]:
            self._buckets.pop(key, None)

    def _consume(self, key: str, now: float) -> bool:
        if self._per_minute <= 0:
            return True
        rate_per_sec = self._per_minute / 60.0
        tokens, ts = self._buckets.get(key, (float(self._burst), now))
        tokens = min(float(self._burst), tokens + max(0.0, now - ts) * rate_per_sec)
        if tokens < 1.0:
            self._buckets[key] = (tokens, now)
            return False
        self._buckets[key] = (tokens - 1.0, now)
        return True

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        now = time.monotonic()
        if now - self._last_cleanup > 60.0:
            self._cleanup_buckets(now)
            self._last_cleanup = now
        if request.method == "OPTIONS" or request.url.path.startswith("/health"):
            return await call_next(request)
        caller = caller_from_request(request, self.settings)
        if not self._consume(caller.key, now):
            structlog.get_logger("http").warning("rate_limited", key=caller.key, path=request.url.path)
            return JSONResponse({"detail": "Rate limit exceeded"}, status_code=status.HTTP_429_TOO_MANY_REQUESTS)
        return await call_next(request)


def build_http_app(
    settings: Optional[Settings] = None,
    *,
    profile: Optional[ProfileStore] = None,
    sessions: Optional[SessionStore] = None,
    guestbook: Optional[GuestbookStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    logger = structlog.get_logger("http")

    profile = profile or load_profile(settings)
    sessions = sessions if sessions is not None else SessionStore(settings.sessions.max_entries)
    guestbook = guestbook or GuestbookStore(settings.guestbook)
    dispatcher = ProtocolDispatcher(settings, profile=profile, guestbook=guestbook, sessions=sessions)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pragma: no cover - service lifecycle
        try:
            await guestbook.ping()
        except GuestbookUnavailableError as exc:
            logger.error("guestbook_unavailable", error=str(exc))
        yield

    fastapi_app = FastAPI(title=settings.server_name, version=settings.server_version, lifespan=lifespan)
    fastapi_app.state.settings = settings
    fastapi_app.state.profile = profile
    fastapi_app.state.sessions = sessions
    fastapi_app.state.guestbook = guestbook
    fastapi_app.state.dispatcher = dispatcher

    app_any = cast(Any, fastapi_app)
    if settings.http.request_log_enabled:
        app_any.add_middleware(RequestLoggingMiddleware)
    if settings.http.rate_limit_enabled:
        app_any.add_middleware(RateLimitMiddleware, settings=settings)
    if settings.cors.enabled:
        app_any.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.origins or ["*"],
            allow_methods=settings.cors.allow_methods or ["*"],
            allow_headers=settings.cors.allow_headers or ["*"],
            max_age=settings.cors.max_age,
        )

    templates_root = Path(__file__).resolve().parent / "templates"
    env = Environment(
        loader=FileSystemLoader(str(templates_root)),
        autoescape=select_autoescape(["html", "xml"]),
        enable_async=True,
    )

    async def _jsonrpc(request: Request) -> JSONResponse:
        caller = caller_from_request(request, settings)
        dispatcher.prime_session(caller, request.headers.get(settings.http.agent_token_header))
        body = await request.body()
        status_code, payload = await dispatcher.handle_body(body, caller)
        return JSONResponse(payload, status_code=status_code)

    rpc_paths = [settings.http.path]
    if "/mcp" not in rpc_paths:
        rpc_paths.append("/mcp")
    for rpc_path in rpc_paths:
        fastapi_app.add_api_route(rpc_path, _jsonrpc, methods=["POST"], include_in_schema=False)

    @fastapi_app.get("/.well-known/mcp.json")
    @fastapi_app.get("/mcp.json")
    async def discovery(request: Request) -> JSONResponse:
        return JSONResponse(discovery_document(settings, public_origin(request, settings)))

    @fastapi_app.get("/health")
    async def health() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @fastapi_app.get("/health/liveness")
    async def liveness() -> JSONResponse:
        return JSONResponse({"status": "alive"})

    @fastapi_app.get("/health/readiness")
    async def readiness() -> JSONResponse:
        try:
            await guestbook.ping()
        except GuestbookUnavailableError as exc:
            logger.error("readiness_error", error=str(exc))
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        return JSONResponse({"status": "ready"})

    @fastapi_app.get("/api/guestbook")
    async def list_guestbook() -> JSONResponse:
        if not guestbook.enabled:
            return JSONResponse({"entries": [], "error": "Guestbook not configured"})
        try:
            entries = await guestbook.list_public()
        except GuestbookUnavailableError:
            return JSONResponse(
                {"entries": [], "error": "Failed to fetch entries"},
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return JSONResponse({"entries": entries})

    @fastapi_app.post("/api/guestbook")
    async def submit_guestbook(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"success": False, "error": "Invalid request"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"success": False, "error": "Invalid request"}, status_code=400)
        name, message = body.get("name"), body.get("message")
        if not isinstance(name, str) or not isinstance(message, str) or not name or not message:
            return JSONResponse({"success": False, "error": "Name and message are required"}, status_code=400)
        params: dict[str, Any] = {"name": name, "message": message}
        for optional in ("agent_id", "contact"):
            if isinstance(body.get(optional), str):
                params[optional] = body[optional]
        caller = caller_from_request(request, settings)
        ctx = ToolContext(profile=profile, guestbook=guestbook, caller=caller)
        try:
            result = await leave_message(ctx, params)
        except GuestbookUnavailableError:
            return JSONResponse({"success": False, "error": "Failed to save entry"}, status_code=500)
        sessions.grant(caller.key, via="guestbook_api")
        return JSONResponse(result)

    @fastapi_app.get("/{full_path:path}", include_in_schema=False)
    async def info_page(request: Request, full_path: str) -> HTMLResponse:
        template = env.get_template("index.html")
        origin = public_origin(request, settings)
        html = await template.render_async(
            server_name=settings.server_name,
            endpoint=discovery_document(settings, origin)["endpoint"],
            tools=[
                {"name": t.name, "description": t.description, "gated": t.tier is AccessTier.GATED}
                for t in TOOLS
            ],
            token_header=settings.http.agent_token_header,
            agent_tokens_url=settings.agent_tokens_url,
        )
        return HTMLResponse(html)

    return fastapi_app


def main() -> None:
    """Run the HTTP transport using settings-specified host/port."""
    parser = argparse.ArgumentParser(description="Run the resume MCP HTTP transport")
    parser.add_argument("--host", help="Override HTTP host", default=None)
    parser.add_argument("--port", help="Override HTTP port", type=int, default=None)
    parser.add_argument("--log-level", help="Uvicorn log level", default="info")
    args, _unknown = parser.parse_known_args()

    settings = get_settings()
    app = build_http_app(settings)
    uvicorn.run(app, host=args.host or settings.http.host, port=args.port or settings.http.port, log_level=args.log_level)


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
