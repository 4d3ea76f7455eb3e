"""Command-line interface for running and poking at the server."""

from __future__ import annotations

import asyncio
import atexit
import json
from typing import Any, Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from .catalog import TOOLS, AccessTier
from .config import get_settings
from .db import reset_database_state
from .errors import GuestbookUnavailableError, ProfileLoadError
from .guestbook import GuestbookStore
from .http import build_http_app, configure_logging, discovery_document
from .profile import load_profile
from .protocol import ProtocolDispatcher
from .sessions import CallerContext, SessionStore, caller_identity_key
from .tokens import AgentTokenError, decode_agent_token_v0, encode_agent_token_v0, get_intent_v1

# aiosqlite worker threads can block interpreter shutdown if left open
atexit.register(reset_database_state)

console = Console()

CLI_IP = "127.0.0.1"
CLI_USER_AGENT = "resume-mcp-cli"


def _run_async(coro: Any) -> Any:
    """Run ``coro`` on a fresh loop and release database connections afterwards."""
    try:
        return asyncio.run(coro)
    finally:
        reset_database_state()


app = typer.Typer(help="Resume MCP server and developer utilities.", invoke_without_command=True)


@app.callback()
def _app_callback(ctx: typer.Context) -> None:
    """Default to ``serve-http`` when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        serve_http(host=None, port=None)


@app.command("serve-http")
def serve_http(
    host: Optional[str] = typer.Option(None, help="Host interface. Defaults to HTTP_HOST."),
    port: Optional[int] = typer.Option(None, help="Port. Defaults to HTTP_PORT."),
) -> None:
    """Run the JSON-RPC endpoint, discovery document and guestbook API over HTTP."""
    settings = get_settings()
    resolved_host = host or settings.http.host
    resolved_port = port or settings.http.port

    if settings.log_rich_enabled:
        from . import rich_logger

        rich_logger.display_startup_banner(
            settings, resolved_host, resolved_port, settings.http.path, tool_count=len(TOOLS)
        )
    try:
        app_instance = build_http_app(settings)
    except ProfileLoadError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc
    uvicorn.run(app_instance, host=resolved_host, port=resolved_port, log_level="info")


@app.command("tools")
def list_tools() -> None:
    """Show the tool catalog with access tiers."""
    table = Table(title="Tools", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Tier")
    table.add_column("Parameters")
    table.add_column("Description")
    for tool in TOOLS:
        params = ", ".join(f"{name}{'' if spec.required else '?'}" for name, spec in tool.parameters.items())
        tier = "[yellow]gated[/]" if tool.tier is AccessTier.GATED else "[green]free[/]"
        table.add_row(tool.name, tier, params or "-", tool.description)
    console.print(table)


@app.command("guestbook")
def show_guestbook(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum entries to show (0 for all)."),
) -> None:
    """List guestbook entries, newest first."""
    settings = get_settings()
    store = GuestbookStore(settings.guestbook)
    if not store.enabled:
        console.print("[yellow]Guestbook not configured.[/]")
        raise typer.Exit(code=1)
    try:
        entries = _run_async(store.list_public(limit=limit or None))
    except GuestbookUnavailableError as exc:
        console.print(f"[red]Failed to fetch entries: {exc}[/]")
        raise typer.Exit(code=1) from exc
    if not entries:
        console.print("[dim]No entries yet.[/]")
        return
    table = Table(title=f"Guestbook ({len(entries)})")
    table.add_column("When")
    table.add_column("Name", style="bold")
    table.add_column("Agent")
    table.add_column("Message")
    for entry in entries:
        table.add_row(entry["timestamp"], entry["name"], entry.get("agent_id") or "-", entry["message"])
    console.print(table)


@app.command("call")
def call_tool(
    tool: str = typer.Argument(..., help="Tool name, e.g. get_projects."),
    args: str = typer.Option("{}", "--args", help="JSON object of tool arguments."),
    token: Optional[str] = typer.Option(None, "--token", help="Agent Token to present with the call."),
) -> None:
    """Dispatch one ``tools/call`` locally against a fresh session."""
    try:
        arguments = json.loads(args)
    except json.JSONDecodeError as exc:
        console.print(f"[red]--args is not valid JSON: {exc}[/]")
        raise typer.Exit(code=2) from exc

    settings = get_settings()
    configure_logging(settings)
    dispatcher = ProtocolDispatcher(
        settings,
        profile=load_profile(settings),
        guestbook=GuestbookStore(settings.guestbook),
        sessions=SessionStore(),
    )
    caller = CallerContext(
        key=caller_identity_key(CLI_IP, CLI_USER_AGENT, ua_chars=settings.http.user_agent_key_chars),
        ip=CLI_IP,
        user_agent=CLI_USER_AGENT,
    )
    dispatcher.prime_session(caller, token)
    message = {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": tool, "arguments": arguments}}
    response = _run_async(dispatcher.handle_message(message, caller))
    console.print_json(data=response)
    if "error" in response or response.get("result", {}).get("isError"):
        raise typer.Exit(code=1)


@app.command("decode-token")
def decode_token(token: str = typer.Argument(..., help="Agent Token string.")) -> None:
    """Decode an Agent Token and show its declared intent."""
    try:
        decoded = decode_agent_token_v0(token)
    except AgentTokenError as exc:
        console.print(f"[red]Invalid token: {exc}[/]")
        raise typer.Exit(code=1) from exc
    intent = get_intent_v1(decoded)
    console.print_json(
        data={
            "header": decoded.header.model_dump(),
            "intent": intent.model_dump(by_alias=True) if intent else None,
            "signed": decoded.signature is not None,
        }
    )
    if intent is None:
        raise typer.Exit(code=1)


@app.command("encode-token")
def encode_token(
    intent_id: str = typer.Option(..., "--intent-id", help="Intent identifier."),
    goal: str = typer.Option(..., "--goal", help="What the agent is trying to do."),
    mode: str = typer.Option("read", "--mode", help="Intent mode tag."),
) -> None:
    """Print an unsigned Agent Token declaring the given intent."""
    typer.echo(encode_agent_token_v0(intent_id, goal, mode))


@app.command("discovery")
def show_discovery(
    origin: Optional[str] = typer.Option(None, help="Public origin to advertise. Defaults to HTTP_PUBLIC_ORIGIN."),
) -> None:
    """Print the discovery document served at /.well-known/mcp.json."""
    settings = get_settings()
    resolved = origin or settings.http.public_origin or f"http://{settings.http.host}:{settings.http.port}"
    console.print_json(data=discovery_document(settings, resolved.rstrip("/")))
