"""Rich console panels for tool calls and the server banner.

Rendering is best effort: a console failure never changes the outcome of the
call being logged.
"""

from __future__ import annotations

import json
import time
from collections.abc import Generator
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from rich import box
from rich.console import Console, Group, RenderableType
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

console = Console(stderr=True, soft_wrap=True)


@dataclass
class ToolCallContext:
    """Everything shown for one ``tools/call``."""

    tool_name: str
    params: dict[str, Any]
    caller: Optional[str] = None
    tier: Optional[str] = None
    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None
    result: Any = None
    error: Optional[Exception] = None
    success: bool = True
    denied: bool = False
    _created_at: datetime = field(default_factory=datetime.now)

    @property
    def duration_ms(self) -> float:
        end = self.end_time if self.end_time else time.perf_counter()
        return (end - self.start_time) * 1000

    @property
    def timestamp(self) -> str:
        return self._created_at.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def _safe_json_format(data: Any, max_length: int = 2000) -> str:
    json_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    if len(json_str) > max_length:
        json_str = json_str[:max_length] + "\n... (truncated)"
    return json_str


def _json_panel(title: str, data: Any, border_style: str) -> Panel:
    syntax = Syntax(
        _safe_json_format(data),
        "json",
        theme="monokai",
        line_numbers=False,
        word_wrap=True,
        background_color="default",
    )
    return Panel(syntax, title=f"[bold]{title}[/bold]", border_style=border_style, box=box.ROUNDED, padding=(0, 1))


def _info_table(ctx: ToolCallContext) -> Table:
    table = Table(show_header=False, box=box.SIMPLE, padding=(0, 1), show_edge=False)
    table.add_column("Key", style="bold bright_yellow", width=10)
    table.add_column("Value", overflow="fold")

    table.add_row("Tool", f"[bold bright_green]{escape(ctx.tool_name)}[/bold bright_green]")
    table.add_row("Time", f"[dim]{ctx.timestamp}[/dim]")
    if ctx.tier:
        table.add_row("Tier", ctx.tier)
    if ctx.caller:
        table.add_row("Caller", f"[bright_magenta]{escape(ctx.caller)}[/bright_magenta]")
    if ctx.end_time:
        style = "green" if ctx.duration_ms < 100 else "yellow" if ctx.duration_ms < 1000 else "red"
        table.add_row("Duration", f"[{style}]{ctx.duration_ms:.2f}ms[/{style}]")
        if ctx.denied:
            table.add_row("Status", "[bold yellow]ACCESS REQUIRED[/bold yellow]")
        elif ctx.success:
            table.add_row("Status", "[bold bright_green]SUCCESS[/bold bright_green]")
        else:
            table.add_row("Status", "[bold bright_red]FAILED[/bold bright_red]")
    return table


def log_tool_call_start(ctx: ToolCallContext) -> None:
    components: list[RenderableType] = [_info_table(ctx)]
    if ctx.params:
        components.append(_json_panel("Arguments", ctx.params, "bright_blue"))
    console.print(
        Panel(
            Group(*components),
            title="[bold]TOOL CALL[/bold]",
            border_style="bright_blue",
            box=box.ROUNDED,
            padding=(0, 1),
        )
    )


def _build_end_panel(ctx: ToolCallContext) -> Panel:
    components: list[RenderableType] = [_info_table(ctx)]
    if ctx.error is not None:
        details = {"error_type": type(ctx.error).__name__, "error_message": str(ctx.error)}
        error_type = getattr(ctx.error, "error_type", None)
        if error_type:
            details["type"] = error_type
        components.append(_json_panel("Error", details, "bright_red"))
        title, border = "[bold]TOOL CALL FAILED[/bold]", "bright_red"
    else:
        components.append(_json_panel("Result", ctx.result, "yellow" if ctx.denied else "bright_green"))
        title, border = "[bold]TOOL CALL COMPLETED[/bold]", "yellow" if ctx.denied else "bright_green"
    return Panel(Group(*components), title=title, border_style=border, box=box.ROUNDED, padding=(0, 1))


def log_tool_call_end(ctx: ToolCallContext) -> None:
    if not ctx.end_time:
        ctx.end_time = time.perf_counter()
    console.print(_build_end_panel(ctx))


@contextmanager
def tool_call_logger(
    tool_name: str,
    params: dict[str, Any] | None = None,
    *,
    caller: Optional[str] = None,
    tier: Optional[str] = None,
) -> Generator[ToolCallContext, None, None]:
    """Wrap one tool invocation with start/end panels.

    Set ``ctx.result`` (and ``ctx.denied``) inside the block; exceptions
    are recorded and re-raised.
    """
    ctx = ToolCallContext(tool_name=tool_name, params=dict(params or {}), caller=caller, tier=tier)
    with suppress(Exception):
        log_tool_call_start(ctx)
    try:
        yield ctx
        ctx.success = True
    except Exception as e:
        ctx.error = e
        ctx.success = False
        raise
    finally:
        with suppress(Exception):
            ctx.end_time = time.perf_counter()
            log_tool_call_end(ctx)


def display_startup_banner(settings: Any, host: str, port: int, path: str, *, tool_count: int = 0) -> None:
    """Print the server configuration table shown by ``serve-http``."""
    table = Table(
        box=box.ROUNDED,
        border_style="bright_blue",
        show_header=True,
        header_style="bold bright_white on bright_blue",
        title=f"[bold bright_yellow]{escape(settings.server_name)} {settings.server_version}[/bold bright_yellow]",
        padding=(0, 1),
    )
    table.add_column("Setting", style="bold bright_cyan", width=18)
    table.add_column("Value", overflow="fold")

    display_host = "localhost" if host in ("0.0.0.0", "::") else host
    table.add_row("Environment", f"[bold bright_green]{settings.environment}[/bold bright_green]")
    table.add_row("Endpoint", f"[bold bright_magenta]http://{display_host}:{port}{path}[/bold bright_magenta]")
    table.add_row("Protocol", settings.protocol_version)
    table.add_row("Tools", str(tool_count))
    table.add_row("Token header", settings.http.agent_token_header)
    table.add_row(
        "Guestbook",
        f"[dim]{settings.database.url}[/dim]" if settings.guestbook.enabled else "[dim]disabled[/dim]",
    )
    table.add_row("Profile", settings.profile.path or "[dim]packaged sample[/dim]")
    table.add_row(
        "Tool logging",
        "[bold bright_green]ENABLED[/bold bright_green]" if settings.tools_log_enabled else "[dim]disabled[/dim]",
    )

    console.print()
    console.print(table)
    console.print(Rule(style="bright_blue"))
    console.print(Text(f"Discovery: http://{display_host}:{port}/.well-known/mcp.json", style="dim"))
    console.print()
