"""Tool executors: one function per catalog entry.

Executors receive parameters that the dispatcher has already checked against
the tool's descriptor; they read the profile store or append to the
guestbook and return JSON-serialisable data.
"""

from __future__ import annotations

import inspect
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, Union

import structlog

from .guestbook import GuestbookStore, hash_ip, new_entry_key
from .models import GuestbookEntry
from .profile import ProfileStore
from .sessions import UNKNOWN, CallerContext

logger = structlog.get_logger("tools")


@dataclass(slots=True, frozen=True)
class ToolContext:
    profile: ProfileStore
    guestbook: GuestbookStore
    caller: CallerContext


Executor = Callable[[ToolContext, dict[str, Any]], Union[Any, Awaitable[Any]]]


def get_profile(ctx: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
    return ctx.profile.profile


def get_projects(ctx: ToolContext, params: dict[str, Any]) -> list[dict[str, Any]]:
    projects = list(ctx.profile.projects)
    tag = params.get("tag")
    if tag:
        wanted = str(tag).lower()
        projects = [p for p in projects if wanted in {str(t).lower() for t in p.get("tags") or []}]
    if params.get("featured_only"):
        projects = [p for p in projects if p.get("featured")]
    return projects


def get_writing(ctx: ToolContext, params: dict[str, Any]) -> list[dict[str, Any]]:
    posts = list(ctx.profile.writing)
    platform = params.get("platform")
    if platform:
        posts = [p for p in posts if p.get("platform") == platform]
    limit = params.get("limit")
    # NaN, inf and non-positive limits leave the list whole
    if isinstance(limit, float) and not math.isfinite(limit):
        limit = None
    if limit is not None and int(limit) > 0:
        posts = posts[: int(limit)]
    return posts


def get_experience(ctx: ToolContext, params: dict[str, Any]) -> list[dict[str, Any]]:
    entries = list(ctx.profile.experience)
    if params.get("current_only"):
        entries = [e for e in entries if e.get("current") is True]
    return entries


def get_skills(ctx: ToolContext, params: dict[str, Any]) -> dict[str, list[str]]:
    skills = ctx.profile.skills
    category = params.get("category")
    if category and category in skills:
        return {category: skills[category]}
    # Unknown categories fall back to the full mapping
    return skills


async def leave_message(ctx: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
    """Record an introduction in the guestbook.

    Raises GuestbookUnavailableError when the store is enabled but cannot
    be written; the caller's access is only granted once this returns.
    """
    name = params["name"]
    entry = GuestbookEntry(
        key=new_entry_key(),
        name=name,
        message=params["message"],
        agent_id=_optional_text(params.get("agent_id")),
        contact=_optional_text(params.get("contact")),
        ip_hash=hash_ip(ctx.caller.ip or UNKNOWN, ctx.guestbook.ip_salt),
    )
    await ctx.guestbook.put(entry)
    logger.info(
        "guestbook_entry",
        key=entry.key,
        name=entry.name,
        message=entry.message,
        agent_id=entry.agent_id,
        timestamp=entry.timestamp,
        persisted=ctx.guestbook.enabled,
    )
    return {
        "success": True,
        "access_granted": True,
        "message": f"Thanks, {name}! You now have access to all profile information.",
    }


def _optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


EXECUTORS: dict[str, Executor] = {
    "get_profile": get_profile,
    "get_projects": get_projects,
    "get_writing": get_writing,
    "get_experience": get_experience,
    "get_skills": get_skills,
    "leave_message": leave_message,
}


async def run_executor(name: str, ctx: ToolContext, params: dict[str, Any]) -> Any:
    """Invoke the executor for ``name``, awaiting it when it is a coroutine function."""
    result = EXECUTORS[name](ctx, params)
    if inspect.isawaitable(result):
        result = await result
    return result
