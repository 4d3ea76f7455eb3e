"""Tool catalog and access classification.

The catalog is fixed at import time: six descriptors, each registered with
exactly one access tier. Agents introspect it through ``tools/list`` and the
discovery document; the dispatcher consults it before any executor runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol


class AccessTier(str, Enum):
    FREE = "free"
    GATED = "gated"


@dataclass(slots=True, frozen=True)
class ParameterSpec:
    type: str  # "string" | "boolean" | "number"
    description: Optional[str] = None
    required: bool = False


@dataclass(slots=True, frozen=True)
class ToolDescriptor:
    name: str
    description: str
    tier: AccessTier
    parameters: dict[str, ParameterSpec] = field(default_factory=dict)
    # A successful call upgrades the caller's session
    grants_access: bool = False

    @property
    def required(self) -> list[str]:
        return [name for name, spec in self.parameters.items() if spec.required]

    def input_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for name, spec in self.parameters.items():
            prop: dict[str, Any] = {"type": spec.type}
            if spec.description:
                prop["description"] = spec.description
            properties[name] = prop
        return {"type": "object", "properties": properties, "required": self.required}

    def to_mcp(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema()}


TOOLS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor(
        name="get_profile",
        description="Get basic profile information including name, tagline, links, and contact info.",
        tier=AccessTier.FREE,
    ),
    ToolDescriptor(
        name="get_projects",
        description="Get list of projects, optionally filtered by tag.",
        tier=AccessTier.FREE,
        parameters={
            "tag": ParameterSpec("string", "Filter projects by tag"),
            "featured_only": ParameterSpec("boolean", "Only return featured projects"),
        },
    ),
    ToolDescriptor(
        name="get_writing",
        description="Get list of articles and blog posts.",
        tier=AccessTier.FREE,
        parameters={
            "platform": ParameterSpec("string", "Filter by platform"),
            "limit": ParameterSpec("number", "Max posts to return"),
        },
    ),
    ToolDescriptor(
        name="get_experience",
        description="Get work experience history. Requires guestbook entry or Agent Token.",
        tier=AccessTier.GATED,
        parameters={
            "current_only": ParameterSpec("boolean", "Only return current position(s)"),
        },
    ),
    ToolDescriptor(
        name="get_skills",
        description="Get technical skills by category. Requires guestbook entry or Agent Token.",
        tier=AccessTier.GATED,
        parameters={
            "category": ParameterSpec(
                "string", "Filter by category: languages, frameworks, infrastructure, domains"
            ),
        },
    ),
    ToolDescriptor(
        name="leave_message",
        description="Leave a message in the guestbook. Unlocks access to gated tools.",
        tier=AccessTier.FREE,
        parameters={
            "name": ParameterSpec("string", "Your name or identifier", required=True),
            "message": ParameterSpec("string", "Your message or reason for visiting", required=True),
            "agent_id": ParameterSpec("string", "Optional agent identifier"),
            "contact": ParameterSpec("string", "Optional contact info"),
        },
        grants_access=True,
    ),
)

TOOLS_BY_NAME: dict[str, ToolDescriptor] = {tool.name: tool for tool in TOOLS}
FREE_TOOLS: list[str] = [tool.name for tool in TOOLS if tool.tier is AccessTier.FREE]
GATED_TOOLS: list[str] = [tool.name for tool in TOOLS if tool.tier is AccessTier.GATED]

ACCESS_HINT = "Call leave_message() first to introduce yourself, or include an Agent-Token header."
ACCESS_TOLL = "leave_message() or Agent-Token header"


class _HasAccess(Protocol):
    has_access: bool


def get_tool(name: str) -> ToolDescriptor | None:
    return TOOLS_BY_NAME.get(name)


def is_permitted(tool_name: str, session: _HasAccess) -> bool:
    """Return whether ``session`` may call ``tool_name``.

    Callers must reject names outside the catalog first; an unknown name
    raises ``KeyError`` here.
    """
    tool = TOOLS_BY_NAME[tool_name]
    if tool.tier is AccessTier.FREE:
        return True
    return bool(session.has_access)


def denial_payload(tool_name: str) -> dict[str, Any]:
    return {
        "error": "access_required",
        "message": "Access required",
        "hint": ACCESS_HINT,
        "gated_tool": tool_name,
        "free_tools": list(FREE_TOOLS),
    }
