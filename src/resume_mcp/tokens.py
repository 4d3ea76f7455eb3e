"""Agent Token decoding.

An Agent Token v0 is a compact string of base64url JSON segments::

    <header>.<payload>[.<signature>]

The header identifies the format (``{"typ": "agent-token", "v": 0}``); the
payload carries a declared intent (``{"intent": {"v": 1, "intentId": ...,
"goal": ..., "mode": ...}}``). Tokens are self-declared: the signature
segment is not checked and a well-formed token is accepted as is.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = structlog.get_logger("agent_tokens")


class AgentTokenError(ValueError):
    """Raised when a token cannot be decoded into the v0 structure."""


class TokenHeader(BaseModel):
    model_config = ConfigDict(extra="allow")

    typ: Literal["agent-token"]
    v: Literal[0]


class IntentV1(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    v: Literal[1]
    intent_id: str = Field(alias="intentId", min_length=1)
    goal: str = Field(min_length=1)
    mode: str = ""


class DecodedAgentToken(BaseModel):
    header: TokenHeader
    payload: dict[str, Any]
    signature: Optional[str] = None


def _b64url_json(segment: str) -> Any:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError, RecursionError) as exc:
        raise AgentTokenError(f"segment is not base64url JSON: {type(exc).__name__}") from exc


def _b64url_encode(value: Any) -> str:
    raw = json.dumps(value, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_agent_token_v0(token: str) -> DecodedAgentToken:
    """Decode the token structure; raises :class:`AgentTokenError` on any mismatch."""
    parts = token.strip().split(".")
    if len(parts) not in (2, 3) or not all(parts[:2]):
        raise AgentTokenError("expected <header>.<payload>[.<signature>]")
    header = _b64url_json(parts[0])
    payload = _b64url_json(parts[1])
    if not isinstance(payload, dict):
        raise AgentTokenError("payload must be a JSON object")
    try:
        return DecodedAgentToken(
            header=TokenHeader.model_validate(header),
            payload=payload,
            signature=parts[2] if len(parts) == 3 else None,
        )
    except ValidationError as exc:
        raise AgentTokenError(f"unsupported token header: {exc.errors()[0]['msg']}") from exc


def get_intent_v1(decoded: DecodedAgentToken) -> IntentV1 | None:
    """Return the v1 intent carried by ``decoded``, or None when absent or malformed."""
    raw = decoded.payload.get("intent")
    if not isinstance(raw, dict):
        return None
    try:
        return IntentV1.model_validate(raw)
    except ValidationError:
        return None


def verify_agent_token(token: str) -> IntentV1 | None:
    """Decode ``token`` and extract its intent; every failure collapses to None."""
    try:
        decoded = decode_agent_token_v0(token)
    except AgentTokenError as exc:
        logger.info("agent_token_invalid", reason=str(exc))
        return None
    except Exception as exc:
        # Header values are caller-controlled; a bad token only means no access
        logger.warning("agent_token_invalid", reason=type(exc).__name__)
        return None
    intent = get_intent_v1(decoded)
    if intent is None:
        logger.info("agent_token_invalid", reason="missing or malformed v1 intent")
    return intent


def encode_agent_token_v0(intent_id: str, goal: str, mode: str = "read", **extra: Any) -> str:
    """Build an unsigned v0 token declaring the given intent."""
    header = _b64url_encode({"typ": "agent-token", "v": 0})
    payload = _b64url_encode({"intent": {"v": 1, "intentId": intent_id, "goal": goal, "mode": mode}, **extra})
    return f"{header}.{payload}"
