"""Per-caller access state, held in memory for the life of the process.

Callers are grouped by a best-effort key built from the network origin and
the client's User-Agent. Two agents behind the same address with the same
client string share a session; that is accepted, since access here is a
courtesy gate rather than a security boundary.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

import structlog

logger = structlog.get_logger("sessions")

UNKNOWN = "unknown"


@dataclass(slots=True)
class SessionState:
    has_access: bool = False
    presented_credential: Optional[str] = None


@dataclass(slots=True, frozen=True)
class CallerContext:
    """Request-borne signals identifying a caller."""

    key: str
    ip: str
    user_agent: str


def caller_identity_key(ip: Optional[str], user_agent: Optional[str], *, ua_chars: int = 50) -> str:
    return f"{ip or UNKNOWN}:{(user_agent or UNKNOWN)[:ua_chars]}"


def resolve_client_ip(
    headers: Mapping[str, str],
    ip_headers: Iterable[str],
    peer_host: Optional[str] = None,
) -> str:
    """Return the first usable origin address from proxy headers, then the socket peer."""
    for name in ip_headers:
        value = headers.get(name) or headers.get(name.lower())
        if not value:
            continue
        # X-Forwarded-For style lists carry the original client first
        first = value.split(",", 1)[0].strip()
        if first:
            return first
    return peer_host or UNKNOWN


def build_caller_context(
    headers: Mapping[str, str],
    *,
    ip_headers: Iterable[str],
    peer_host: Optional[str] = None,
    ua_chars: int = 50,
) -> CallerContext:
    ip = resolve_client_ip(headers, ip_headers, peer_host)
    user_agent = headers.get("user-agent") or headers.get("User-Agent") or UNKNOWN
    return CallerContext(
        key=caller_identity_key(ip, user_agent, ua_chars=ua_chars),
        ip=ip,
        user_agent=user_agent,
    )


class SessionStore:
    """Mapping from caller identity key to :class:`SessionState`.

    Access only ever moves from denied to granted. Lazy creation and ``grant``
    do not await, so they cannot interleave with other tasks on the loop.
    With ``max_entries`` > 0 the least recently used caller is evicted once
    the store grows past that size.
    """

    def __init__(self, max_entries: int = 0) -> None:
        self._max_entries = max(0, int(max_entries))
        self._sessions: OrderedDict[str, SessionState] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get_or_create(self, key: str) -> SessionState:
        session = self._sessions.get(key)
        if session is None:
            session = SessionState()
            self._sessions[key] = session
            self._evict()
        elif self._max_entries:
            self._sessions.move_to_end(key)
        return session

    def grant(self, key: str, *, credential: Optional[str] = None, via: str = "guestbook") -> SessionState:
        session = self.get_or_create(key)
        if credential is not None:
            session.presented_credential = credential
        if not session.has_access:
            session.has_access = True
            logger.info("session_granted", key=key, via=via)
        return session

    def has_access(self, key: str) -> bool:
        session = self._sessions.get(key)
        return bool(session and session.has_access)

    def _evict(self) -> None:
        if not self._max_entries:
            return
        while len(self._sessions) > self._max_entries:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("session_evicted", key=evicted)
