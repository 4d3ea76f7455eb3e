"""Append-only guestbook persistence."""

from __future__ import annotations

import hashlib
import time
import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import desc, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .config import GuestbookSettings
from .db import ensure_schema, get_session, retry_on_db_lock
from .errors import GuestbookUnavailableError
from .models import GuestbookEntry

logger = structlog.get_logger("guestbook")


def new_entry_key(now_ms: Optional[int] = None) -> str:
    """Return a unique, time-sortable entry key of the form ``entry:<epoch-ms>:<uuid4>``."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"entry:{stamp}:{uuid.uuid4()}"


def hash_ip(ip: str, salt: str) -> str:
    """Salted SHA-256 of ``ip``, truncated to 8 bytes (16 hex chars)."""
    return hashlib.sha256(f"{ip}{salt}".encode("utf-8")).hexdigest()[:16]


class GuestbookStore:
    """Durable guestbook on the async engine from :mod:`resume_mcp.db`.

    When disabled, writes are skipped and reads report the store as not
    configured; callers decide how to surface that.
    """

    def __init__(self, settings: GuestbookSettings) -> None:
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def ip_salt(self) -> str:
        return self._settings.ip_salt

    async def put(self, entry: GuestbookEntry) -> GuestbookEntry:
        if not self.enabled:
            return entry
        try:
            await ensure_schema()
            await self._insert(entry)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("guestbook_write_failed", key=entry.key, error=str(exc))
            raise GuestbookUnavailableError(f"guestbook write failed: {exc}") from exc
        return entry

    @retry_on_db_lock()
    async def _insert(self, entry: GuestbookEntry) -> None:
        async with get_session() as session:
            session.add(entry)
            await session.commit()
            await session.refresh(entry)

    async def list_public(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Return every entry newest first, without the origin hash."""
        if not self.enabled:
            raise GuestbookUnavailableError("Guestbook not configured")
        try:
            await ensure_schema()
            async with get_session() as session:
                stmt = select(GuestbookEntry).order_by(
                    desc(GuestbookEntry.created_at), desc(GuestbookEntry.id)
                )
                if limit is not None and limit > 0:
                    stmt = stmt.limit(limit)
                rows = (await session.execute(stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("guestbook_read_failed", error=str(exc))
            raise GuestbookUnavailableError(f"guestbook read failed: {exc}") from exc
        return [row.public_dict() for row in rows]

    async def ping(self) -> None:
        """Round-trip the database; raises GuestbookUnavailableError when unreachable."""
        if not self.enabled:
            return
        try:
            await ensure_schema()
            async with get_session() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            raise GuestbookUnavailableError(str(exc)) from exc
