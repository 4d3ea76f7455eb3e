"""SQLModel table backing the guestbook."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


def _utcnow_naive() -> datetime:
    """Return current UTC time as a naive datetime; SQLite stores no tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GuestbookEntry(SQLModel, table=True):
    """One introduction left by a visitor. Rows are appended, never updated."""

    __tablename__ = "guestbook_entries"
    __table_args__ = (Index("idx_guestbook_created", "created_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(index=True, unique=True, max_length=96)
    name: str = Field(max_length=256)
    message: str = Field(max_length=4096)
    agent_id: Optional[str] = Field(default=None, max_length=256)
    contact: Optional[str] = Field(default=None, max_length=256)
    created_at: datetime = Field(default_factory=_utcnow_naive)
    # Salted digest of the submitter's network origin; never exposed publicly
    ip_hash: str = Field(default="", max_length=16)

    @property
    def timestamp(self) -> str:
        return self.created_at.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")

    def public_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "message": self.message,
            "agent_id": self.agent_id,
            "contact": self.contact,
            "timestamp": self.timestamp,
        }
