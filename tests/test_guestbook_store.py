from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from resume_mcp.config import GuestbookSettings, clear_settings_cache, get_settings
from resume_mcp.db import ensure_schema, get_database_path, get_session, reset_database_state, retry_on_db_lock
from resume_mcp.errors import GuestbookUnavailableError
from resume_mcp.guestbook import GuestbookStore, hash_ip, new_entry_key
from resume_mcp.models import GuestbookEntry


def _entry(name: str, message: str, created_at: datetime) -> GuestbookEntry:
    return GuestbookEntry(
        key=new_entry_key(),
        name=name,
        message=message,
        created_at=created_at,
        ip_hash=hash_ip("192.0.2.1", "salt"),
    )


@pytest.mark.asyncio
async def test_put_then_list_newest_first(isolated_env):
    store = GuestbookStore(get_settings().guestbook)
    base = datetime(2025, 1, 1, 12, 0, 0)
    await store.put(_entry("old", "first", base))
    await store.put(_entry("new", "third", base + timedelta(hours=2)))
    await store.put(_entry("mid", "second", base + timedelta(hours=1)))

    entries = await store.list_public()
    assert [e["name"] for e in entries] == ["new", "mid", "old"]
    assert entries[0]["timestamp"] == "2025-01-01T14:00:00Z"
    assert set(entries[0]) == {"name", "message", "agent_id", "contact", "timestamp"}

    limited = await store.list_public(limit=1)
    assert [e["name"] for e in limited] == ["new"]


@pytest.mark.asyncio
async def test_ip_hash_is_stored_but_not_public(isolated_env):
    store = GuestbookStore(get_settings().guestbook)
    await store.put(_entry("Ada", "hi", datetime(2025, 1, 1)))
    async with get_session() as session:
        row = (await session.execute(select(GuestbookEntry))).scalars().one()
    assert row.ip_hash == hash_ip("192.0.2.1", "salt")
    assert "ip_hash" not in (await store.list_public())[0]


@pytest.mark.asyncio
async def test_schema_lives_in_configured_file(isolated_env):
    await ensure_schema()
    path = get_database_path()
    assert path is not None
    assert path.name == "guestbook.sqlite3"
    assert path.exists()


@pytest.mark.asyncio
async def test_disabled_store_skips_writes_and_refuses_reads():
    store = GuestbookStore(GuestbookSettings(enabled=False, ip_salt="salt"))
    entry = _entry("Ada", "hi", datetime(2025, 1, 1))
    assert await store.put(entry) is entry
    await store.ping()
    with pytest.raises(GuestbookUnavailableError):
        await store.list_public()


@pytest.mark.asyncio
async def test_unreachable_database_maps_to_unavailable(isolated_env, monkeypatch, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{blocker}/nested/db.sqlite3")

    clear_settings_cache()
    reset_database_state()
    store = GuestbookStore(get_settings().guestbook)
    with pytest.raises(GuestbookUnavailableError):
        await store.put(_entry("Ada", "hi", datetime(2025, 1, 1)))
    with pytest.raises(GuestbookUnavailableError):
        await store.ping()


def _locked() -> OperationalError:
    return OperationalError("INSERT INTO guestbook_entries", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_retry_on_db_lock_retries_only_lock_errors():
    calls: list[str] = []

    @retry_on_db_lock(attempts=3, base_delay=0)
    async def flaky(fail_times: int, error: Exception) -> str:
        calls.append("try")
        if len(calls) <= fail_times:
            raise error
        return "ok"

    assert await flaky(2, _locked()) == "ok"
    assert len(calls) == 3

    calls.clear()
    with pytest.raises(OperationalError):
        await flaky(5, _locked())
    assert len(calls) == 3

    calls.clear()
    other = OperationalError("SELECT 1", {}, Exception("no such table: guestbook_entries"))
    with pytest.raises(OperationalError):
        await flaky(1, other)
    assert len(calls) == 1
