import hashlib
import re

import pytest

from resume_mcp.config import GuestbookSettings, get_settings
from resume_mcp.errors import GuestbookUnavailableError, ProfileLoadError
from resume_mcp.executors import (
    ToolContext,
    get_experience,
    get_profile,
    get_projects,
    get_skills,
    get_writing,
    leave_message,
)
from resume_mcp.guestbook import GuestbookStore, hash_ip, new_entry_key
from resume_mcp.profile import ProfileStore
from resume_mcp.sessions import CallerContext

CALLER = CallerContext(key="203.0.113.5:tester", ip="203.0.113.5", user_agent="tester")


def _ctx(enabled: bool = False) -> ToolContext:
    store = GuestbookStore(GuestbookSettings(enabled=enabled, ip_salt="test-salt"))
    return ToolContext(profile=ProfileStore.packaged(), guestbook=store, caller=CALLER)


def test_get_profile_returns_profile_section():
    ctx = _ctx()
    assert get_profile(ctx, {}) == ctx.profile.profile
    assert get_profile(ctx, {})["name"] == "Jordan Reyes"


def test_projects_tag_filter_is_case_insensitive_subsequence():
    ctx = _ctx()
    everything = get_projects(ctx, {})
    tagged = get_projects(ctx, {"tag": "AGENTS"})
    assert [p["name"] for p in tagged] == ["resume-mcp", "tinyvec"]
    assert [p for p in everything if p in tagged] == tagged


def test_projects_featured_and_tag_combine():
    ctx = _ctx()
    assert [p["name"] for p in get_projects(ctx, {"featured_only": True})] == ["resume-mcp", "ledgerline"]
    assert [p["name"] for p in get_projects(ctx, {"tag": "agents", "featured_only": True})] == ["resume-mcp"]
    assert get_projects(ctx, {"tag": "cobol"}) == []


def test_writing_platform_and_limit():
    ctx = _ctx()
    everything = get_writing(ctx, {})
    assert len(everything) == 4
    assert [w["platform"] for w in get_writing(ctx, {"platform": "blog"})] == ["blog", "blog"]
    assert get_writing(ctx, {"platform": "Blog"}) == []
    assert get_writing(ctx, {"limit": 2}) == everything[:2]
    assert get_writing(ctx, {"limit": 2.9}) == everything[:2]
    assert get_writing(ctx, {"limit": 50}) == everything
    assert get_writing(ctx, {"limit": 0}) == everything
    assert get_writing(ctx, {"limit": -3}) == everything


def test_writing_ignores_non_finite_limits():
    ctx = _ctx()
    everything = get_writing(ctx, {})
    assert get_writing(ctx, {"limit": float("inf")}) == everything
    assert get_writing(ctx, {"limit": float("-inf")}) == everything
    assert get_writing(ctx, {"limit": float("nan")}) == everything
    assert get_writing(ctx, {"limit": 10**400}) == everything


def test_experience_current_only():
    ctx = _ctx()
    assert len(get_experience(ctx, {})) == 3
    current = get_experience(ctx, {"current_only": True})
    assert [e["company"] for e in current] == ["Northwind Analytics"]


def test_skills_category_and_unknown_fallback():
    ctx = _ctx()
    assert get_skills(ctx, {"category": "languages"}) == {"languages": ctx.profile.skills["languages"]}
    assert get_skills(ctx, {"category": "cooking"}) == ctx.profile.skills
    assert get_skills(ctx, {}) == ctx.profile.skills


def test_hash_ip_is_truncated_salted_sha256():
    expected = hashlib.sha256(b"203.0.113.5test-salt").hexdigest()[:16]
    assert hash_ip("203.0.113.5", "test-salt") == expected
    assert len(expected) == 16
    assert hash_ip("203.0.113.5", "other") != expected


def test_entry_keys_are_unique_and_time_prefixed():
    first, second = new_entry_key(1700000000000), new_entry_key(1700000000000)
    assert first != second
    assert re.fullmatch(r"entry:1700000000000:[0-9a-f-]{36}", first)


@pytest.mark.asyncio
async def test_leave_message_with_guestbook_disabled_still_succeeds():
    result = await leave_message(_ctx(enabled=False), {"name": "Ada", "message": "hi"})
    assert result == {
        "success": True,
        "access_granted": True,
        "message": "Thanks, Ada! You now have access to all profile information.",
    }


@pytest.mark.asyncio
async def test_leave_message_appends_entry(isolated_env):
    settings = get_settings()
    store = GuestbookStore(settings.guestbook)
    ctx = ToolContext(profile=ProfileStore.packaged(), guestbook=store, caller=CALLER)
    await leave_message(ctx, {"name": "Ada", "message": "hi", "agent_id": "ada-bot"})
    await leave_message(ctx, {"name": "Ada", "message": "again"})
    entries = await store.list_public()
    assert [e["message"] for e in entries] == ["again", "hi"]
    assert entries[1]["agent_id"] == "ada-bot"
    assert all("ip_hash" not in e for e in entries)


@pytest.mark.asyncio
async def test_leave_message_surfaces_store_failure(monkeypatch):
    ctx = _ctx(enabled=True)

    async def boom(entry):
        raise GuestbookUnavailableError("down")

    monkeypatch.setattr(ctx.guestbook, "put", boom)
    with pytest.raises(GuestbookUnavailableError):
        await leave_message(ctx, {"name": "Ada", "message": "hi"})


def test_profile_store_rejects_bad_documents(tmp_path):
    with pytest.raises(ProfileLoadError):
        ProfileStore.from_text("not json")
    with pytest.raises(ProfileLoadError):
        ProfileStore.from_text("[]")
    with pytest.raises(ProfileLoadError):
        ProfileStore({"profile": {}, "projects": [], "writing": [], "experience": []})
    with pytest.raises(ProfileLoadError):
        ProfileStore.from_path(tmp_path / "missing.json")
