import contextlib
from pathlib import Path

import pytest

from resume_mcp.config import clear_settings_cache
from resume_mcp.db import reset_database_state


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Provide isolated database settings for tests and reset caches."""
    db_path: Path = tmp_path / "guestbook.sqlite3"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("HTTP_HOST", "127.0.0.1")
    monkeypatch.setenv("HTTP_PORT", "8787")
    monkeypatch.setenv("HTTP_PATH", "/")
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.setenv("GUESTBOOK_ENABLED", "true")
    monkeypatch.setenv("GUESTBOOK_IP_SALT", "test-salt")
    monkeypatch.setenv("TOOLS_LOG_ENABLED", "false")
    monkeypatch.delenv("PROFILE_PATH", raising=False)
    monkeypatch.delenv("HTTP_PUBLIC_ORIGIN", raising=False)
    clear_settings_cache()
    reset_database_state()
    try:
        yield db_path
    finally:
        clear_settings_cache()
        reset_database_state()
        if db_path.exists():
            db_path.unlink()


@pytest.fixture(autouse=True)
def _global_resource_cleanup():
    """Dispose engine state even for tests that skip ``isolated_env``."""
    yield
    with contextlib.suppress(Exception):
        reset_database_state()
    with contextlib.suppress(Exception):
        clear_settings_cache()
