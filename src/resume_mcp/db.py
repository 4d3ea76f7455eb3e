"""Async database engine and session management for the guestbook.

The engine and session factory are created lazily on first use and torn down
by :func:`reset_database_state`, which tests call between cases.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, suppress
from functools import wraps
from pathlib import Path
from typing import Any

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from .config import DatabaseSettings, Settings, clear_settings_cache, get_settings

_logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_schema_ready = False
_schema_lock: asyncio.Lock | None = None


def retry_on_db_lock(attempts: int = 4, base_delay: float = 0.05) -> Callable[..., Any]:
    """Retry an async database call while SQLite reports the file as locked.

    Other operational errors, and the last locked error, propagate unchanged.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except OperationalError as exc:
                    attempt += 1
                    if attempt >= attempts or "locked" not in str(exc).lower():
                        raise
                    delay = base_delay * (2 ** (attempt - 1)) * (1 + random.random() / 4)
                    _logger.warning("db.locked", extra={"function": func.__name__, "attempt": attempt})
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def _build_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Build the async engine; SQLite files get WAL mode and a generous busy timeout."""
    from sqlalchemy import event
    from sqlalchemy.engine import make_url

    connect_args: dict[str, Any] = {}
    is_sqlite = "sqlite" in settings.url.lower()

    if is_sqlite:
        # SQLite returns "unable to open database file" when the directory is missing.
        with suppress(Exception):
            parsed = make_url(settings.url)
            if parsed.database and parsed.database != ":memory:":
                Path(parsed.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        connect_args = {"timeout": 30.0, "check_same_thread": False}

    engine = create_async_engine(
        settings.url,
        echo=settings.echo,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

    if is_sqlite:

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.execute("PRAGMA busy_timeout=30000")
            finally:
                cursor.close()

    return engine


def init_engine(settings: Settings | None = None) -> None:
    """Initialise global engine and session factory once."""
    global _engine, _session_factory
    if _engine is not None and _session_factory is not None:
        return
    resolved_settings = settings or get_settings()
    engine = _build_engine(resolved_settings.database)
    _engine = engine
    _session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def get_engine() -> AsyncEngine:
    if _engine is None:
        init_engine()
    assert _engine is not None
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        init_engine()
    assert _session_factory is not None
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Provide an async database session that is always closed, even under cancellation."""
    factory = get_session_factory()
    session = factory()
    try:
        yield session
    finally:
        close_task = asyncio.create_task(session.close())
        try:
            await asyncio.shield(close_task)
        except BaseException:
            with suppress(BaseException):
                await close_task
            raise


@retry_on_db_lock(attempts=5, base_delay=0.1)
async def ensure_schema(settings: Settings | None = None) -> None:
    """Create tables from the SQLModel metadata if they do not exist yet."""
    global _schema_ready, _schema_lock
    if _schema_ready:
        return
    if _schema_lock is None:
        _schema_lock = asyncio.Lock()
    async with _schema_lock:
        if _schema_ready:
            return
        # Register table metadata before create_all
        from . import models  # noqa: F401

        init_engine(settings)
        engine = get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        _schema_ready = True


def reset_database_state() -> None:
    """Dispose the cached engine so the next use rebuilds it from fresh settings."""
    global _engine, _session_factory, _schema_ready, _schema_lock
    engine, _engine = _engine, None
    _session_factory = None
    _schema_ready = False
    _schema_lock = None
    clear_settings_cache()
    if engine is None:
        return
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(engine.dispose())
        return
    # A running loop cannot be blocked on; only the pool itself can be released
    with suppress(Exception):
        engine.sync_engine.dispose()


def get_database_path(settings: Settings | None = None) -> Path | None:
    """Return the SQLite file backing the guestbook, or None for other backends."""
    resolved = settings or get_settings()
    try:
        from sqlalchemy.engine import make_url

        parsed = make_url(resolved.database.url)
    except Exception:
        return None
    if parsed.get_backend_name() != "sqlite":
        return None
    db_path = parsed.database
    if not db_path or db_path == ":memory:":
        return None
    return Path(db_path)
