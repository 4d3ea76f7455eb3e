"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Protocol, cast

from decouple import (
    Config as DecoupleConfig,
    RepositoryEmpty,
    RepositoryEnv,
)

from . import __version__

_DOTENV_PATH: Final[Path] = Path(".env")


def _build_decouple_config() -> DecoupleConfig:
    # Gracefully handle missing .env (e.g., in CI/tests) by falling back to an empty repository.
    try:
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    except FileNotFoundError:
        return DecoupleConfig(RepositoryEmpty())


_decouple_config: Final[DecoupleConfig] = _build_decouple_config()


@dataclass(slots=True, frozen=True)
class HttpSettings:
    """HTTP transport related settings."""

    host: str
    port: int
    path: str
    # Out-of-band credential header carrying an Agent Token
    agent_token_header: str
    # Headers consulted (in order) for the caller's network origin
    client_ip_headers: list[str]
    user_agent_key_chars: int
    public_origin: str
    rate_limit_enabled: bool
    rate_limit_per_minute: int
    rate_limit_burst: int
    request_log_enabled: bool


@dataclass(slots=True, frozen=True)
class DatabaseSettings:
    """Database connectivity settings for the guestbook."""

    url: str
    echo: bool


@dataclass(slots=True, frozen=True)
class GuestbookSettings:
    """Guestbook persistence settings."""

    enabled: bool
    ip_salt: str


@dataclass(slots=True, frozen=True)
class ProfileSettings:
    """Location of the static profile document ("" uses the packaged sample)."""

    path: str


@dataclass(slots=True, frozen=True)
class SessionSettings:
    """In-memory caller session tracking.

    ``max_entries`` of 0 keeps every caller for the life of the process; a
    positive value evicts the least recently used caller beyond that size.
    """

    max_entries: int


@dataclass(slots=True, frozen=True)
class CorsSettings:
    """CORS configuration for the HTTP app."""

    enabled: bool
    origins: list[str]
    allow_methods: list[str]
    allow_headers: list[str]
    max_age: int


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    server_name: str
    server_version: str
    protocol_version: str
    agent_tokens_url: str
    http: HttpSettings
    database: DatabaseSettings
    guestbook: GuestbookSettings
    profile: ProfileSettings
    sessions: SessionSettings
    cors: CorsSettings
    # Logging
    log_level: str
    log_json_enabled: bool
    log_rich_enabled: bool
    tools_log_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _int(value: str, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _normalize_path(value: str) -> str:
    path = (value or "/").strip() or "/"
    if not path.startswith("/"):
        path = "/" + path
    return path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    environment = _decouple_config("APP_ENVIRONMENT", default="development")

    def _csv(name: str, default: str) -> list[str]:
        raw = _decouple_config(name, default=default)
        items = [part.strip() for part in raw.split(",") if part.strip()]
        return items

    http_settings = HttpSettings(
        host=_decouple_config("HTTP_HOST", default="127.0.0.1"),
        port=_int(_decouple_config("HTTP_PORT", default="8787"), default=8787),
        path=_normalize_path(_decouple_config("HTTP_PATH", default="/")),
        agent_token_header=_decouple_config("HTTP_AGENT_TOKEN_HEADER", default="Agent-Token").strip() or "Agent-Token",
        client_ip_headers=_csv("HTTP_CLIENT_IP_HEADERS", default="CF-Connecting-IP,X-Forwarded-For"),
        user_agent_key_chars=_int(_decouple_config("HTTP_USER_AGENT_KEY_CHARS", default="50"), default=50),
        public_origin=_decouple_config("HTTP_PUBLIC_ORIGIN", default="").strip().rstrip("/"),
        rate_limit_enabled=_bool(_decouple_config("HTTP_RATE_LIMIT_ENABLED", default="false"), default=False),
        rate_limit_per_minute=_int(_decouple_config("HTTP_RATE_LIMIT_PER_MINUTE", default="120"), default=120),
        rate_limit_burst=_int(_decouple_config("HTTP_RATE_LIMIT_BURST", default="0"), default=0),
        request_log_enabled=_bool(_decouple_config("HTTP_REQUEST_LOG_ENABLED", default="false"), default=False),
    )

    database_settings = DatabaseSettings(
        url=_decouple_config("DATABASE_URL", default="sqlite+aiosqlite:///./guestbook.sqlite3"),
        echo=_bool(_decouple_config("DATABASE_ECHO", default="false"), default=False),
    )

    guestbook_settings = GuestbookSettings(
        enabled=_bool(_decouple_config("GUESTBOOK_ENABLED", default="true"), default=True),
        ip_salt=_decouple_config("GUESTBOOK_IP_SALT", default="resume-mcp-salt"),
    )

    cors_settings = CorsSettings(
        enabled=_bool(_decouple_config("HTTP_CORS_ENABLED", default="true"), default=True),
        origins=_csv("HTTP_CORS_ORIGINS", default="*"),
        allow_methods=_csv("HTTP_CORS_ALLOW_METHODS", default="GET,POST,OPTIONS"),
        allow_headers=_csv("HTTP_CORS_ALLOW_HEADERS", default="Content-Type,Agent-Token"),
        max_age=_int(_decouple_config("HTTP_CORS_MAX_AGE", default="86400"), default=86400),
    )

    return Settings(
        environment=environment,
        server_name=_decouple_config("SERVER_NAME", default="resume-mcp"),
        server_version=__version__,
        protocol_version=_decouple_config("MCP_PROTOCOL_VERSION", default="2024-11-05"),
        agent_tokens_url=_decouple_config("AGENT_TOKENS_URL", default="https://github.com/brysontang/agent-tokens"),
        http=http_settings,
        database=database_settings,
        guestbook=guestbook_settings,
        profile=ProfileSettings(path=_decouple_config("PROFILE_PATH", default="").strip()),
        sessions=SessionSettings(
            max_entries=max(0, _int(_decouple_config("SESSION_MAX_ENTRIES", default="0"), default=0)),
        ),
        cors=cors_settings,
        log_level=_decouple_config("LOG_LEVEL", default="INFO"),
        log_json_enabled=_bool(_decouple_config("LOG_JSON_ENABLED", default="false"), default=False),
        log_rich_enabled=_bool(_decouple_config("LOG_RICH_ENABLED", default="true"), default=True),
        tools_log_enabled=_bool(_decouple_config("TOOLS_LOG_ENABLED", default="true"), default=True),
    )


class _CacheClearable(Protocol):
    def cache_clear(self) -> None: ...


def clear_settings_cache() -> None:
    """Clear the lru_cache for get_settings in a type-checker-friendly way."""
    cache_clear = getattr(cast(_CacheClearable, get_settings), "cache_clear", None)
    if callable(cache_clear):
        cache_clear()
