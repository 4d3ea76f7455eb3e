from resume_mcp.config import clear_settings_cache, get_settings


def test_defaults(isolated_env, monkeypatch):
    for name in ("HTTP_PATH", "HTTP_PORT", "HTTP_AGENT_TOKEN_HEADER", "SESSION_MAX_ENTRIES", "HTTP_CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    settings = get_settings()
    assert settings.http.path == "/"
    assert settings.http.port == 8787
    assert settings.http.agent_token_header == "Agent-Token"
    assert settings.http.client_ip_headers == ["CF-Connecting-IP", "X-Forwarded-For"]
    assert settings.http.user_agent_key_chars == 50
    assert settings.sessions.max_entries == 0
    assert settings.cors.origins == ["*"]
    assert settings.cors.allow_headers == ["Content-Type", "Agent-Token"]
    assert settings.protocol_version == "2024-11-05"


def test_env_overrides_and_lenient_parsing(isolated_env, monkeypatch):
    monkeypatch.setenv("HTTP_PATH", "rpc")
    monkeypatch.setenv("HTTP_PORT", "not-a-port")
    monkeypatch.setenv("HTTP_RATE_LIMIT_ENABLED", "yes")
    monkeypatch.setenv("HTTP_CLIENT_IP_HEADERS", " X-Real-IP , ,X-Forwarded-For ")
    monkeypatch.setenv("SESSION_MAX_ENTRIES", "-5")
    monkeypatch.setenv("GUESTBOOK_ENABLED", "maybe")
    clear_settings_cache()
    settings = get_settings()
    assert settings.http.path == "/rpc"
    assert settings.http.port == 8787
    assert settings.http.rate_limit_enabled is True
    assert settings.http.client_ip_headers == ["X-Real-IP", "X-Forwarded-For"]
    assert settings.sessions.max_entries == 0
    assert settings.guestbook.enabled is True


def test_settings_are_cached_until_cleared(isolated_env, monkeypatch):
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("SERVER_NAME", "someone-mcp")
    assert get_settings().server_name == first.server_name
    clear_settings_cache()
    assert get_settings().server_name == "someone-mcp"
