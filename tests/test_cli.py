import json
from typing import Any

from typer.testing import CliRunner

from resume_mcp.cli import app
from resume_mcp.config import clear_settings_cache
from resume_mcp.tokens import encode_agent_token_v0


def test_cli_serve_http_uses_settings(isolated_env, monkeypatch):
    runner = CliRunner()
    call_args: dict[str, Any] = {}

    def fake_uvicorn_run(app, host, port, log_level="info"):
        call_args["app"] = app
        call_args["host"] = host
        call_args["port"] = port

    monkeypatch.setattr("uvicorn.run", fake_uvicorn_run)
    result = runner.invoke(app, ["serve-http", "--port", "9100"])
    assert result.exit_code == 0, result.output
    assert call_args["host"] == "127.0.0.1"
    assert call_args["port"] == 9100
    assert call_args["app"].state.dispatcher is not None


def test_cli_serve_http_banner_follows_log_rich_setting(isolated_env, monkeypatch):
    banners: list[int] = []
    monkeypatch.setattr("uvicorn.run", lambda *a, **k: None)
    monkeypatch.setattr(
        "resume_mcp.rich_logger.display_startup_banner", lambda *a, **k: banners.append(k["tool_count"])
    )
    assert CliRunner().invoke(app, ["serve-http"]).exit_code == 0
    assert banners == [6]

    monkeypatch.setenv("LOG_RICH_ENABLED", "false")
    clear_settings_cache()
    assert CliRunner().invoke(app, ["serve-http"]).exit_code == 0
    assert banners == [6]


def test_cli_serve_http_fails_on_bad_profile(isolated_env, monkeypatch, tmp_path):
    broken = tmp_path / "profile.json"
    broken.write_text("{}")
    monkeypatch.setenv("PROFILE_PATH", str(broken))
    monkeypatch.setattr("uvicorn.run", lambda *a, **k: None)
    clear_settings_cache()
    result = CliRunner().invoke(app, ["serve-http"])
    assert result.exit_code == 1


def test_cli_tools_lists_catalog(isolated_env):
    result = CliRunner().invoke(app, ["tools"])
    assert result.exit_code == 0
    for name in ("get_profile", "get_experience", "leave_message"):
        assert name in result.output
    assert "gated" in result.output


def test_cli_call_free_tool(isolated_env):
    result = CliRunner().invoke(app, ["call", "get_writing", "--args", '{"limit": 1}'])
    assert result.exit_code == 0, result.output
    assert '"jsonrpc": "2.0"' in result.output
    assert "isError" not in result.output


def test_cli_call_gated_tool_needs_token(isolated_env):
    denied = CliRunner().invoke(app, ["call", "get_skills"])
    assert denied.exit_code == 1
    assert "access_required" in denied.output

    token = encode_agent_token_v0("cli-1", "Check skills")
    allowed = CliRunner().invoke(app, ["call", "get_skills", "--args", '{"category": "languages"}', "--token", token])
    assert allowed.exit_code == 0, allowed.output
    assert "Python" in allowed.output


def test_cli_call_rejects_bad_args(isolated_env):
    result = CliRunner().invoke(app, ["call", "get_profile", "--args", "{nope"])
    assert result.exit_code == 2
    result = CliRunner().invoke(app, ["call", "no_such_tool"])
    assert result.exit_code == 1
    assert "-32601" in result.output


def test_cli_call_leave_message_then_guestbook(isolated_env):
    result = CliRunner().invoke(
        app, ["call", "leave_message", "--args", json.dumps({"name": "Cli", "message": "from terminal"})]
    )
    assert result.exit_code == 0, result.output
    listing = CliRunner().invoke(app, ["guestbook", "--limit", "5"])
    assert listing.exit_code == 0, listing.output
    assert "Cli" in listing.output


def test_cli_guestbook_empty_and_disabled(isolated_env, monkeypatch):
    empty = CliRunner().invoke(app, ["guestbook"])
    assert empty.exit_code == 0
    assert "No entries yet" in empty.output

    monkeypatch.setenv("GUESTBOOK_ENABLED", "false")
    clear_settings_cache()
    disabled = CliRunner().invoke(app, ["guestbook"])
    assert disabled.exit_code == 1


def test_cli_decode_and_encode_token(isolated_env):
    encoded = CliRunner().invoke(app, ["encode-token", "--intent-id", "abc", "--goal", "Look around"])
    assert encoded.exit_code == 0
    token = encoded.output.strip()
    decoded = CliRunner().invoke(app, ["decode-token", token])
    assert decoded.exit_code == 0, decoded.output
    assert '"intentId": "abc"' in decoded.output

    bad = CliRunner().invoke(app, ["decode-token", "garbage"])
    assert bad.exit_code == 1


def test_cli_discovery(isolated_env):
    result = CliRunner().invoke(app, ["discovery", "--origin", "https://me.example"])
    assert result.exit_code == 0
    assert '"endpoint": "https://me.example"' in result.output
    assert '"protocol": "mcp"' in result.output
