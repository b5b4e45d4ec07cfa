"""Tests for runtime_config.py - YAML config with environment overrides."""

from __future__ import annotations

import pytest

from rover.config import runtime_config
from rover.config.runtime_config import (
    get_acp_command,
    get_default_tool,
    get_execution_mode,
    get_session_tools,
    get_step_timeout,
    reset_config,
    resolve_execution_mode,
)


@pytest.fixture
def custom_config(tmp_path, monkeypatch):
    """Point the loader at a temporary runtime.yaml."""

    def _write(text: str):
        path = tmp_path / "runtime.yaml"
        path.write_text(text)
        monkeypatch.setattr(runtime_config, "_CONFIG_PATH", path)
        reset_config()
        return path

    return _write


class TestDefaults:
    def test_shipped_config(self):
        assert get_default_tool() == "claude"
        assert get_execution_mode() == "auto"
        assert get_step_timeout() == 1800
        assert get_session_tools() == ["claude", "copilot", "opencode"]

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(runtime_config, "_CONFIG_PATH", tmp_path / "absent.yaml")
        reset_config()

        assert get_default_tool() == "claude"
        assert get_acp_command("qwen") == ["qwen", "--experimental-acp"]


class TestEnvironmentOverrides:
    def test_tool(self, monkeypatch):
        monkeypatch.setenv("ROVER_AGENT_TOOL", "Gemini")

        assert get_default_tool() == "gemini"

    def test_mode(self, monkeypatch):
        monkeypatch.setenv("ROVER_EXECUTION_MODE", "session")

        assert get_execution_mode() == "session"

    def test_invalid_mode_falls_back_to_auto(self, monkeypatch, caplog):
        monkeypatch.setenv("ROVER_EXECUTION_MODE", "turbo")

        assert get_execution_mode() == "auto"
        assert "Invalid execution mode" in caplog.text

    def test_timeout(self, monkeypatch):
        monkeypatch.setenv("ROVER_STEP_TIMEOUT", "60")

        assert get_step_timeout() == 60

    def test_invalid_timeout_uses_config(self, monkeypatch):
        monkeypatch.setenv("ROVER_STEP_TIMEOUT", "soon")

        assert get_step_timeout() == 1800


class TestResolveExecutionMode:
    @pytest.mark.parametrize(
        "tool,expected",
        [("claude", "session"), ("copilot", "session"), ("gemini", "stateless"), ("codex", "stateless")],
    )
    def test_auto(self, tool, expected):
        assert resolve_execution_mode(tool) == expected

    def test_explicit_mode_wins(self):
        assert resolve_execution_mode("claude", "stateless") == "stateless"
        assert resolve_execution_mode("gemini", "session") == "session"

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            resolve_execution_mode("claude", "turbo")

    def test_custom_session_tools(self, custom_config):
        custom_config("execution:\n  mode: auto\n  session_tools: [gemini]\n")

        assert resolve_execution_mode("gemini") == "session"
        assert resolve_execution_mode("claude") == "stateless"


class TestAcpCommand:
    def test_known_tools(self):
        assert get_acp_command("claude") == ["npx", "-y", "@anthropic-ai/claude-code", "--acp"]
        assert get_acp_command("gemini") == ["npx", "-y", "@google/gemini-cli", "--experimental-acp"]
        assert get_acp_command("codex") == ["npx", "-y", "@zed-industries/codex-acp"]

    def test_unknown_tool_uses_claude(self):
        assert get_acp_command("opencode") == get_acp_command("claude")

    def test_returns_copy(self):
        get_acp_command("claude").append("--extra")

        assert "--extra" not in get_acp_command("claude")
