"""Runtime configuration for workflow execution.

Provides centralized configuration for agent tools and execution modes.
Environment variables take precedence over YAML config.

Usage:
    from rover.config.runtime_config import get_default_tool, resolve_execution_mode

    tool = get_default_tool()                 # "claude"
    mode = resolve_execution_mode(tool)       # "session" or "stateless"
    spawn = get_acp_command("gemini")         # ["npx", "-y", "@google/gemini-cli", ...]
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

# Valid execution modes. "auto" picks session mode for tools listed under
# execution.session_tools and stateless mode for everything else.
VALID_EXECUTION_MODES = ("auto", "stateless", "session")


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH, encoding="utf-8") as f:
            _cached_config = yaml.safe_load(f) or _default_config()
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "defaults": {
            "tool": "claude",
            "step_timeout_seconds": 1800,
        },
        "execution": {
            "mode": "auto",
            "session_tools": ["claude", "copilot", "opencode"],
        },
        "acp": {
            "claude": ["npx", "-y", "@anthropic-ai/claude-code", "--acp"],
            "gemini": ["npx", "-y", "@google/gemini-cli", "--experimental-acp"],
            "qwen": ["qwen", "--experimental-acp"],
            "codex": ["npx", "-y", "@zed-industries/codex-acp"],
        },
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def get_default_tool() -> str:
    """Default agent tool.

    Precedence: ROVER_AGENT_TOOL > config defaults.tool > "claude".
    """
    env_value = os.environ.get("ROVER_AGENT_TOOL")
    if env_value:
        return env_value.lower()
    return str(_load_config().get("defaults", {}).get("tool") or "claude")


def get_step_timeout() -> int:
    """Default per-step timeout in seconds (ROVER_STEP_TIMEOUT overrides config)."""
    env_value = os.environ.get("ROVER_STEP_TIMEOUT")
    if env_value:
        try:
            return int(env_value)
        except ValueError:
            logger.warning("Invalid ROVER_STEP_TIMEOUT value '%s'; using config value", env_value)
    return int(_load_config().get("defaults", {}).get("step_timeout_seconds", 1800))


def get_session_tools() -> List[str]:
    """Tools that run in session mode when the mode is "auto"."""
    tools = _load_config().get("execution", {}).get("session_tools", [])
    return [t.lower() for t in tools]


def get_execution_mode() -> str:
    """Configured execution mode.

    Environment variable precedence (highest to lowest):
    1. ROVER_EXECUTION_MODE
    2. Config file value
    3. Default: "auto"

    Invalid values log a warning and fall back to "auto".
    """
    value = os.environ.get("ROVER_EXECUTION_MODE") or _load_config().get("execution", {}).get("mode")
    if not value:
        return "auto"
    mode = str(value).lower()
    if mode not in VALID_EXECUTION_MODES:
        logger.warning(
            "Invalid execution mode '%s' (valid: %s). Falling back to 'auto'.",
            value,
            ", ".join(VALID_EXECUTION_MODES),
        )
        return "auto"
    return mode


def resolve_execution_mode(tool: str, requested: Optional[str] = None) -> str:
    """Decide between "stateless" and "session" for a tool.

    Args:
        tool: Agent tool name.
        requested: Explicit mode (e.g. from the CLI); falls back to config.

    Returns:
        "stateless" or "session".
    """
    mode = (requested or get_execution_mode()).lower()
    if mode == "auto":
        return "session" if tool.lower() in get_session_tools() else "stateless"
    if mode not in VALID_EXECUTION_MODES:
        raise ValueError(f"Unknown execution mode: {requested}")
    return mode


def get_acp_command(tool: str) -> List[str]:
    """Command line that starts ``tool`` speaking the Agent Client Protocol.

    Unknown tools fall back to the claude command.
    """
    commands = _load_config().get("acp", {})
    command = commands.get(tool.lower()) or commands.get("claude")
    if not command:
        command = _default_config()["acp"]["claude"]
    return list(command)
