"""
agents.py - Invoke AI coding agent CLIs as one-shot subprocesses.

Each supported tool takes the prompt on stdin and writes its answer to
stdout. Tools that support it are asked for a JSON envelope, which is
unwrapped with unwrap_json_response() before output extraction.

Failures are raised as AgentInvocationError with a machine-readable code:

    agent_timeout       the process exceeded its timeout (retryable)
    agent_auth_error    the tool reported missing/invalid credentials
    agent_rate_limited  the provider rejected the call for quota (retryable)
    agent_not_found     the tool executable is not installed
    agent_exit          the process exited non-zero for any other reason
    agent_error         anything else
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from rover.config.runtime_config import get_step_timeout

logger = logging.getLogger(__name__)

# Error codes
AGENT_TIMEOUT = "agent_timeout"
AGENT_AUTH_ERROR = "agent_auth_error"
AGENT_RATE_LIMITED = "agent_rate_limited"
AGENT_NOT_FOUND = "agent_not_found"
AGENT_EXIT = "agent_exit"
AGENT_ERROR = "agent_error"

RETRYABLE_CODES = frozenset({AGENT_TIMEOUT, AGENT_RATE_LIMITED})

# Tools whose CLI emits a JSON envelope around the answer
JSON_FORMAT_TOOLS = ("claude", "gemini")

# Keys holding the answer text inside each tool's JSON envelope, in order
_RESPONSE_KEYS: Dict[str, Tuple[str, ...]] = {
    "claude": ("result", "content", "message"),
    "gemini": ("response", "content", "text"),
}

_AUTH_PATTERN = re.compile(
    r"not (?:logged in|authenticated)|unauthori[sz]ed|invalid api key|authentication|\b401\b|please (?:log ?in|login)",
    re.IGNORECASE,
)
_RATE_LIMIT_PATTERN = re.compile(r"rate.?limit|too many requests|quota|\b429\b", re.IGNORECASE)

_STDERR_LIMIT = 500


class AgentInvocationError(Exception):
    """An agent call failed.

    Attributes:
        code: One of the agent_* error codes.
        retryable: Whether retrying the same call may succeed.
    """

    def __init__(self, message: str, code: str = AGENT_ERROR, retryable: Optional[bool] = None):
        super().__init__(message)
        self.code = code
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable


def classify_agent_error(message: str, exit_code: Optional[int] = None) -> str:
    """Map a failure message (usually stderr) to an error code."""
    if _AUTH_PATTERN.search(message or ""):
        return AGENT_AUTH_ERROR
    if _RATE_LIMIT_PATTERN.search(message or ""):
        return AGENT_RATE_LIMITED
    if exit_code is not None and exit_code != 0:
        return AGENT_EXIT
    return AGENT_ERROR


def tool_arguments(tool: str, model: Optional[str] = None, json_output: bool = True) -> List[str]:
    """Command-line arguments for a non-interactive run of ``tool``."""
    tool = tool.lower()
    model_args = ["--model", model] if model else []
    json_args = ["--output-format", "json"] if json_output else []

    if tool == "claude":
        return ["--dangerously-skip-permissions", *json_args, *model_args, "-p"]
    if tool == "codex":
        return [
            "exec",
            "--dangerously-bypass-approvals-and-sandbox",
            "--skip-git-repo-check",
            *model_args,
            "-",
        ]
    if tool == "gemini":
        return ["--yolo", *json_args, *model_args]
    if tool == "qwen":
        return ["--yolo", *model_args, "-p"]
    return ["--dangerously-skip-permissions", "-p"]


def uses_json_format(tool: str) -> bool:
    return tool.lower() in JSON_FORMAT_TOOLS


def unwrap_json_response(tool: str, raw: str) -> str:
    """Pull the answer text out of a tool's JSON envelope.

    Invalid JSON, or an envelope without a known key, yields ``raw`` unchanged.
    """
    keys = _RESPONSE_KEYS.get(tool.lower())
    if not keys:
        return raw

    try:
        envelope = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Expected JSON format but got invalid JSON, treating as raw text")
        return raw

    if not isinstance(envelope, dict):
        return raw

    for key in keys:
        value = envelope.get(key)
        if value:
            return value if isinstance(value, str) else json.dumps(value)
    return raw


class AgentInvoker(ABC):
    """Sends a prompt to an agent and returns its raw stdout."""

    @property
    @abstractmethod
    def tool(self) -> str:
        ...

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        json_output: bool = False,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> str:
        """Run one prompt.

        Raises:
            AgentInvocationError: The call failed.
        """
        ...


class CliAgentInvoker(AgentInvoker):
    """Runs the agent's CLI once per call with the prompt on stdin."""

    def __init__(self, tool: str, cwd: Optional[Union[str, Path]] = None, default_timeout: Optional[int] = None):
        self._tool = tool.lower()
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.default_timeout = default_timeout or get_step_timeout()

    @property
    def tool(self) -> str:
        return self._tool

    def _run(self, prompt: str, json_output: bool, model: Optional[str], timeout: int) -> str:
        args = [self._tool, *tool_arguments(self._tool, model, json_output)]
        logger.debug("Running agent: %s (cwd=%s, timeout=%ss)", " ".join(args), self.cwd, timeout)

        try:
            completed = subprocess.run(
                args,
                cwd=str(self.cwd),
                input=prompt,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise AgentInvocationError(
                f"{self._tool} timed out after {timeout} seconds", code=AGENT_TIMEOUT
            ) from e
        except FileNotFoundError as e:
            raise AgentInvocationError(
                f"{self._tool} is not installed or not on PATH", code=AGENT_NOT_FOUND
            ) from e
        except OSError as e:
            raise AgentInvocationError(f"Failed to start {self._tool}: {e}", code=AGENT_ERROR) from e

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            message = stderr[:_STDERR_LIMIT] if stderr else f"Exit code {completed.returncode}"
            code = classify_agent_error(stderr or completed.stdout or "", completed.returncode)
            raise AgentInvocationError(f"{self._tool} failed: {message}", code=code)

        return completed.stdout or ""

    async def invoke(
        self,
        prompt: str,
        json_output: bool = False,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> str:
        return await asyncio.to_thread(
            self._run, prompt, json_output, model, timeout or self.default_timeout
        )
