"""
Test helpers: workflow builders and in-memory agent doubles.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Union

from rover.runtime.acp_client import AgentSession, PromptResult, SessionHandle
from rover.runtime.agents import AgentInvoker
from rover.workflow import Workflow


def agent_step(
    step_id: str,
    prompt: str = "Do the thing",
    outputs: Optional[List[Dict[str, Any]]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Raw dict for an agent step."""
    step = {
        "id": step_id,
        "type": "agent",
        "name": extra.pop("name", step_id.title()),
        "prompt": prompt,
        "outputs": outputs or [],
    }
    step.update(extra)
    return step


def command_step(step_id: str, command: str, args: Optional[List[str]] = None, **extra: Any) -> Dict[str, Any]:
    step = {
        "id": step_id,
        "type": "command",
        "name": extra.pop("name", step_id.title()),
        "command": command,
        "args": args or [],
    }
    step.update(extra)
    return step


def build_workflow(steps: List[Dict[str, Any]], **fields: Any) -> Workflow:
    """Validate a workflow from raw step dicts."""
    data: Dict[str, Any] = {"version": "1.0", "name": fields.pop("name", "test-workflow"), "steps": steps}
    data.update(fields)
    return Workflow.model_validate(data)


Response = Union[str, Exception, Callable[[str], str]]


class FakeInvoker(AgentInvoker):
    """AgentInvoker returning canned responses in order.

    Each response may be a string, an exception to raise, or a callable
    receiving the prompt.
    """

    def __init__(self, tool: str = "claude", responses: Optional[List[Response]] = None):
        self._tool = tool
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    @property
    def tool(self) -> str:
        return self._tool

    async def invoke(self, prompt, json_output=False, model=None, timeout=None):
        self.calls.append({"prompt": prompt, "json_output": json_output, "model": model, "timeout": timeout})
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response


class FakeSession(AgentSession):
    """AgentSession double that records every call.

    Args:
        on_prompt: Called with (handle, text); returns a PromptResult or raises.
        init_error: Raised by initialize_connection when set.
    """

    def __init__(
        self,
        on_prompt: Optional[Callable[[SessionHandle, str], PromptResult]] = None,
        init_error: Optional[Exception] = None,
    ):
        self.on_prompt = on_prompt or (lambda handle, text: PromptResult(stop_reason="end_turn", text=""))
        self.init_error = init_error
        self.calls: List[str] = []
        self.prompts: List[str] = []
        self.closed_sessions: List[str] = []
        self.timeouts: List[Optional[float]] = []
        self._counter = 0

    async def initialize_connection(self) -> None:
        self.calls.append("initialize_connection")
        if self.init_error is not None:
            raise self.init_error

    async def create_session(self, step_id: str) -> SessionHandle:
        self.calls.append("create_session")
        self._counter += 1
        return SessionHandle(step_id=step_id, session_id=f"sess-{self._counter}")

    async def prompt_session(self, handle: SessionHandle, text: str, timeout=None) -> PromptResult:
        self.calls.append("prompt_session")
        self.prompts.append(text)
        self.timeouts.append(timeout)
        return self.on_prompt(handle, text)

    async def close_session(self, handle: SessionHandle) -> None:
        self.calls.append("close_session")
        self.closed_sessions.append(handle.session_id)

    async def close_connection(self) -> None:
        self.calls.append("close_connection")
