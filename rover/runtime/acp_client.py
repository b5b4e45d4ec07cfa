"""
acp_client.py - Persistent agent sessions over the Agent Client Protocol.

ACP is JSON-RPC 2.0 carried as newline-delimited JSON over the agent
process's stdin/stdout. The client side of a run looks like:

    initialize          once per connection (protocol version, fs capability)
    session/new         once per step, returns a sessionId
    session/prompt      the step prompt; resolves with a stopReason

While a prompt is in flight the agent streams ``session/update``
notifications (message chunks are collected as the response text) and may
call back into the client with ``session/request_permission``,
``fs/read_text_file`` and ``fs/write_text_file`` requests.

AgentSession is the interface the session executor depends on;
AcpAgentSession is the ACP implementation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
CANCEL_GRACE_SECONDS = 5.0

# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


@dataclass(frozen=True)
class SessionHandle:
    """A protocol session opened for one workflow step."""

    step_id: str
    session_id: str


@dataclass(frozen=True)
class PromptResult:
    stop_reason: str
    text: str = ""


class AcpError(Exception):
    """The agent answered a request with a JSON-RPC error, or the link broke."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class PromptTimeoutError(AcpError):
    """A session/prompt did not finish within its timeout and was cancelled."""

    def __init__(self, message: str, timeout: float):
        super().__init__(message)
        self.timeout = timeout


class AgentSession(ABC):
    """Session-oriented agent transport used by session mode."""

    @abstractmethod
    async def initialize_connection(self) -> None:
        ...

    @abstractmethod
    async def create_session(self, step_id: str) -> SessionHandle:
        ...

    @abstractmethod
    async def prompt_session(
        self, handle: SessionHandle, text: str, timeout: Optional[float] = None
    ) -> PromptResult:
        """Run one prompt turn.

        Raises:
            PromptTimeoutError: The turn outlived ``timeout``; the agent has
                been told to stop before this is raised.
        """

    @abstractmethod
    async def close_session(self, handle: SessionHandle) -> None:
        ...

    @abstractmethod
    async def close_connection(self) -> None:
        ...


# =============================================================================
# JSON-RPC connection
# =============================================================================

RequestHandler = Callable[[str, Dict[str, Any]], Awaitable[Any]]
NotificationHandler = Callable[[str, Dict[str, Any]], None]


class AcpConnection:
    """Newline-delimited JSON-RPC 2.0 over a pair of asyncio streams.

    Args:
        reader: Object with an async ``readline()`` (e.g. asyncio.StreamReader).
        writer: Object with ``write(bytes)`` and async ``drain()``.
        on_request: Called for agent -> client requests; its return value
            becomes the response result.
        on_notification: Called for agent -> client notifications.
    """

    def __init__(
        self,
        reader: Any,
        writer: Any,
        on_request: RequestHandler,
        on_notification: NotificationHandler,
    ):
        self._reader = reader
        self._writer = writer
        self._on_request = on_request
        self._on_notification = on_notification
        self._next_id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._closed = False
        self._eof = False

    def start(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())

    async def request(self, method: str, params: Dict[str, Any]) -> Any:
        """Send a request and wait for its result."""
        if self._closed or self._eof:
            raise AcpError(f"Agent connection closed; cannot send {method}")

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Dict[str, Any]) -> None:
        """Send a notification (no response expected)."""
        if self._closed or self._eof:
            raise AcpError(f"Agent connection closed; cannot send {method}")
        await self._send({"jsonrpc": "2.0", "method": method, "params": params})

    async def _send(self, message: Dict[str, Any]) -> None:
        logger.debug("ACP -> %s", message.get("method") or message.get("id"))
        self._writer.write((json.dumps(message) + "\n").encode("utf-8"))
        await self._writer.drain()

    async def _read_loop(self) -> None:
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                line = line.decode("utf-8") if isinstance(line, bytes) else line
                line = line.strip()
                if not line:
                    continue
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON line from agent: %s", line[:200])
                    continue
                self._dispatch(message)
        finally:
            self._eof = True
            self._fail_pending(AcpError("Agent connection closed"))

    def _dispatch(self, message: Dict[str, Any]) -> None:
        method = message.get("method")
        message_id = message.get("id")

        if method is None:
            future = self._pending.get(message_id)
            if future is None or future.done():
                logger.debug("Dropping response for unknown request id %s", message_id)
                return
            if "error" in message and message["error"] is not None:
                error = message["error"]
                future.set_exception(
                    AcpError(error.get("message", "Unknown error"), error.get("code"), error.get("data"))
                )
            else:
                future.set_result(message.get("result"))
            return

        params = message.get("params") or {}
        if message_id is None:
            try:
                self._on_notification(method, params)
            except Exception as e:
                logger.warning("Notification handler for %s failed: %s", method, e)
            return

        task = asyncio.create_task(self._answer(message_id, method, params))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _answer(self, message_id: Any, method: str, params: Dict[str, Any]) -> None:
        try:
            result = await self._on_request(method, params)
            reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": message_id, "result": result}
        except AcpError as e:
            reply = {
                "jsonrpc": "2.0",
                "id": message_id,
                "error": {"code": e.code or INTERNAL_ERROR, "message": str(e)},
            }
        except Exception as e:
            logger.warning("Handling %s failed: %s", method, e)
            reply = {"jsonrpc": "2.0", "id": message_id, "error": {"code": INTERNAL_ERROR, "message": str(e)}}

        if not self._closed:
            await self._send(reply)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = [t for t in [self._reader_task, *self._handler_tasks] if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._fail_pending(AcpError("Agent connection closed"))


# =============================================================================
# ACP agent session
# =============================================================================


def select_permission_option(options: Sequence[Dict[str, Any]]) -> str:
    """Pick the option id that grants the requested permission."""
    for kind in ("allow_always", "allow_once"):
        for option in options:
            if option.get("kind") == kind and option.get("optionId"):
                return option["optionId"]
    return "allow_always"


class AcpAgentSession(AgentSession):
    """AgentSession backed by an ACP agent process.

    Args:
        command: Argument vector that starts the agent in ACP mode.
        cwd: Working directory for the agent and its sessions.
        streams: Pre-opened (reader, writer) pair. When given, no process
            is spawned (used for in-process agents and tests).
        cancel_grace: Seconds to wait for the agent to acknowledge a
            session/cancel after a prompt times out.
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        streams: Optional[Tuple[Any, Any]] = None,
        cancel_grace: float = CANCEL_GRACE_SECONDS,
    ):
        self.command = list(command)
        self.cwd = Path(cwd).resolve() if cwd else Path.cwd()
        self.cancel_grace = cancel_grace
        self._streams = streams
        self._process: Optional[asyncio.subprocess.Process] = None
        self._connection: Optional[AcpConnection] = None
        self._buffers: Dict[str, List[str]] = {}
        self.agent_info: Dict[str, Any] = {}

    async def initialize_connection(self) -> None:
        if self._connection is not None:
            return

        if self._streams is not None:
            reader, writer = self._streams
        else:
            logger.info("Starting ACP agent: %s", " ".join(self.command))
            try:
                self._process = await asyncio.create_subprocess_exec(
                    *self.command,
                    cwd=str(self.cwd),
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.DEVNULL,
                )
            except OSError as e:
                raise AcpError(f"Failed to start agent '{self.command[0]}': {e}") from e
            reader, writer = self._process.stdout, self._process.stdin

        self._connection = AcpConnection(reader, writer, self._handle_request, self._handle_notification)
        self._connection.start()

        try:
            result = await self._connection.request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "clientCapabilities": {"fs": {"readTextFile": True, "writeTextFile": True}},
                },
            )
        except Exception:
            await self.close_connection()
            raise
        self.agent_info = result or {}
        logger.debug("ACP connection initialized (protocol %s)", self.agent_info.get("protocolVersion"))

    def _require_connection(self) -> AcpConnection:
        if self._connection is None:
            raise AcpError("ACP connection is not initialized")
        return self._connection

    async def create_session(self, step_id: str) -> SessionHandle:
        result = await self._require_connection().request(
            "session/new", {"cwd": str(self.cwd), "mcpServers": []}
        )
        session_id = (result or {}).get("sessionId")
        if not session_id:
            raise AcpError("Agent did not return a sessionId")
        self._buffers[session_id] = []
        logger.debug("Created ACP session %s for step %s", session_id, step_id)
        return SessionHandle(step_id=step_id, session_id=session_id)

    async def prompt_session(
        self, handle: SessionHandle, text: str, timeout: Optional[float] = None
    ) -> PromptResult:
        connection = self._require_connection()
        self._buffers[handle.session_id] = []
        request = asyncio.ensure_future(
            connection.request(
                "session/prompt",
                {"sessionId": handle.session_id, "prompt": [{"type": "text", "text": text}]},
            )
        )
        try:
            done, _ = await asyncio.wait({request}, timeout=timeout)
        except asyncio.CancelledError:
            request.cancel()
            raise
        if not done:
            await self._cancel_prompt(handle, request)
            raise PromptTimeoutError(
                f"Step '{handle.step_id}' timed out after {timeout} seconds", timeout=timeout
            )

        result = request.result()
        stop_reason = (result or {}).get("stopReason", "unknown")
        return PromptResult(stop_reason=stop_reason, text="".join(self._buffers.get(handle.session_id, [])))

    async def _cancel_prompt(self, handle: SessionHandle, request: "asyncio.Future") -> None:
        """Ask the agent to stop the turn and wait briefly for it to wind down."""
        logger.warning("Prompt for step %s timed out; cancelling session %s", handle.step_id, handle.session_id)
        try:
            await self._require_connection().notify("session/cancel", {"sessionId": handle.session_id})
        except AcpError as e:
            logger.warning("Could not send session/cancel for %s: %s", handle.session_id, e)

        done, _ = await asyncio.wait({request}, timeout=self.cancel_grace)
        if done:
            if not request.cancelled() and request.exception() is None:
                logger.debug("Session %s stopped: %s", handle.session_id, (request.result() or {}).get("stopReason"))
            return
        logger.warning("Agent did not acknowledge cancel for session %s", handle.session_id)
        request.cancel()
        await asyncio.gather(request, return_exceptions=True)

    async def close_session(self, handle: SessionHandle) -> None:
        self._buffers.pop(handle.session_id, None)
        logger.debug("Closed ACP session %s", handle.session_id)

    async def close_connection(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

        if self._process is not None:
            if self._process.returncode is None:
                self._process.terminate()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=5)
                except asyncio.TimeoutError:
                    self._process.kill()
                    await self._process.wait()
            self._process = None
        self._buffers.clear()

    # ------------------------------------------------------------------
    # Agent -> client traffic
    # ------------------------------------------------------------------

    def _handle_notification(self, method: str, params: Dict[str, Any]) -> None:
        if method != "session/update":
            logger.debug("Ignoring ACP notification %s", method)
            return

        update = params.get("update") or {}
        if update.get("sessionUpdate") != "agent_message_chunk":
            return
        content = update.get("content") or {}
        if content.get("type") != "text":
            return
        buffer = self._buffers.get(params.get("sessionId", ""))
        if buffer is None:
            logger.debug("Dropping message chunk for unknown session %s", params.get("sessionId"))
            return
        buffer.append(content.get("text", ""))

    def _resolve_path(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.cwd / candidate

    async def _handle_request(self, method: str, params: Dict[str, Any]) -> Any:
        if method == "session/request_permission":
            option_id = select_permission_option(params.get("options") or [])
            return {"outcome": {"outcome": "selected", "optionId": option_id}}

        if method == "fs/read_text_file":
            path = self._resolve_path(params["path"])
            content = path.read_text(encoding="utf-8")
            line = params.get("line")
            limit = params.get("limit")
            if line or limit:
                lines = content.splitlines(keepends=True)
                start = max((line or 1) - 1, 0)
                end = start + limit if limit else None
                content = "".join(lines[start:end])
            return {"content": content}

        if method == "fs/write_text_file":
            path = self._resolve_path(params["path"])
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(params.get("content", ""), encoding="utf-8")
            return None

        raise AcpError(f"Method not supported: {method}", code=METHOD_NOT_FOUND)
