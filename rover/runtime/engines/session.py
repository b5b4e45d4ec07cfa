"""
session.py - Session-mode step execution.

One agent connection is opened per run; every step gets its own protocol
session on top of it. The agent keeps file system access between steps, so
file outputs referenced by a prompt are passed as ``[File: name]`` tokens
instead of inlined content, and string outputs are reported through the
``_<step_id>_outputs.json`` side-channel file.

Lifecycle:
    start()      handshake once; failure raises ConnectionInitError
    run_step()   create session -> prompt -> extract -> close session
    close()      close the connection (idempotent)
"""

from __future__ import annotations

import copy
import logging
import time
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from rover.runtime.acp_client import AgentSession, PromptTimeoutError, SessionHandle
from rover.runtime.agents import AGENT_TIMEOUT, RETRYABLE_CODES, AgentInvocationError, classify_agent_error
from rover.runtime.extraction import extract_outputs
from rover.runtime.placeholders import StepsOutput
from rover.runtime.prompt_builder import build_step_prompt
from rover.workflow.schema import AgentStep, Workflow

from .base import ConnectionInitError, SessionStateError, StepExecutor
from .models import StepResult
from .stateless import failure_outputs

logger = logging.getLogger(__name__)


class SessionStepExecutor(StepExecutor):
    """Runs agent steps as sessions over one persistent agent connection.

    Args:
        workflow: The workflow being run.
        inputs: Run inputs, defaults applied.
        session: The agent transport.
        work_dir: Directory the agent works in.
        output_dir: Where file outputs are moved to (None keeps them in place).
    """

    def __init__(
        self,
        workflow: Workflow,
        inputs: Mapping[str, str],
        session: AgentSession,
        work_dir: Union[str, Path],
        output_dir: Optional[Union[str, Path]] = None,
    ):
        self.workflow = workflow
        self.inputs = inputs
        self.session = session
        self.work_dir = Path(work_dir)
        self.output_dir = Path(output_dir) if output_dir else None
        self._steps_output: Dict[str, Dict[str, str]] = {}
        self._active: Optional[SessionHandle] = None
        self._started = False
        self._closed = False

    @property
    def mode(self) -> str:
        return "session"

    @property
    def steps_output(self) -> Dict[str, Dict[str, str]]:
        """The executor's own copy of outputs seen so far."""
        return self._steps_output

    async def start(self) -> None:
        if self._started:
            return
        try:
            await self.session.initialize_connection()
        except Exception as e:
            logger.error("Failed to initialize agent connection: %s", e)
            await self.close()
            raise ConnectionInitError(f"Failed to initialize agent connection: {e}") from e
        self._started = True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.session.close_connection()
        except Exception as e:
            logger.warning("Error while closing agent connection: %s", e)

    async def _close_active(self) -> None:
        handle, self._active = self._active, None
        if handle is None:
            return
        try:
            await self.session.close_session(handle)
        except Exception as e:
            logger.warning("Error while closing session for step %s: %s", handle.step_id, e)

    async def run_step(self, step: AgentStep, step_index: int, steps_output: StepsOutput) -> StepResult:
        if self._active is not None:
            raise SessionStateError(
                f"Cannot start step '{step.id}': session for step '{self._active.step_id}' is still open"
            )

        start = time.monotonic()
        self._steps_output = copy.deepcopy({k: dict(v) for k, v in steps_output.items()})
        prompt = ""

        try:
            prompt, warnings = build_step_prompt(
                step,
                self.inputs,
                self._steps_output,
                self.workflow,
                file_mode="reference",
                side_channel=True,
            )
            for warning in warnings:
                logger.warning("Step %s: %s", step.id, warning)

            logger.info("Running step %s (%d) in session mode", step.name, step_index + 1)
            self._active = await self.session.create_session(step.id)

            timeout = self.workflow.step_timeout(step)
            try:
                result = await self.session.prompt_session(self._active, prompt, timeout=timeout)
            except PromptTimeoutError as e:
                raise AgentInvocationError(str(e), code=AGENT_TIMEOUT) from e

            raw_output = result.text or f"Stop reason: {result.stop_reason}"
            outputs = {"raw_output": raw_output, "raw_stop_reason": result.stop_reason, "input_prompt": prompt}
            outputs.update(extract_outputs(step.id, step.outputs, result.text, self.work_dir, self.output_dir))

        except AgentInvocationError as e:
            logger.error("Step '%s' failed: %s", step.name, e)
            return StepResult(
                id=step.id,
                success=False,
                duration=time.monotonic() - start,
                outputs=failure_outputs(str(e), e.code, e.retryable, prompt),
                error=str(e),
            )
        except Exception as e:
            logger.error("Step '%s' failed: %s", step.name, e)
            code = classify_agent_error(str(e))
            return StepResult(
                id=step.id,
                success=False,
                duration=time.monotonic() - start,
                outputs=failure_outputs(str(e), code, code in RETRYABLE_CODES, prompt),
                error=str(e),
            )
        finally:
            await self._close_active()

        self._steps_output[step.id] = dict(outputs)
        logger.info("Step '%s' completed successfully", step.name)
        return StepResult(id=step.id, success=True, duration=time.monotonic() - start, outputs=outputs)
