"""
run_loop.py - Sequential workflow execution.

The run loop owns the run: it walks the steps in declaration order, hands
agent steps to a StepExecutor, runs command steps itself, accumulates
every step's outputs, reports progress, and decides whether to stop after a
failure.

Failures come in two flavors:
- Step failures (StepResult.success is False): recorded, and the run stops
  unless continue-on-error is enabled.
- Infrastructure faults (the executor raised): the run is aborted at once
  with InfrastructureFault.

The loop never picks exit codes; callers derive them from RunResult.
"""

from __future__ import annotations

import asyncio
import logging
import math
import subprocess
import time
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Union

from rover.runtime.agents import AGENT_AUTH_ERROR, AGENT_TIMEOUT
from rover.runtime.engines.base import StepExecutor
from rover.runtime.engines.models import RunResult, StepProgress, StepResult
from rover.runtime.engines.stateless import failure_outputs
from rover.runtime.event_log import RunEventLog
from rover.runtime.placeholders import StepsOutput, resolve_placeholders
from rover.runtime.status import RUNNING, NullStatusSink, StatusSink
from rover.workflow.schema import CommandStep, Workflow, WorkflowStep

logger = logging.getLogger(__name__)

StepCompletionObserver = Callable[[WorkflowStep, StepResult, StepProgress], None]

_ERROR_EVENTS = {
    AGENT_AUTH_ERROR: "agent_auth_error",
    AGENT_TIMEOUT: "agent_timeout",
}


class InfrastructureFault(Exception):
    """The run could not continue because an executor raised."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.step_id = step_id


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 100
    return math.floor(completed / total * 100)


# =============================================================================
# Command steps
# =============================================================================


def _run_process(args: List[str], cwd: Path, timeout: int) -> subprocess.CompletedProcess:
    return subprocess.run(args, cwd=str(cwd), capture_output=True, text=True, timeout=timeout)


async def run_command_step(
    step: CommandStep,
    inputs: Mapping[str, str],
    steps_output: StepsOutput,
    work_dir: Union[str, Path],
    timeout: int,
) -> StepResult:
    """Run a command step as a child process.

    Placeholders in the command and its arguments are resolved first (file
    outputs resolve to their stored path). Outputs are ``stdout`` and
    ``stderr``. A non-zero exit fails the step unless ``allow_failure`` is set.
    """
    start = time.monotonic()
    args = [
        resolve_placeholders(part, inputs, steps_output).text
        for part in [step.command, *step.args]
    ]
    command_line = " ".join(args)
    logger.info("Running command for step %s: %s", step.name, command_line)

    try:
        completed = await asyncio.to_thread(_run_process, args, Path(work_dir), timeout)
    except subprocess.TimeoutExpired:
        message = f"Command timed out after {timeout} seconds: {command_line}"
        return StepResult(
            id=step.id,
            success=False,
            duration=time.monotonic() - start,
            outputs=failure_outputs(message, "command_timeout", True, command_line),
            error=message,
        )
    except OSError as e:
        message = f"Failed to run command '{step.command}': {e}"
        return StepResult(
            id=step.id,
            success=False,
            duration=time.monotonic() - start,
            outputs=failure_outputs(message, "command_not_found", False, command_line),
            error=message,
        )

    outputs = {
        "stdout": completed.stdout or "",
        "stderr": completed.stderr or "",
        "raw_exit_code": str(completed.returncode),
        "input_command": command_line,
    }
    duration = time.monotonic() - start

    if completed.returncode != 0 and not step.allow_failure:
        message = f"Command exited with code {completed.returncode}"
        outputs.update(
            {"error": message, "error_code": "command_exit", "error_retryable": "false"}
        )
        return StepResult(id=step.id, success=False, duration=duration, outputs=outputs, error=message)

    if completed.returncode != 0:
        logger.warning("Command for step %s exited with code %d (allowed)", step.id, completed.returncode)
    return StepResult(id=step.id, success=True, duration=duration, outputs=outputs)


# =============================================================================
# Run loop
# =============================================================================


class WorkflowRunLoop:
    """Drives one workflow run.

    Args:
        workflow: The workflow to run.
        inputs: Run inputs (used to resolve command step arguments).
        status: Progress sink; defaults to a no-op sink.
        event_log: Optional structured JSONL log.
        continue_on_error: Overrides the workflow's ``continueOnError``.
        work_dir: Working directory for command steps.
    """

    def __init__(
        self,
        workflow: Workflow,
        inputs: Optional[Mapping[str, str]] = None,
        status: Optional[StatusSink] = None,
        event_log: Optional[RunEventLog] = None,
        continue_on_error: Optional[bool] = None,
        work_dir: Optional[Union[str, Path]] = None,
    ):
        self.workflow = workflow
        self.inputs = MappingProxyType(dict(inputs or {}))
        self.status: StatusSink = status or NullStatusSink()
        self.event_log = event_log
        self.continue_on_error = (
            workflow.config.continue_on_error if continue_on_error is None else continue_on_error
        )
        self.work_dir = Path(work_dir) if work_dir else Path.cwd()

    def _status(self, method: str, *args) -> None:
        try:
            getattr(self.status, method)(*args)
        except Exception as e:
            logger.warning("Status update (%s) failed: %s", method, e)

    def _log(self, event: str, message: str, level: str = "info", **fields) -> None:
        if self.event_log is not None:
            self.event_log.log(event, message, level=level, **fields)

    async def _execute(
        self, executor: StepExecutor, step: WorkflowStep, index: int, steps_output: StepsOutput
    ) -> StepResult:
        if isinstance(step, CommandStep):
            return await run_command_step(
                step, self.inputs, steps_output, self.work_dir, self.workflow.step_timeout(step)
            )
        return await executor.run_step(step, index, steps_output)

    async def run(
        self,
        executor: StepExecutor,
        on_step_complete: Optional[StepCompletionObserver] = None,
    ) -> RunResult:
        """Execute every step in order.

        Raises:
            InfrastructureFault: The executor raised instead of returning a result.
        """
        steps = self.workflow.steps
        total = len(steps)
        steps_output: Dict[str, Dict[str, str]] = {}
        step_results: List[StepResult] = []
        total_duration = 0.0
        error: Optional[str] = None
        failed_step_name: Optional[str] = None

        self._log(
            "workflow_start",
            f"Starting workflow: {self.workflow.name}",
            metadata={"total_steps": total, "mode": executor.mode},
        )

        for index, step in enumerate(steps):
            self._status("update", RUNNING, step.name, progress_percent(index, total))
            self._log("step_start", f"Starting step: {step.name}", step_id=step.id, step_name=step.name)

            try:
                result = await self._execute(executor, step, index, MappingProxyType(steps_output))
            except Exception as e:
                message = f"Step '{step.id}' aborted: {e}"
                logger.error("%s", message)
                self._status("fail", step.name, message)
                self._log("workflow_fail", message, level="error", step_id=step.id, error=str(e))
                raise InfrastructureFault(message, step_id=step.id) from e

            steps_output[step.id] = dict(result.outputs)
            step_results.append(result)
            total_duration += result.duration

            if result.success:
                self._log(
                    "step_complete",
                    f"Step completed: {step.name}",
                    step_id=step.id,
                    step_name=step.name,
                    duration=result.duration,
                )
            else:
                if error is None:
                    error = result.error or result.outputs.get("error") or f"Step '{step.id}' failed"
                    failed_step_name = step.name
                self._log_step_failure(step, result)

            self._status("update", RUNNING, step.name, progress_percent(index + 1, total))

            if on_step_complete is not None:
                progress = StepProgress(
                    step_index=index,
                    total_steps=total,
                    run_steps=len(step_results),
                    total_duration=total_duration,
                )
                try:
                    on_step_complete(step, result, progress)
                except Exception as e:
                    logger.warning("Step completion observer failed: %s", e)

            if not result.success and not self.continue_on_error:
                logger.info("Stopping workflow after failed step %s", step.id)
                break

        run_result = RunResult(
            total_duration=total_duration,
            run_steps=len(step_results),
            total_steps=total,
            steps_output=steps_output,
            step_results=step_results,
            error=error,
        )

        if run_result.success:
            self._status("complete", "Workflow completed successfully")
            self._log(
                "workflow_complete",
                f"Workflow completed: {self.workflow.name}",
                duration=total_duration,
                metadata={"run_steps": run_result.run_steps, "total_steps": total},
            )
        else:
            self._status("fail", failed_step_name or "", error or "Workflow failed")
            self._log(
                "workflow_fail",
                f"Workflow failed: {self.workflow.name}",
                level="error",
                duration=total_duration,
                error=error,
                metadata={
                    "run_steps": run_result.run_steps,
                    "failed_steps": run_result.failed_steps,
                    "skipped_steps": run_result.skipped_steps,
                },
            )

        return run_result

    def _log_step_failure(self, step: WorkflowStep, result: StepResult) -> None:
        code = result.error_code
        retryable = result.outputs.get("error_retryable") == "true"
        self._log(
            "step_fail",
            f"Step failed: {step.name}",
            level="error",
            step_id=step.id,
            step_name=step.name,
            duration=result.duration,
            error=result.error,
            error_code=code,
            error_retryable=retryable,
        )
        if code and code.startswith("agent_"):
            self._log(
                _ERROR_EVENTS.get(code, "agent_error"),
                f"Agent error in step {step.name}: {result.error}",
                level="error",
                step_id=step.id,
                error=result.error,
                error_code=code,
                error_retryable=retryable,
            )
