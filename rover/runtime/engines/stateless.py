"""
stateless.py - Stateless step execution.

Every step runs as a fresh agent CLI process. The process has no memory of
earlier steps, so file outputs referenced by the prompt are inlined with
their full content.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Union

from rover.config.runtime_config import get_default_tool
from rover.runtime.agents import (
    AGENT_ERROR,
    AgentInvocationError,
    AgentInvoker,
    CliAgentInvoker,
    unwrap_json_response,
    uses_json_format,
)
from rover.runtime.extraction import extract_outputs
from rover.runtime.placeholders import StepsOutput
from rover.runtime.prompt_builder import build_step_prompt
from rover.workflow.schema import AgentStep, Workflow

from .base import StepExecutor
from .models import StepResult

logger = logging.getLogger(__name__)

InvokerFactory = Callable[[str], AgentInvoker]


def failure_outputs(
    error: str,
    code: str,
    retryable: bool,
    prompt: str,
    raw_output: str = "",
) -> Dict[str, str]:
    """Bookkeeping outputs recorded for a failed step."""
    outputs = {
        "error": error,
        "error_code": code,
        "error_retryable": "true" if retryable else "false",
        "input_prompt": prompt,
    }
    if raw_output:
        outputs["raw_output"] = raw_output
    return outputs


class StatelessStepExecutor(StepExecutor):
    """Runs each agent step as a one-shot CLI invocation.

    Args:
        workflow: The workflow being run.
        inputs: Run inputs, defaults applied.
        work_dir: Directory the agent runs in and writes files to.
        output_dir: Where file outputs are moved to (None keeps them in place).
        tool: Tool override from the caller (step.tool still wins).
        model: Model override from the caller (step.model still wins).
        invoker_factory: Builds an AgentInvoker for a tool name.
    """

    def __init__(
        self,
        workflow: Workflow,
        inputs: Mapping[str, str],
        work_dir: Union[str, Path],
        output_dir: Optional[Union[str, Path]] = None,
        tool: Optional[str] = None,
        model: Optional[str] = None,
        invoker_factory: Optional[InvokerFactory] = None,
    ):
        self.workflow = workflow
        self.inputs = inputs
        self.work_dir = Path(work_dir)
        self.output_dir = Path(output_dir) if output_dir else None
        self.tool = tool
        self.model = model
        self._invoker_factory = invoker_factory or (lambda name: CliAgentInvoker(name, cwd=self.work_dir))
        self._invokers: Dict[str, AgentInvoker] = {}

    @property
    def mode(self) -> str:
        return "stateless"

    def _invoker_for(self, tool: str) -> AgentInvoker:
        if tool not in self._invokers:
            self._invokers[tool] = self._invoker_factory(tool)
        return self._invokers[tool]

    async def run_step(self, step: AgentStep, step_index: int, steps_output: StepsOutput) -> StepResult:
        start = time.monotonic()
        tool = (self.workflow.step_tool(step, self.tool) or get_default_tool()).lower()
        model = self.workflow.step_model(step, self.model)
        prompt = ""
        raw_output = ""

        try:
            prompt, warnings = build_step_prompt(
                step, self.inputs, steps_output, self.workflow, file_mode="content"
            )
            for warning in warnings:
                logger.warning("Step %s: %s", step.id, warning)

            logger.info("Running %s for step: %s", tool, step.name)
            logger.debug("Input prompt for step %s:\n%s", step.id, prompt)

            json_output = uses_json_format(tool)
            raw_output = await self._invoker_for(tool).invoke(
                prompt,
                json_output=json_output,
                model=model,
                timeout=self.workflow.step_timeout(step),
            )

            response_text = unwrap_json_response(tool, raw_output) if json_output else raw_output
            outputs = {"raw_output": raw_output, "input_prompt": prompt}
            outputs.update(extract_outputs(step.id, step.outputs, response_text, self.work_dir, self.output_dir))

        except AgentInvocationError as e:
            logger.error("Step '%s' failed: %s", step.name, e)
            return StepResult(
                id=step.id,
                success=False,
                duration=time.monotonic() - start,
                outputs=failure_outputs(str(e), e.code, e.retryable, prompt, raw_output),
                error=str(e),
            )
        except Exception as e:
            logger.error("Step '%s' failed: %s", step.name, e)
            return StepResult(
                id=step.id,
                success=False,
                duration=time.monotonic() - start,
                outputs=failure_outputs(str(e), AGENT_ERROR, False, prompt, raw_output),
                error=str(e),
            )

        logger.info("Step '%s' completed successfully", step.name)
        return StepResult(id=step.id, success=True, duration=time.monotonic() - start, outputs=outputs)
