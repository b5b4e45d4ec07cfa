"""
factory.py - Step executor factory.

Picks stateless or session execution for a run. Settings are resolved in
this order:
1. Explicit arguments (CLI flags)
2. Environment variables (ROVER_AGENT_TOOL, ROVER_EXECUTION_MODE)
3. runtime.yaml
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional, Union

from rover.config.runtime_config import get_acp_command, get_default_tool, resolve_execution_mode
from rover.runtime.acp_client import AcpAgentSession, AgentSession
from rover.workflow.schema import Workflow

from .base import StepExecutor
from .session import SessionStepExecutor
from .stateless import InvokerFactory, StatelessStepExecutor

logger = logging.getLogger(__name__)


def create_step_executor(
    workflow: Workflow,
    inputs: Mapping[str, str],
    work_dir: Union[str, Path],
    output_dir: Optional[Union[str, Path]] = None,
    tool: Optional[str] = None,
    model: Optional[str] = None,
    mode: Optional[str] = None,
    session: Optional[AgentSession] = None,
    invoker_factory: Optional[InvokerFactory] = None,
) -> StepExecutor:
    """Build the executor for a run.

    Args:
        workflow: The workflow to run.
        inputs: Run inputs, defaults applied.
        work_dir: Agent working directory.
        output_dir: Where file outputs are collected.
        tool: Tool override; falls back to workflow defaults, then config.
        model: Model override (stateless mode).
        mode: "auto", "stateless" or "session"; None reads config.
        session: Pre-built AgentSession for session mode.
        invoker_factory: Invoker builder for stateless mode.

    Returns:
        An unstarted StepExecutor; use it as an async context manager.

    Raises:
        ValueError: If mode is not recognized.
    """
    resolved_tool = (tool or workflow.defaults.tool or get_default_tool()).lower()
    resolved_mode = resolve_execution_mode(resolved_tool, mode)

    logger.debug("create_step_executor: tool=%s mode=%s", resolved_tool, resolved_mode)

    if resolved_mode == "session":
        if session is None:
            session = AcpAgentSession(get_acp_command(resolved_tool), cwd=work_dir)
        return SessionStepExecutor(workflow, inputs, session, work_dir, output_dir)

    return StatelessStepExecutor(
        workflow,
        inputs,
        work_dir,
        output_dir=output_dir,
        tool=tool,
        model=model,
        invoker_factory=invoker_factory,
    )
