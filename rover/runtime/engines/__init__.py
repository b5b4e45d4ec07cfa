"""
Step executors.

Usage:
    from rover.runtime.engines import create_step_executor

    async with create_step_executor(workflow, inputs, work_dir) as executor:
        result = await executor.run_step(step, 0, {})
"""

from .base import ConnectionInitError, SessionStateError, StepExecutor
from .factory import create_step_executor
from .models import (
    RunResult,
    StepProgress,
    StepResult,
    is_bookkeeping_key,
    visible_outputs,
)
from .session import SessionStepExecutor
from .stateless import StatelessStepExecutor

__all__ = [
    "ConnectionInitError",
    "RunResult",
    "SessionStateError",
    "SessionStepExecutor",
    "StatelessStepExecutor",
    "StepExecutor",
    "StepProgress",
    "StepResult",
    "create_step_executor",
    "is_bookkeeping_key",
    "visible_outputs",
]
