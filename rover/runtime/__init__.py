"""Workflow runtime: prompt resolution, agent execution, output extraction, run loop."""

from .engines import RunResult, StepExecutor, StepResult, create_step_executor
from .run_loop import InfrastructureFault, WorkflowRunLoop
from .status import NullStatusSink, StatusFile

__all__ = [
    "InfrastructureFault",
    "NullStatusSink",
    "RunResult",
    "StatusFile",
    "StepExecutor",
    "StepResult",
    "WorkflowRunLoop",
    "create_step_executor",
]
