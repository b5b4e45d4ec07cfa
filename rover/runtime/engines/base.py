"""
base.py - Abstract base class for step executors.

A StepExecutor turns one agent step into a StepResult. Executors are
responsible for:
- Resolving the step prompt against inputs and earlier outputs
- Talking to the agent (one-shot subprocess or persistent session)
- Extracting the step's declared outputs

Executors do NOT own:
- Step ordering or stop/continue decisions (that's the run loop's job)
- Status persistence (that's the status sink's job)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from rover.runtime.placeholders import StepsOutput
from rover.workflow.schema import AgentStep

from .models import StepResult


class ConnectionInitError(Exception):
    """The agent connection could not be established; the run cannot start."""


class SessionStateError(Exception):
    """A session was opened while the previous one was still open."""


class StepExecutor(ABC):
    """Abstract base class for step executors.

    Executors are async context managers: ``start()`` on enter and
    ``close()`` on exit. ``close()`` must be idempotent.
    """

    @property
    @abstractmethod
    def mode(self) -> str:
        """Execution mode name ("stateless" or "session")."""
        ...

    async def start(self) -> None:
        """Acquire any long-lived resources. No-op by default."""

    async def close(self) -> None:
        """Release long-lived resources. No-op by default."""

    @abstractmethod
    async def run_step(self, step: AgentStep, step_index: int, steps_output: StepsOutput) -> StepResult:
        """Execute one agent step.

        Args:
            step: The step to execute.
            step_index: 0-based position of the step in the workflow.
            steps_output: Outputs of the steps executed so far (read only).

        Returns:
            StepResult. Agent-level failures are reported through
            ``success=False``; raising means an infrastructure fault.
        """
        ...

    async def __aenter__(self) -> "StepExecutor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        await self.close()
        return None
