"""
models.py - Data models for step execution.

This module defines the core data types shared by executors and the run loop:
- StepResult: Output from executing one step
- RunResult: Aggregate outcome of a workflow run
- StepProgress: Snapshot passed to step-completion observers

These are pure data structures with no dependencies on executor implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

# Output keys the runtime adds for bookkeeping. They are kept in the outputs
# so later steps and logs can see them, but are hidden when displaying results.
BOOKKEEPING_PREFIXES = ("raw_", "input_")
BOOKKEEPING_KEYS = frozenset({"error", "error_code", "error_retryable"})


def is_bookkeeping_key(key: str) -> bool:
    return key.startswith(BOOKKEEPING_PREFIXES) or key in BOOKKEEPING_KEYS


def visible_outputs(outputs: Mapping[str, str]) -> Dict[str, str]:
    """Outputs worth showing to a user (bookkeeping keys removed)."""
    return {key: value for key, value in outputs.items() if not is_bookkeeping_key(key)}


@dataclass(frozen=True)
class StepResult:
    """Result of executing a single step.

    Attributes:
        id: The step id.
        success: Whether the step succeeded.
        duration: Wall time in seconds.
        outputs: Output name -> value, including bookkeeping keys
            (raw_output, input_prompt, and error/error_code/error_retryable
            on failure).
        error: Error message, if the step failed.
    """

    id: str
    success: bool
    duration: float = 0.0
    outputs: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def error_code(self) -> Optional[str]:
        return self.outputs.get("error_code")


@dataclass(frozen=True)
class StepProgress:
    """Where a run stands right after a step finished."""

    step_index: int
    total_steps: int
    run_steps: int
    total_duration: float


@dataclass(frozen=True)
class RunResult:
    """Aggregate outcome of a workflow run."""

    total_duration: float
    run_steps: int
    total_steps: int
    steps_output: Dict[str, Dict[str, str]]
    step_results: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def successful_steps(self) -> int:
        return sum(1 for r in self.step_results if r.success)

    @property
    def failed_steps(self) -> int:
        return sum(1 for r in self.step_results if not r.success)

    @property
    def skipped_steps(self) -> int:
        return self.total_steps - self.run_steps

    @property
    def success(self) -> bool:
        return self.failed_steps == 0
