"""
loader.py - Load workflow YAML files and prepare run inputs.

The loader turns YAML text into a validated Workflow and merges the inputs a
user supplied with the workflow's declared defaults. The resulting inputs
mapping is read-only: the run loop and executors never mutate it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from .schema import Workflow

logger = logging.getLogger(__name__)

RunInputs = Mapping[str, str]


class WorkflowLoadError(Exception):
    """The workflow file could not be read or parsed."""


class WorkflowValidationError(WorkflowLoadError):
    """The workflow file parsed but does not match the schema."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


def _format_validation_error(error: ValidationError) -> List[str]:
    lines = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue.get("loc", ()))
        lines.append(f"{location}: {issue.get('msg', 'invalid value')}")
    return lines


def load_workflow_from_string(content: str) -> Workflow:
    """Parse and validate a workflow from YAML text.

    Raises:
        WorkflowLoadError: If the YAML cannot be parsed.
        WorkflowValidationError: If the data does not match the schema.
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise WorkflowLoadError(f"Failed to parse YAML: {e}") from e

    if not isinstance(data, dict):
        raise WorkflowValidationError("Workflow validation failed: expected a mapping at top level")

    try:
        return Workflow.model_validate(data)
    except ValidationError as e:
        errors = _format_validation_error(e)
        message = "Workflow validation failed:\n" + "\n".join(f"  - {line}" for line in errors)
        raise WorkflowValidationError(message, errors) from e


def load_workflow(path: Union[str, Path]) -> Workflow:
    """Load and validate a workflow from a YAML file."""
    workflow_path = Path(path)
    if not workflow_path.exists():
        raise WorkflowLoadError(f"Workflow configuration not found at {workflow_path}")

    try:
        content = workflow_path.read_text(encoding="utf-8")
    except OSError as e:
        raise WorkflowLoadError(f"Failed to read workflow file at {workflow_path}: {e}") from e

    workflow = load_workflow_from_string(content)
    logger.debug("Loaded workflow '%s' with %d steps from %s", workflow.name, len(workflow.steps), workflow_path)
    return workflow


# =============================================================================
# Inputs
# =============================================================================


@dataclass
class InputValidation:
    """Outcome of checking provided inputs against the workflow declaration."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_inputs(workflow: Workflow, provided: Mapping[str, object]) -> Tuple[RunInputs, List[str]]:
    """Merge provided inputs with workflow defaults.

    Returns:
        Tuple of (read-only inputs mapping, names of inputs filled from defaults).
    """
    merged: Dict[str, str] = {name: _stringify(value) for name, value in provided.items()}
    defaulted: List[str] = []

    for declared in workflow.inputs:
        if declared.name not in merged and declared.default is not None:
            merged[declared.name] = _stringify(declared.default)
            defaulted.append(declared.name)

    return MappingProxyType(merged), defaulted


def validate_inputs(workflow: Workflow, inputs: Mapping[str, str]) -> InputValidation:
    """Check required inputs are present and flag unknown ones."""
    result = InputValidation()

    for declared in workflow.inputs:
        value = inputs.get(declared.name)
        if declared.required and not value and declared.default is None:
            result.errors.append(f'Required input "{declared.name}" is missing')

    declared_names = {i.name for i in workflow.inputs}
    for name in inputs:
        if name not in declared_names:
            result.warnings.append(f'Unknown input "{name}" provided (not defined in workflow)')

    return result


def parse_input_options(options: List[str], base: Optional[Mapping[str, object]] = None) -> Dict[str, object]:
    """Parse repeated ``key=value`` options on top of ``base`` (options win)."""
    parsed: Dict[str, object] = dict(base or {})
    for option in options:
        key, sep, value = option.partition("=")
        key = key.strip()
        if not sep or not key:
            logger.warning("Ignoring malformed input '%s' (expected key=value)", option)
            continue
        parsed[key] = value
    return parsed


# =============================================================================
# Context injection
# =============================================================================


def build_context_message(context_dir: Union[str, Path]) -> Optional[str]:
    """Build the notice prepended to prompts when a context directory exists."""
    context_path = Path(context_dir)
    if not (context_path / "index.md").exists():
        return None

    lines = [
        "\n\n**Context Sources:**",
        f"The context directory at `{context_path}/` contains reference materials for this task.",
        f"Read the index file at `{context_path}/index.md` for a complete overview of all "
        "available context sources and their descriptions.",
        "",
        "**Important:** Read the context index before proceeding with the task.",
        "",
    ]
    return "\n".join(lines)


def inject_context(workflow: Workflow, context_dir: Optional[Union[str, Path]]) -> Workflow:
    """Prefix every agent prompt with the context notice, if there is one."""
    if not context_dir or not Path(context_dir).exists():
        return workflow

    message = build_context_message(context_dir)
    if not message or not workflow.steps:
        return workflow

    logger.info("Context sources injected into workflow steps")
    return workflow.with_prompt_prefix(message)
