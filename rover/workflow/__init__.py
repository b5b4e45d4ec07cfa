"""
workflow/ - Workflow definitions and loading.

Modules:
- schema.py: Pydantic models for the workflow tree
- loader.py: YAML loading, input merging and validation
"""

from .loader import (
    InputValidation,
    RunInputs,
    WorkflowLoadError,
    WorkflowValidationError,
    inject_context,
    load_workflow,
    load_workflow_from_string,
    parse_input_options,
    resolve_inputs,
    validate_inputs,
)
from .schema import (
    AgentStep,
    CommandStep,
    Workflow,
    WorkflowConfig,
    WorkflowDefaults,
    WorkflowInput,
    WorkflowOutput,
)

__all__ = [
    "AgentStep",
    "CommandStep",
    "InputValidation",
    "RunInputs",
    "Workflow",
    "WorkflowConfig",
    "WorkflowDefaults",
    "WorkflowInput",
    "WorkflowLoadError",
    "WorkflowOutput",
    "WorkflowValidationError",
    "inject_context",
    "load_workflow",
    "load_workflow_from_string",
    "parse_input_options",
    "resolve_inputs",
    "validate_inputs",
]
