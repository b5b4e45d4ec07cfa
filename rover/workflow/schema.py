"""
schema.py - Pydantic models for agent workflow definitions.

A workflow is an ordered list of steps plus the inputs they consume and the
outputs they declare. These models validate the YAML tree once at load time;
everything downstream (run loop, executors, extraction) treats a Workflow as
a read-only, already-validated value.

Usage:
    from rover.workflow.schema import Workflow

    workflow = Workflow.model_validate(yaml.safe_load(text))
    for step in workflow.steps:
        print(step.id, step.name)
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rover.config.runtime_config import get_step_timeout

CURRENT_WORKFLOW_SCHEMA_VERSION = "1.0"


class _WorkflowModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# =============================================================================
# Inputs & Outputs
# =============================================================================


class WorkflowInput(_WorkflowModel):
    """A user-provided value the workflow prompts can reference."""
    name: str = Field(description="Input name used in {{inputs.<name>}}")
    description: str = Field(default="", description="What the input is for")
    label: Optional[str] = Field(default=None, description="Human friendly label")
    type: Literal["string", "number", "boolean"] = Field(default="string")
    required: bool = Field(default=False)
    default: Optional[Union[str, int, float, bool]] = Field(default=None)


class WorkflowOutput(_WorkflowModel):
    """An output a step promises to produce."""
    name: str = Field(description="Output name used in {{steps.<id>.outputs.<name>}}")
    description: str = Field(default="")
    type: Literal["string", "number", "boolean", "file"] = Field(default="string")
    filename: Optional[str] = Field(default=None, description="File to create for file outputs")

    @property
    def is_file(self) -> bool:
        return self.type == "file"


# =============================================================================
# Defaults & Config
# =============================================================================


class WorkflowDefaults(_WorkflowModel):
    tool: Optional[str] = None
    model: Optional[str] = None


class WorkflowConfig(_WorkflowModel):
    timeout: Optional[int] = Field(default=None, description="Default step timeout in seconds")
    continue_on_error: bool = Field(default=False, alias="continueOnError")


class StepConfig(_WorkflowModel):
    timeout: Optional[int] = None
    # Accepted for workflow compatibility; steps are never retried by the run loop
    retries: int = 0


# =============================================================================
# Steps
# =============================================================================


class _BaseStep(_WorkflowModel):
    id: str
    name: str
    outputs: List[WorkflowOutput] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_output_names(self) -> "_BaseStep":
        seen = set()
        for output in self.outputs:
            if output.name in seen:
                raise ValueError(
                    f"Output '{output.name}' is declared more than once in step '{self.id}'"
                )
            seen.add(output.name)
        return self

    @property
    def string_outputs(self) -> List[WorkflowOutput]:
        return [o for o in self.outputs if not o.is_file]

    @property
    def file_outputs(self) -> List[WorkflowOutput]:
        return [o for o in self.outputs if o.is_file]

    def get_output(self, name: str) -> Optional[WorkflowOutput]:
        for output in self.outputs:
            if output.name == name:
                return output
        return None


class AgentStep(_BaseStep):
    """A step executed by an AI coding agent."""
    type: Literal["agent"]
    prompt: str
    tool: Optional[str] = None
    model: Optional[str] = None
    config: Optional[StepConfig] = None


class CommandStep(_BaseStep):
    """A step executed as a plain child process."""
    type: Literal["command"]
    command: str
    args: List[str] = Field(default_factory=list)
    allow_failure: bool = False


WorkflowStep = Annotated[Union[AgentStep, CommandStep], Field(discriminator="type")]


# =============================================================================
# Workflow
# =============================================================================


class Workflow(_WorkflowModel):
    """A validated, in-memory workflow definition."""
    version: str = CURRENT_WORKFLOW_SCHEMA_VERSION
    name: str
    description: str = ""
    inputs: List[WorkflowInput] = Field(default_factory=list)
    outputs: List[WorkflowOutput] = Field(default_factory=list)
    defaults: WorkflowDefaults = Field(default_factory=WorkflowDefaults)
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)
    steps: List[WorkflowStep]

    @model_validator(mode="after")
    def _unique_ids(self) -> "Workflow":
        step_ids = [s.id for s in self.steps]
        duplicates = sorted({sid for sid in step_ids if step_ids.count(sid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step ids: {', '.join(duplicates)}")

        input_names = [i.name for i in self.inputs]
        duplicates = sorted({n for n in input_names if input_names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate input names: {', '.join(duplicates)}")
        return self

    def get_step(self, step_id: str) -> Union[AgentStep, CommandStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(f"Step not found: {step_id}")

    def find_output(self, step_id: str, output_name: str) -> Optional[WorkflowOutput]:
        """Return the declared output, or None when step/output is unknown."""
        for step in self.steps:
            if step.id == step_id:
                return step.get_output(output_name)
        return None

    def step_tool(self, step: AgentStep, override: Optional[str] = None) -> Optional[str]:
        """Effective tool: step > caller override > workflow defaults."""
        return step.tool or override or self.defaults.tool

    def step_model(self, step: AgentStep, override: Optional[str] = None) -> Optional[str]:
        return step.model or override or self.defaults.model

    def step_timeout(self, step: Union[AgentStep, CommandStep]) -> int:
        """Effective timeout: step config > workflow config > runtime default."""
        if isinstance(step, AgentStep) and step.config and step.config.timeout:
            return step.config.timeout
        return self.config.timeout or get_step_timeout()

    def with_prompt_prefix(self, prefix: str) -> "Workflow":
        """Return a copy whose agent step prompts all start with ``prefix``."""
        steps: List[Any] = []
        for step in self.steps:
            if isinstance(step, AgentStep):
                steps.append(step.model_copy(update={"prompt": prefix + step.prompt}))
            else:
                steps.append(step)
        return self.model_copy(update={"steps": steps})


def workflow_to_dict(workflow: Workflow) -> Dict[str, Any]:
    """Serialize a workflow back to its YAML-facing (camelCase) shape."""
    return workflow.model_dump(by_alias=True, exclude_none=True)
