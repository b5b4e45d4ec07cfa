"""Tests for workflow loading, validation, input merging and context injection."""

from __future__ import annotations

from types import MappingProxyType

import pytest

from rover.workflow import (
    AgentStep,
    CommandStep,
    WorkflowLoadError,
    WorkflowValidationError,
    inject_context,
    load_workflow,
    load_workflow_from_string,
    parse_input_options,
    resolve_inputs,
    validate_inputs,
)
from rover.workflow.schema import workflow_to_dict

WORKFLOW_YAML = """
version: "1.0"
name: swe
description: Implement a task
inputs:
  - name: description
    description: What to do
    type: string
    required: true
  - name: verbose
    description: Extra logging
    type: boolean
    default: false
defaults:
  tool: claude
config:
  timeout: 600
  continueOnError: true
steps:
  - id: context
    type: agent
    name: Context
    prompt: "Analyze {{inputs.description}}"
    outputs:
      - name: complexity
        description: simple or complex
        type: string
      - name: summary
        description: Summary file
        type: file
        filename: summary.md
  - id: test
    type: command
    name: Run tests
    command: pytest
    args: ["-q"]
    allow_failure: true
"""


@pytest.fixture
def workflow():
    return load_workflow_from_string(WORKFLOW_YAML)


class TestLoading:
    def test_parses_steps(self, workflow):
        assert workflow.name == "swe"
        assert isinstance(workflow.steps[0], AgentStep)
        assert isinstance(workflow.steps[1], CommandStep)
        assert workflow.steps[1].allow_failure is True
        assert workflow.config.continue_on_error is True
        assert workflow.steps[0].file_outputs[0].filename == "summary.md"
        assert [o.name for o in workflow.steps[0].string_outputs] == ["complexity"]

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "workflow.yml"
        path.write_text(WORKFLOW_YAML)

        assert load_workflow(path).name == "swe"

    def test_missing_file(self, tmp_path):
        with pytest.raises(WorkflowLoadError, match="not found"):
            load_workflow(tmp_path / "absent.yml")

    def test_invalid_yaml(self):
        with pytest.raises(WorkflowLoadError, match="Failed to parse YAML"):
            load_workflow_from_string("steps: [unclosed")

    def test_schema_errors_are_listed(self):
        with pytest.raises(WorkflowValidationError) as exc_info:
            load_workflow_from_string("name: x\nsteps:\n  - id: a\n    type: agent\n    name: A\n")

        assert any("prompt" in error for error in exc_info.value.errors)

    def test_duplicate_step_ids_rejected(self):
        text = """
name: dup
steps:
  - {id: a, type: agent, name: A, prompt: x}
  - {id: a, type: agent, name: B, prompt: y}
"""
        with pytest.raises(WorkflowValidationError, match="Duplicate step ids: a"):
            load_workflow_from_string(text)

    def test_duplicate_output_names_rejected(self):
        text = """
name: dup
steps:
  - id: a
    type: agent
    name: A
    prompt: x
    outputs:
      - {name: out, description: one}
      - {name: out, description: two}
"""
        with pytest.raises(WorkflowValidationError, match="declared more than once"):
            load_workflow_from_string(text)

    def test_same_output_name_in_different_steps_is_fine(self):
        text = """
name: ok
steps:
  - {id: a, type: agent, name: A, prompt: x, outputs: [{name: out}]}
  - {id: b, type: agent, name: B, prompt: y, outputs: [{name: out}]}
"""
        assert len(load_workflow_from_string(text).steps) == 2

    def test_round_trip_uses_camel_case(self, workflow):
        assert workflow_to_dict(workflow)["config"]["continueOnError"] is True


class TestStepSettings:
    def test_timeout_precedence(self, workflow):
        step = workflow.steps[0]
        assert workflow.step_timeout(step) == 600

        bare = load_workflow_from_string("name: t\nsteps:\n  - {id: a, type: agent, name: A, prompt: x}\n")
        assert bare.step_timeout(bare.steps[0]) == 1800

    def test_timeout_falls_back_to_env(self, monkeypatch):
        monkeypatch.setenv("ROVER_STEP_TIMEOUT", "60")
        bare = load_workflow_from_string("name: t\nsteps:\n  - {id: a, type: agent, name: A, prompt: x}\n")

        assert bare.step_timeout(bare.steps[0]) == 60

    def test_workflow_timeout_beats_env(self, workflow, monkeypatch):
        monkeypatch.setenv("ROVER_STEP_TIMEOUT", "60")

        assert workflow.step_timeout(workflow.steps[0]) == 600

    def test_tool_precedence(self, workflow):
        step = workflow.steps[0]

        assert workflow.step_tool(step) == "claude"
        assert workflow.step_tool(step, "gemini") == "gemini"
        assert workflow.step_tool(step.model_copy(update={"tool": "codex"}), "gemini") == "codex"

    def test_get_step(self, workflow):
        assert workflow.get_step("test").name == "Run tests"
        with pytest.raises(KeyError):
            workflow.get_step("missing")


class TestInputs:
    def test_defaults_are_applied(self, workflow):
        inputs, defaulted = resolve_inputs(workflow, {"description": "fix"})

        assert dict(inputs) == {"description": "fix", "verbose": "false"}
        assert defaulted == ["verbose"]
        assert isinstance(inputs, MappingProxyType)

    def test_provided_value_beats_default(self, workflow):
        inputs, defaulted = resolve_inputs(workflow, {"description": "fix", "verbose": True})

        assert inputs["verbose"] == "true"
        assert defaulted == []

    def test_missing_required_input(self, workflow):
        inputs, _ = resolve_inputs(workflow, {})

        validation = validate_inputs(workflow, inputs)

        assert not validation.valid
        assert validation.errors == ['Required input "description" is missing']

    def test_unknown_input_warns(self, workflow):
        inputs, _ = resolve_inputs(workflow, {"description": "x", "extra": "y"})

        validation = validate_inputs(workflow, inputs)

        assert validation.valid
        assert validation.warnings == ['Unknown input "extra" provided (not defined in workflow)']

    def test_cli_options_win_over_json(self):
        parsed = parse_input_options(["description=from cli", "malformed"], {"description": "from json", "x": 1})

        assert parsed == {"description": "from cli", "x": 1}

    def test_value_may_contain_equals(self):
        assert parse_input_options(["query=a=b"]) == {"query": "a=b"}


class TestContextInjection:
    def test_prefixes_agent_prompts(self, workflow, tmp_path):
        (tmp_path / "index.md").write_text("# Context")

        injected = inject_context(workflow, tmp_path)

        assert "**Context Sources:**" in injected.steps[0].prompt
        assert injected.steps[0].prompt.endswith("Analyze {{inputs.description}}")
        assert injected.steps[1] == workflow.steps[1]
        assert workflow.steps[0].prompt == "Analyze {{inputs.description}}"

    def test_no_index_no_change(self, workflow, tmp_path):
        assert inject_context(workflow, tmp_path) is workflow

    def test_no_context_dir(self, workflow):
        assert inject_context(workflow, None) is workflow
