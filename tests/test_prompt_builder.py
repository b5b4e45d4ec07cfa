"""Tests for prompt_builder.py - output instructions and final step prompts."""

from __future__ import annotations

from rover.runtime.prompt_builder import build_output_instructions, build_step_prompt
from tests.helpers import agent_step, build_workflow


def _step(outputs):
    return build_workflow([agent_step("analyze", "Analyze {{inputs.repo}}", outputs)]).steps[0]


STRING = {"name": "complexity", "description": "simple or complex", "type": "string"}
FILE = {"name": "summary", "description": "A summary", "type": "file", "filename": "summary.md"}


class TestOutputInstructions:
    def test_no_outputs_no_instructions(self):
        assert build_output_instructions(_step([])) == ""

    def test_string_outputs_get_json_skeleton(self):
        text = build_output_instructions(_step([STRING]))

        assert "## OUTPUT REQUIREMENTS" in text
        assert '"complexity": "your_complexity_value_here"' in text
        assert "- `complexity`: simple or complex" in text
        assert "### File Creation" not in text
        assert "**CRITICAL**" in text

    def test_file_outputs_name_the_file(self):
        text = build_output_instructions(_step([FILE]))

        assert "### File Creation" in text
        assert "Filename: `summary.md`" in text
        assert "### JSON Response" not in text

    def test_combined_section_only_with_both_kinds(self):
        assert "### Combined Response Format" in build_output_instructions(_step([STRING, FILE]))
        assert "### Combined Response Format" not in build_output_instructions(_step([STRING]))

    def test_side_channel_file_is_named(self):
        text = build_output_instructions(_step([STRING]), side_channel=True)

        assert "`_analyze_outputs.json`" in text

    def test_side_channel_omitted_by_default(self):
        assert "_analyze_outputs.json" not in build_output_instructions(_step([STRING]))


class TestStepPrompt:
    def test_resolves_then_appends_instructions(self):
        prompt, warnings = build_step_prompt(_step([STRING]), {"repo": "rover"}, {})

        assert prompt.startswith("Analyze rover")
        assert "## OUTPUT REQUIREMENTS" in prompt
        assert warnings == []

    def test_reports_resolution_warnings(self):
        prompt, warnings = build_step_prompt(_step([]), {}, {})

        assert prompt == "Analyze {{inputs.repo}}"
        assert warnings == ["Input 'repo' not provided"]
