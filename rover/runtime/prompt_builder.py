"""
prompt_builder.py - Compose the final prompt sent to an agent for a step.

The final prompt is the step's resolved template followed by an
"OUTPUT REQUIREMENTS" section that tells the agent exactly how to report
each declared output: a JSON object for string outputs and named files for
file outputs. The extraction chain in extraction.py reads what this section
asks for.
"""

from __future__ import annotations

from typing import List, Mapping, Optional, Tuple

from rover.workflow.schema import AgentStep, Workflow

from .extraction import side_channel_filename
from .placeholders import FileMode, StepsOutput, resolve_placeholders


def build_output_instructions(step: AgentStep, side_channel: bool = False) -> str:
    """Generate the output-format instructions for a step.

    Args:
        step: The agent step.
        side_channel: Also ask the agent to write the JSON object to the
            ``_<step_id>_outputs.json`` file (session mode, where the
            response text is not the primary result channel).

    Returns:
        Instruction text, or "" when the step declares no outputs.
    """
    if not step.outputs:
        return ""

    string_outputs = step.string_outputs
    file_outputs = step.file_outputs

    parts: List[str] = [
        "\n\n## OUTPUT REQUIREMENTS\n\n",
        "You MUST provide your response in the exact format specified below:\n\n",
    ]

    if string_outputs:
        parts.append("### JSON Response\n\n")
        parts.append("Return a JSON object with the following structure:\n\n")
        parts.append("```json\n{\n")
        for index, output in enumerate(string_outputs):
            comma = "," if index < len(string_outputs) - 1 else ""
            parts.append(f'  "{output.name}": "your_{output.name.lower()}_value_here"{comma}\n')
        parts.append("}\n```\n\n")
        parts.append("Where:\n")
        for output in string_outputs:
            parts.append(f"- `{output.name}`: {output.description}\n")
        parts.append("\n")
        if side_channel:
            parts.append(
                f"Also write this JSON object to a file named `{side_channel_filename(step.id)}` "
                "in the current working directory.\n\n"
            )

    if file_outputs:
        parts.append("### File Creation\n\n")
        parts.append("You MUST create the following files with the exact content needed:\n\n")
        for output in file_outputs:
            parts.append(f"- **{output.name}**: {output.description}\n")
            parts.append("  - Create this file in the current working directory\n")
            parts.append(f"  - Filename: `{output.filename}`\n\n")
        parts.append(
            "IMPORTANT: All files must be created with appropriate content. "
            "Do not create empty or placeholder files.\n\n"
        )

    if string_outputs and file_outputs:
        parts.append("### Combined Response Format\n\n")
        parts.append("1. First, create all required files as specified above\n")
        parts.append("2. Then, provide the JSON response with the string outputs\n")
        parts.append("3. Make sure all files are created before ending your response\n\n")

    parts.append("**CRITICAL**: Follow these output requirements exactly. ")
    parts.append(
        "Your response will be automatically parsed, so any deviation from the "
        "specified format will cause errors.\n"
    )
    return "".join(parts)


def build_step_prompt(
    step: AgentStep,
    inputs: Mapping[str, str],
    steps_output: StepsOutput,
    workflow: Optional[Workflow] = None,
    file_mode: FileMode = "content",
    side_channel: bool = False,
) -> Tuple[str, List[str]]:
    """Resolve the step template and append output instructions.

    Returns:
        Tuple of (final prompt, placeholder warnings).
    """
    resolved = resolve_placeholders(step.prompt, inputs, steps_output, workflow, file_mode)
    return resolved.text + build_output_instructions(step, side_channel), resolved.warnings
