"""
placeholders.py - Resolve {{...}} placeholders in step prompt templates.

Two placeholder shapes are recognised:

    {{inputs.<name>}}                      -> a run input
    {{steps.<step_id>.outputs.<name>}}     -> an output of an earlier step

Resolution never fails. Anything that cannot be resolved is left in the
prompt verbatim and reported as a warning, so the agent still receives the
literal placeholder text.

File-kind outputs are substituted in one of two ways:
- "reference": a short ``[File: <filename>]`` token. Used by session mode,
  where the agent keeps file system access and conversational context.
- "content": the file's full text. Used by stateless mode, where every step
  runs in a fresh process and needs its context re-supplied.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Literal, Mapping, Optional

from rover.workflow.schema import Workflow

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

FileMode = Literal["reference", "content"]

StepsOutput = Mapping[str, Mapping[str, str]]


@dataclass
class ResolvedPrompt:
    """A template after substitution, plus anything that could not be resolved."""

    text: str
    warnings: List[str] = field(default_factory=list)


def file_reference(filename: str) -> str:
    """Token used in place of a file output's content."""
    return f"[File: {filename}]"


def _load_file_value(path_value: str, warnings: List[str]) -> str:
    path = Path(path_value)
    if not path.exists():
        warnings.append(f"File '{path_value}' does not exist")
        return path_value
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        warnings.append(f"Could not read file '{path_value}': {e}")
        return path_value


def _resolve_step_output(
    step_id: str,
    output_name: str,
    steps_output: StepsOutput,
    workflow: Optional[Workflow],
    file_mode: FileMode,
    warnings: List[str],
) -> Optional[str]:
    step_outputs = steps_output.get(step_id)
    if step_outputs is None:
        warnings.append(f"Step '{step_id}' has not been executed yet")
        return None
    if output_name not in step_outputs:
        warnings.append(f"Output '{output_name}' not found in step '{step_id}'")
        return None

    value = step_outputs[output_name] or ""
    declared = workflow.find_output(step_id, output_name) if workflow else None
    if declared is None or not declared.is_file:
        return value

    if file_mode == "reference":
        return file_reference(declared.filename or value)
    return _load_file_value(value, warnings)


def _resolve_path(
    path: str,
    inputs: Mapping[str, str],
    steps_output: StepsOutput,
    workflow: Optional[Workflow],
    file_mode: FileMode,
    warnings: List[str],
) -> Optional[str]:
    parts = path.split(".")

    if parts[0] == "inputs" and len(parts) == 2:
        value = inputs.get(parts[1])
        if value is None:
            warnings.append(f"Input '{parts[1]}' not provided")
        return value

    if parts[0] == "steps" and len(parts) == 4 and parts[2] == "outputs":
        return _resolve_step_output(parts[1], parts[3], steps_output, workflow, file_mode, warnings)

    warnings.append(f"Invalid placeholder format: '{path}'")
    return None


def resolve_placeholders(
    template: str,
    inputs: Mapping[str, str],
    steps_output: StepsOutput,
    workflow: Optional[Workflow] = None,
    file_mode: FileMode = "reference",
) -> ResolvedPrompt:
    """Substitute every placeholder in ``template`` in a single pass.

    Args:
        template: Prompt template text.
        inputs: Run inputs (name -> value).
        steps_output: Outputs of already executed steps (step id -> name -> value).
        workflow: Workflow used to tell file outputs from string outputs.
            Without it every output is substituted literally.
        file_mode: How file outputs are substituted ("reference" or "content").

    Returns:
        ResolvedPrompt with the substituted text and any warnings.
    """
    warnings: List[str] = []
    # Identical placeholder text always resolves identically, so one lookup
    # per distinct placeholder is enough.
    resolved: Dict[str, Optional[str]] = {}

    for match in PLACEHOLDER_PATTERN.finditer(template):
        full_match = match.group(0)
        if full_match in resolved:
            continue
        resolved[full_match] = _resolve_path(
            match.group(1).strip(), inputs, steps_output, workflow, file_mode, warnings
        )

    def _substitute(match: "re.Match[str]") -> str:
        value = resolved.get(match.group(0))
        return match.group(0) if value is None else value

    text = PLACEHOLDER_PATTERN.sub(_substitute, template)

    for warning in warnings:
        logger.warning("Prompt template warning: %s", warning)

    return ResolvedPrompt(text=text, warnings=warnings)
