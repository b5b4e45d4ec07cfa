"""
extraction.py - Turn agent responses and files into named step outputs.

Agents reliably write files but are inconsistent about producing clean
structured text, so string outputs are extracted through a fallback chain.
Each link is a small pure function that can be tested (and reordered) on its
own:

    1. read_side_channel_outputs   _<step_id>_outputs.json in the work dir
    2. extract_json_from_content   JSON in the agent response text
    3. extract_json_from_content   JSON embedded in file output contents
    4. match_markdown_header       "## Task complexity\\n\\nsimple"
       match_key_value             "complexity: simple"
    5. NOT_FOUND sentinel

Extraction never raises. A declared output that cannot be produced gets a
sentinel value instead; deciding whether that fails the step belongs to the
caller.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from rover.workflow.schema import WorkflowOutput

logger = logging.getLogger(__name__)

# Sentinel values
NOT_FOUND = "[Not found in response]"
FILE_NOT_CREATED = "[File not created]"
MISSING_FILENAME = "[Missing filename]"
UNREADABLE_FILE = "[Could not read file]"

SENTINELS = frozenset({NOT_FOUND, FILE_NOT_CREATED, MISSING_FILENAME, UNREADABLE_FILE})

CONTENT_SUFFIX = "_content"

_JSON_BLOCK_PATTERN = re.compile(r"```json\s*([\s\S]*?)\s*```")
_INLINE_JSON_PATTERN = re.compile(r'\{[^{}]*"[^"]+"\s*:\s*"[^"]*"[^{}]*\}')


def side_channel_filename(step_id: str) -> str:
    """Name of the JSON file an agent may write to report string outputs."""
    return f"_{step_id}_outputs.json"


def content_key(output_name: str) -> str:
    return f"{output_name}{CONTENT_SUFFIX}"


def stringify_value(value: Any) -> str:
    """Render a JSON value as an output string ("simple", "true", "3")."""
    if isinstance(value, str):
        return value
    return json.dumps(value)


# =============================================================================
# JSON sources
# =============================================================================


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def extract_json_from_content(content: str, allow_whole: bool = False) -> Optional[Dict[str, Any]]:
    """Find a JSON object in free-form text.

    Tries a fenced ```json block first, then (optionally) the whole text,
    then the first inline ``{"key": "value"}`` shaped object.
    """
    if not content:
        return None

    block = _JSON_BLOCK_PATTERN.search(content)
    if block:
        data = _loads_object(block.group(1))
        if data is not None:
            return data
        logger.debug("Found a ```json block but failed to parse it")

    if allow_whole:
        data = _loads_object(content.strip())
        if data is not None:
            return data

    inline = _INLINE_JSON_PATTERN.search(content)
    if inline:
        return _loads_object(inline.group(0))

    return None


def read_side_channel_outputs(step_id: str, work_dir: Path) -> Optional[Dict[str, Any]]:
    """Read and consume ``_<step_id>_outputs.json``.

    The file is deleted after a successful parse so a later extraction in the
    same directory falls through to the next strategy.
    """
    path = Path(work_dir) / side_channel_filename(step_id)
    if not path.exists():
        return None

    try:
        data = _loads_object(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read %s: %s", path, e)
        return None

    if data is None:
        logger.warning("Found %s but failed to parse it", path.name)
        return None

    try:
        path.unlink()
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)

    logger.debug("Read string outputs from %s", path.name)
    return data


# =============================================================================
# Heuristic matchers
# =============================================================================


def match_markdown_header(output_name: str, content: str) -> Optional[str]:
    """Match a ``## [Task ]<name>`` heading followed by a bare word."""
    pattern = re.compile(
        r"##\s*(?:Task\s+)?" + re.escape(output_name) + r"[\s\S]*?\n+\s*(simple|complex|true|false|\w+)",
        re.IGNORECASE,
    )
    match = pattern.search(content)
    return match.group(1).lower() if match else None


def match_key_value(output_name: str, content: str) -> Optional[str]:
    """Match ``name: value`` or ``name = value``, optionally quoted."""
    pattern = re.compile(
        r"[\"']?" + re.escape(output_name) + r"[\"']?\s*[=:]\s*[\"']?(\w+)[\"']?",
        re.IGNORECASE,
    )
    match = pattern.search(content)
    return match.group(1).lower() if match else None


HEURISTICS: Sequence[Callable[[str, str], Optional[str]]] = (
    match_markdown_header,
    match_key_value,
)


def match_heuristics(
    output_name: str,
    contents: Iterable[str],
    heuristics: Sequence[Callable[[str, str], Optional[str]]] = HEURISTICS,
) -> Optional[str]:
    """Run the heuristics, in order, against each content blob."""
    for content in contents:
        for heuristic in heuristics:
            value = heuristic(output_name, content)
            if value is not None:
                return value
    return None


# =============================================================================
# File outputs
# =============================================================================


def extract_file_outputs(
    file_outputs: Sequence[WorkflowOutput],
    work_dir: Path,
    output_dir: Optional[Path] = None,
) -> Dict[str, str]:
    """Collect files the agent was asked to create.

    For each found file the output value is its (possibly relocated) path and
    ``<name>_content`` holds the text, which feeds the string fallbacks.
    """
    outputs: Dict[str, str] = {}

    for declared in file_outputs:
        if not declared.filename:
            logger.warning("File output '%s' missing filename", declared.name)
            outputs[declared.name] = MISSING_FILENAME
            continue

        source = Path(work_dir) / declared.filename
        if not source.exists():
            logger.warning("Expected file '%s' was not created", declared.filename)
            outputs[declared.name] = FILE_NOT_CREATED
            continue

        try:
            file_path = source
            if output_dir is not None:
                target = Path(output_dir) / source.name
                if target.resolve() != source.resolve():
                    shutil.copyfile(source, target)
                    source.unlink()
                file_path = target
            outputs[declared.name] = str(file_path)
            outputs[content_key(declared.name)] = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read file '%s': %s", declared.filename, e)
            outputs[declared.name] = UNREADABLE_FILE

    return outputs


# =============================================================================
# String outputs
# =============================================================================


def _content_values(outputs: Dict[str, str]) -> List[str]:
    return [value for key, value in outputs.items() if key.endswith(CONTENT_SUFFIX) and value]


def extract_string_outputs(
    step_id: str,
    string_outputs: Sequence[WorkflowOutput],
    file_outputs: Sequence[WorkflowOutput],
    collected: Dict[str, str],
    work_dir: Path,
    response_text: str = "",
) -> Dict[str, str]:
    """Resolve string outputs through the fallback chain.

    Args:
        step_id: Step whose side-channel file to look for.
        string_outputs: Declared non-file outputs.
        file_outputs: Declared file outputs (their content may embed JSON).
        collected: Outputs gathered so far, including ``<name>_content`` keys.
        work_dir: Directory the agent worked in.
        response_text: The agent's (unwrapped) response text.
    """
    outputs: Dict[str, str] = {}
    if not string_outputs:
        return outputs

    json_data = read_side_channel_outputs(step_id, work_dir)

    if json_data is None and response_text:
        json_data = extract_json_from_content(response_text, allow_whole=True)

    if json_data is None:
        for declared in file_outputs:
            content = collected.get(content_key(declared.name))
            if content:
                json_data = extract_json_from_content(content)
                if json_data is not None:
                    break

    contents = _content_values(collected)

    for declared in string_outputs:
        value: Optional[str] = None
        if json_data is not None and declared.name in json_data:
            value = stringify_value(json_data[declared.name])

        if value is None:
            value = match_heuristics(declared.name, contents)

        if value is None:
            logger.warning("Output '%s' not found in response", declared.name)
            value = NOT_FOUND
        outputs[declared.name] = value

    logger.debug("Extracted string outputs for step %s: %s", step_id, json.dumps(outputs))
    return outputs


def extract_outputs(
    step_id: str,
    declared: Sequence[WorkflowOutput],
    response_text: str,
    work_dir: Path,
    output_dir: Optional[Path] = None,
) -> Dict[str, str]:
    """Produce the name -> value map for a step's declared outputs.

    File outputs are collected first so their contents can back the string
    extraction chain.
    """
    file_outputs = [o for o in declared if o.is_file]
    string_outputs = [o for o in declared if not o.is_file]

    outputs = extract_file_outputs(file_outputs, Path(work_dir), output_dir)
    outputs.update(
        extract_string_outputs(
            step_id,
            string_outputs,
            file_outputs,
            outputs,
            Path(work_dir),
            response_text=response_text,
        )
    )

    missing = [o.name for o in declared if outputs.get(o.name) in SENTINELS]
    if missing:
        logger.warning("Step %s is missing outputs: %s", step_id, ", ".join(missing))

    return outputs
