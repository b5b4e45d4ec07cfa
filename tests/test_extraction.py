"""Tests for extraction.py - turning agent responses and files into outputs.

Covers the string-output fallback chain (side-channel file, response JSON,
embedded JSON, heuristics, sentinel) and file-output collection.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from rover.runtime.extraction import (
    FILE_NOT_CREATED,
    MISSING_FILENAME,
    NOT_FOUND,
    UNREADABLE_FILE,
    extract_file_outputs,
    extract_json_from_content,
    extract_outputs,
    match_key_value,
    match_markdown_header,
    read_side_channel_outputs,
    side_channel_filename,
    stringify_value,
)
from rover.workflow import WorkflowOutput


def string_output(name: str) -> WorkflowOutput:
    return WorkflowOutput(name=name, description=f"The {name}", type="string")


def file_output(name: str, filename) -> WorkflowOutput:
    return WorkflowOutput(name=name, description=f"The {name}", type="file", filename=filename)


class TestJsonFromContent:
    def test_fenced_block(self):
        content = 'Result:\n```json\n{"complexity": "simple"}\n```\nDone.'

        assert extract_json_from_content(content) == {"complexity": "simple"}

    def test_inline_object(self):
        content = 'The answer is {"complexity": "complex"} as requested.'

        assert extract_json_from_content(content) == {"complexity": "complex"}

    def test_whole_body_only_when_allowed(self):
        content = '{"count": 3, "ok": true}'

        assert extract_json_from_content(content, allow_whole=True) == {"count": 3, "ok": True}
        assert extract_json_from_content(content) is None

    def test_no_json(self):
        assert extract_json_from_content("nothing structured here") is None
        assert extract_json_from_content("") is None

    def test_non_string_values_are_serialised(self):
        assert stringify_value(True) == "true"
        assert stringify_value(3) == "3"
        assert stringify_value("simple") == "simple"


class TestHeuristics:
    def test_markdown_header(self):
        assert match_markdown_header("complexity", "## Task complexity\n\nsimple") == "simple"

    def test_markdown_header_without_task_prefix(self):
        assert match_markdown_header("Verdict", "## Verdict\n\nApproved") == "approved"

    def test_key_value(self):
        assert match_key_value("complexity", "complexity: Complex") == "complex"
        assert match_key_value("ready", '"ready" = "true"') == "true"

    def test_no_match(self):
        assert match_markdown_header("complexity", "no headers") is None
        assert match_key_value("complexity", "no pairs") is None


class TestSideChannel:
    def test_read_consumes_file(self, tmp_path):
        path = tmp_path / side_channel_filename("s1")
        path.write_text(json.dumps({"complexity": "simple"}))

        assert read_side_channel_outputs("s1", tmp_path) == {"complexity": "simple"}
        assert not path.exists()
        assert read_side_channel_outputs("s1", tmp_path) is None

    def test_invalid_json_is_kept_and_ignored(self, tmp_path):
        path = tmp_path / side_channel_filename("s1")
        path.write_text("{not json")

        assert read_side_channel_outputs("s1", tmp_path) is None
        assert path.exists()


class TestFileOutputs:
    def test_found_file_in_place(self, tmp_path):
        (tmp_path / "summary.md").write_text("hello")

        outputs = extract_file_outputs([file_output("summary", "summary.md")], tmp_path)

        assert outputs == {"summary": str(tmp_path / "summary.md"), "summary_content": "hello"}

    def test_found_file_is_moved_to_output_dir(self, tmp_path):
        work_dir = tmp_path / "work"
        output_dir = tmp_path / "out"
        work_dir.mkdir()
        output_dir.mkdir()
        (work_dir / "summary.md").write_text("hello")

        outputs = extract_file_outputs([file_output("summary", "summary.md")], work_dir, output_dir)

        assert outputs["summary"] == str(output_dir / "summary.md")
        assert (output_dir / "summary.md").read_text() == "hello"
        assert not (work_dir / "summary.md").exists()

    def test_output_dir_same_as_work_dir_keeps_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "summary.md").write_text("hello")

        outputs = extract_file_outputs([file_output("summary", "summary.md")], tmp_path, Path("."))

        assert outputs["summary_content"] == "hello"
        assert outputs["summary"] != UNREADABLE_FILE
        assert (tmp_path / "summary.md").read_text() == "hello"

    def test_missing_file_is_not_fatal(self, tmp_path):
        outputs = extract_file_outputs([file_output("summary", "summary.md")], tmp_path)

        assert outputs == {"summary": FILE_NOT_CREATED}

    def test_missing_filename(self, tmp_path):
        outputs = extract_file_outputs([file_output("summary", None)], tmp_path)

        assert outputs == {"summary": MISSING_FILENAME}


class TestExtractionChain:
    def test_side_channel_wins_over_embedded_json(self, tmp_path):
        (tmp_path / side_channel_filename("s1")).write_text(json.dumps({"complexity": "from-side-channel"}))
        (tmp_path / "report.md").write_text('```json\n{"complexity": "from-file"}\n```')

        outputs = extract_outputs(
            "s1",
            [file_output("report", "report.md"), string_output("complexity")],
            'complexity: from-response',
            tmp_path,
        )

        assert outputs["complexity"] == "from-side-channel"

    def test_response_json_used_without_side_channel(self, tmp_path):
        outputs = extract_outputs(
            "s1", [string_output("complexity")], '{"complexity": "simple"}', tmp_path
        )

        assert outputs == {"complexity": "simple"}

    def test_embedded_json_in_file_content(self, tmp_path):
        (tmp_path / "report.md").write_text('# Report\n```json\n{"complexity": "complex"}\n```')

        outputs = extract_outputs(
            "s1", [file_output("report", "report.md"), string_output("complexity")], "", tmp_path
        )

        assert outputs["complexity"] == "complex"

    def test_unmatched_output_gets_sentinel(self, tmp_path):
        (tmp_path / "report.md").write_text("Nothing useful in here.")

        outputs = extract_outputs(
            "s1",
            [file_output("report", "report.md"), string_output("complexity")],
            "I did the work.",
            tmp_path,
        )

        assert outputs["complexity"] == NOT_FOUND

    def test_side_channel_consumed_once(self, tmp_path):
        (tmp_path / side_channel_filename("s1")).write_text(json.dumps({"complexity": "simple"}))
        declared = [string_output("complexity")]

        first = extract_outputs("s1", declared, "", tmp_path)
        second = extract_outputs("s1", declared, "complexity: complex", tmp_path)

        assert first["complexity"] == "simple"
        assert second["complexity"] == NOT_FOUND

    def test_markdown_header_in_file_output(self, tmp_path):
        """A file output whose content carries the string output as a heading."""
        (tmp_path / "summary.md").write_text("## Task complexity\n\nsimple")

        outputs = extract_outputs(
            "s1",
            [file_output("summary", "summary.md"), string_output("complexity")],
            "",
            tmp_path,
        )

        assert outputs == {
            "summary": str(tmp_path / "summary.md"),
            "summary_content": "## Task complexity\n\nsimple",
            "complexity": "simple",
        }

    @pytest.mark.parametrize("value,expected", [(True, "true"), (7, "7"), ("x", "x")])
    def test_side_channel_values_are_strings(self, tmp_path, value, expected):
        (tmp_path / side_channel_filename("s1")).write_text(json.dumps({"v": value}))

        assert extract_outputs("s1", [string_output("v")], "", tmp_path) == {"v": expected}
