#!/usr/bin/env python3
"""
cli.py - Command line entry point for running agent workflows.

Usage:
    rover-agent run workflow.yml --input description="Fix the login bug"
    rover-agent run workflow.yml --inputs-json inputs.json --agent-tool gemini
    rover-agent run workflow.yml --task-id 42 --status-file .rover/42/status.json

Exit codes:
    0   every executed step succeeded
    1   a step failed, the workflow or inputs were invalid, or the run aborted
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rover.config.runtime_config import VALID_EXECUTION_MODES
from rover.runtime.async_utils import run_async_safely
from rover.runtime.engines import (
    ConnectionInitError,
    RunResult,
    StepProgress,
    StepResult,
    create_step_executor,
    visible_outputs,
)
from rover.runtime.event_log import RunEventLog
from rover.runtime.run_loop import InfrastructureFault, WorkflowRunLoop
from rover.runtime.status import NullStatusSink, StatusFile, StatusSink
from rover.workflow import (
    WorkflowLoadError,
    inject_context,
    load_workflow,
    parse_input_options,
    resolve_inputs,
    validate_inputs,
)

logger = logging.getLogger(__name__)

_PREVIEW_LIMIT = 200


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_inputs_json(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def _preview(value: str) -> str:
    value = value.replace("\n", " ")
    return value if len(value) <= _PREVIEW_LIMIT else value[:_PREVIEW_LIMIT] + "..."


def print_step_result(step: Any, result: StepResult, progress: StepProgress) -> None:
    """Per-step report; bookkeeping outputs are not shown."""
    marker = "OK" if result.success else "FAILED"
    print(
        f"\n[{progress.step_index + 1}/{progress.total_steps}] {step.name}: {marker} "
        f"({result.duration:.1f}s)"
    )
    if result.error:
        print(f"  Error: {result.error}")
    for name, value in visible_outputs(result.outputs).items():
        print(f"  {name}: {_preview(value)}")


def print_summary(run_result: RunResult) -> None:
    print("\nWorkflow summary")
    print(f"  Total duration:   {run_result.total_duration:.1f}s")
    print(f"  Total steps:      {run_result.total_steps}")
    print(f"  Successful steps: {run_result.successful_steps}")
    print(f"  Failed steps:     {run_result.failed_steps}")
    print(f"  Skipped steps:    {run_result.skipped_steps}")
    if run_result.error:
        print(f"  Error: {run_result.error}")


def _build_status(args: argparse.Namespace) -> StatusSink:
    if args.status_file and args.task_id:
        return StatusFile(args.status_file, args.task_id)
    if args.status_file or args.task_id:
        logger.warning("--status-file and --task-id must be used together; status will not be persisted")
    return NullStatusSink()


def cmd_run(args: argparse.Namespace) -> int:
    try:
        workflow = load_workflow(args.workflow)
    except WorkflowLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        provided = parse_input_options(args.input or [], _load_inputs_json(args.inputs_json))
    except (OSError, ValueError) as e:
        print(f"Error: could not read inputs: {e}", file=sys.stderr)
        return 1

    inputs, defaulted = resolve_inputs(workflow, provided)
    for name in defaulted:
        logger.info("Using default value for input '%s'", name)

    validation = validate_inputs(workflow, inputs)
    for warning in validation.warnings:
        logger.warning("%s", warning)
    if not validation.valid:
        for error in validation.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    workflow = inject_context(workflow, args.context_dir)

    work_dir = Path.cwd()
    output_dir: Optional[Path] = None
    if args.output:
        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)

    status = _build_status(args)
    event_log = RunEventLog(args.logs_dir, task_id=args.task_id) if args.logs_dir else None

    executor = create_step_executor(
        workflow,
        inputs,
        work_dir,
        output_dir=output_dir,
        tool=args.agent_tool,
        model=args.agent_model,
        mode=args.mode,
    )
    loop = WorkflowRunLoop(workflow, inputs=inputs, status=status, event_log=event_log, work_dir=work_dir)

    print(f"Running workflow: {workflow.name} ({len(workflow.steps)} steps, {executor.mode} mode)")

    async def _run() -> RunResult:
        async with executor:
            return await loop.run(executor, on_step_complete=print_step_result)

    try:
        run_result = run_async_safely(_run())
    except ConnectionInitError as e:
        status.fail("Connection", str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except InfrastructureFault as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_summary(run_result)
    return 0 if run_result.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rover-agent",
        description="Run AI coding agent workflows defined in YAML",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a workflow")
    run_parser.add_argument("workflow", type=Path, help="Path to the workflow YAML file")
    run_parser.add_argument(
        "--input",
        action="append",
        metavar="KEY=VALUE",
        help="Workflow input (repeatable; wins over --inputs-json)",
    )
    run_parser.add_argument("--inputs-json", type=Path, help="JSON file with workflow inputs")
    run_parser.add_argument("--agent-tool", help="Agent tool to use (claude, codex, gemini, qwen, ...)")
    run_parser.add_argument("--agent-model", help="Model passed to the agent tool")
    run_parser.add_argument(
        "--mode",
        choices=VALID_EXECUTION_MODES,
        help="Execution mode (default: from config)",
    )
    run_parser.add_argument("--task-id", help="Task identifier recorded in the status file")
    run_parser.add_argument("--status-file", type=Path, help="Path of the JSON status file")
    run_parser.add_argument("--output", help="Directory that receives file outputs")
    run_parser.add_argument("--context-dir", help="Directory with context sources (index.md)")
    run_parser.add_argument("--logs-dir", help="Directory for the rover.jsonl run log")
    run_parser.add_argument("-v", "--verbose", action="store_true", dest="verbose_run", help=argparse.SUPPRESS)
    run_parser.set_defaults(func=cmd_run)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose or getattr(args, "verbose_run", False))
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
