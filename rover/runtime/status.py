"""
status.py - Run status persistence.

The run loop reports progress through a StatusSink. StatusFile writes a
small JSON document that other processes (a task list, an editor
extension) poll to follow a run:

    {
      "task_id": "42",
      "status": "running",
      "current_step": "Analyze",
      "progress": 50,
      "started_at": "...",
      "updated_at": "...",
      "completed_at": null,
      "error": null
    }

Writes are atomic (temp file + os.replace). A failed write is logged and
never interrupts the run.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

logger = logging.getLogger(__name__)

NOT_STARTED = "not_started"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})


class StatusSink(Protocol):
    """Receives run progress from the run loop."""

    def update(self, state: str, current_step: str, progress: int) -> None:
        ...

    def complete(self, message: str) -> None:
        ...

    def fail(self, context: str, message: str) -> None:
        ...


class NullStatusSink:
    """Status sink that discards everything."""

    def update(self, state: str, current_step: str, progress: int) -> None:
        pass

    def complete(self, message: str) -> None:
        pass

    def fail(self, context: str, message: str) -> None:
        pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON data to a file atomically."""
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.name + ".", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class StatusFile:
    """StatusSink that persists to a JSON file.

    Args:
        path: Status file location.
        task_id: Task identifier recorded in the file.
    """

    def __init__(self, path: Union[str, Path], task_id: str):
        self.path = Path(path)
        self.task_id = str(task_id)
        self._data: Dict[str, Any] = {
            "task_id": self.task_id,
            "status": NOT_STARTED,
            "current_step": "",
            "progress": 0,
            "started_at": _now_iso(),
            "updated_at": _now_iso(),
            "completed_at": None,
            "error": None,
        }

    @property
    def data(self) -> Dict[str, Any]:
        return dict(self._data)

    def _write(self, **changes: Any) -> None:
        self._data.update(changes)
        self._data["updated_at"] = _now_iso()
        try:
            _atomic_write_json(self.path, self._data)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to write status file %s: %s", self.path, e)

    def update(self, state: str, current_step: str, progress: int) -> None:
        self._write(status=state, current_step=current_step, progress=progress)

    def complete(self, message: str) -> None:
        self._write(status=COMPLETED, current_step=message, progress=100, completed_at=_now_iso())

    def fail(self, context: str, message: str) -> None:
        self._write(status=FAILED, current_step=context, error=message, completed_at=_now_iso())


def read_status_file(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Load a status file, or None if it is missing or unreadable."""
    status_path = Path(path)
    if not status_path.exists():
        return None
    try:
        with open(status_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read status file %s: %s", status_path, e)
        return None
    return data if isinstance(data, dict) else None


class StatusTransitionTracker:
    """Remembers the last status seen per task and reports terminal transitions.

    Usage:
        tracker = StatusTransitionTracker()
        if tracker.observe("42", "completed"):
            notify("task 42 finished")
    """

    def __init__(self) -> None:
        self._last: Dict[str, str] = {}

    def previous(self, task_id: str) -> Optional[str]:
        return self._last.get(task_id)

    def observe(self, task_id: str, status: str) -> Optional[str]:
        """Record ``status`` and return it if the task just became terminal.

        The first observation of a task only establishes a baseline, so a
        task that was already finished when first seen is not reported.
        """
        previous = self._last.get(task_id)
        self._last[task_id] = status
        if previous is None or previous == status:
            return None
        return status if status in TERMINAL_STATUSES else None

    def forget(self, task_id: str) -> None:
        self._last.pop(task_id, None)
