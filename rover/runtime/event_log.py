"""
event_log.py - Structured JSONL log of a workflow run.

Each line of ``rover.jsonl`` is one validated LogEntry:

    {"timestamp": "...", "level": "info", "event": "step_start",
     "message": "Starting step: Analyze", "step_id": "analyze", ...}

Appends are best effort: write failures are logged and swallowed so a full
disk never fails a run.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

LOG_FILE = "rover.jsonl"

EventType = Literal[
    "workflow_start",
    "workflow_complete",
    "workflow_fail",
    "step_start",
    "step_complete",
    "step_fail",
    "agent_error",
    "agent_auth_error",
    "agent_timeout",
]

LogLevel = Literal["debug", "info", "warn", "error"]


class LogEntry(BaseModel):
    """One line of the run log."""

    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    level: LogLevel = "info"
    event: EventType
    message: str
    task_id: Optional[str] = Field(default=None, description="Task the run belongs to")
    step_id: Optional[str] = None
    step_name: Optional[str] = None
    duration: Optional[float] = Field(default=None, description="Seconds")
    progress: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_retryable: Optional[bool] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RunEventLog:
    """Appends LogEntry records to ``<logs_dir>/rover.jsonl``.

    Args:
        logs_dir: Directory for the log file (created on first write).
        task_id: Stamped on every entry.
    """

    def __init__(self, logs_dir: Union[str, Path], task_id: Optional[str] = None):
        self.path = Path(logs_dir) / LOG_FILE
        self.task_id = task_id
        self._lock = threading.Lock()

    def log(self, event: str, message: str, level: str = "info", **fields: Any) -> Optional[LogEntry]:
        """Validate and append one entry. Returns None if the entry was dropped."""
        fields.setdefault("task_id", self.task_id)
        try:
            entry = LogEntry(event=event, message=message, level=level, **fields)
        except ValidationError as e:
            logger.warning("Dropping invalid log entry %s: %s", event, e)
            return None

        line = json.dumps(entry.model_dump(exclude_none=True), ensure_ascii=False)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
            except OSError as e:
                logger.warning("Failed to append event to %s: %s", self.path, e)
        return entry

    def read(self) -> List[LogEntry]:
        """Load every valid entry written so far."""
        if not self.path.exists():
            return []
        entries: List[LogEntry] = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(LogEntry.model_validate_json(line))
                except ValidationError:
                    logger.debug("Skipping invalid log line: %s", line[:200])
        return entries
