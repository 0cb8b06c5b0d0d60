"""Domain models for automated task dispatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from task_bridge.storage.common import utc_now


class AutomationTag(str, Enum):
    """Classification selecting which handler processes a task."""

    NONE = "none"
    RESEARCH = "research"
    PROJECT = "project"
    REFACTOR = "refactor"
    INFRA = "infra"


class AutomationStatus(str, Enum):
    """Automation lifecycle states."""

    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class LogKind(str, Enum):
    """Kinds of automation log entries."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class LogEntry:
    """One append-only automation log entry."""

    kind: LogKind
    message: str | None = None
    output: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "type": self.kind.value,
        }
        if self.message is not None:
            payload["message"] = self.message
        if self.output is not None:
            payload["output"] = self.output
        return payload


@dataclass(slots=True)
class Task:
    """Task row as seen by the bridge.

    Descriptive fields belong to the dashboard; the bridge only reads them,
    except the research handler which appends to ``description``.
    """

    id: str
    title: str
    automation_tag: str
    automation_status: AutomationStatus
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    context: str | None = None
    next_actions: list[str] = field(default_factory=list)
    project_tag: str | None = None
    repo_path: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    automation_log: list[LogEntry] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ProjectConfig:
    """Working-directory configuration for project-class tasks."""

    repo_path: str
    test_command: str = "npm test"
    stack: str = "Unknown"


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return text[:limit] + "..."
