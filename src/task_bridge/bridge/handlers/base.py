"""Handler interface and limits shared by handler policies."""

from __future__ import annotations

from typing import Protocol

from task_bridge.bridge.models import Task

ERROR_MESSAGE_LIMIT = 500
RESEARCH_OUTPUT_LIMIT = 1000
PROJECT_OUTPUT_LIMIT = 2000

RESEARCH_TOOLS = ("WebSearch", "WebFetch", "Read", "Write")
PROJECT_TOOLS = ("Bash", "Read", "Write", "Edit", "Glob", "Grep")


class TaskHandler(Protocol):
    """Policy translating one task into an agent session and its outcome."""

    async def handle(self, task: Task) -> None:
        """Drive ``task`` from queued to a terminal status."""
