"""Automation status state machine.

Legal edges::

    idle -> queued -> running -> done
                              -> failed -> queued

``idle -> queued`` and ``failed -> queued`` are external actions (dashboard or
CLI). The dispatcher only ever drives ``queued -> running`` and
``running -> done | failed``; it never retries on its own.

Every transition is an ``update_fields`` call followed by an ``append_log``
call. The pair is not atomic: if the log write fails the status has already
moved, and the task is left without its entry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from task_bridge.bridge.models import AutomationStatus, AutomationTag, LogEntry, LogKind, Task
from task_bridge.bridge.repository import StoreError, TaskStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AutomationStatus, frozenset[AutomationStatus]] = {
    AutomationStatus.IDLE: frozenset({AutomationStatus.QUEUED}),
    AutomationStatus.QUEUED: frozenset({AutomationStatus.RUNNING}),
    AutomationStatus.RUNNING: frozenset({AutomationStatus.DONE, AutomationStatus.FAILED}),
    AutomationStatus.DONE: frozenset(),
    AutomationStatus.FAILED: frozenset({AutomationStatus.QUEUED}),
}


class IllegalTransitionError(RuntimeError):
    """Requested status change is not an edge of the state machine."""

    def __init__(self, current: AutomationStatus, target: AutomationStatus) -> None:
        super().__init__(f"Illegal automation transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


def ensure_transition(current: AutomationStatus, target: AutomationStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise IllegalTransitionError(current, target)


class StatusMachine:
    """Persists status transitions together with their log entries."""

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    async def start(self, task: Task, *, message: str) -> None:
        """queued -> running with a ``started`` entry."""

        await self._transition(
            task,
            AutomationStatus.RUNNING,
            LogEntry(kind=LogKind.STARTED, message=message),
        )

    async def complete(
        self,
        task: Task,
        *,
        message: str,
        output: str | None = None,
        fields: Mapping[str, Any] | None = None,
    ) -> None:
        """running -> done; handler result fields ride along with the status write."""

        await self._transition(
            task,
            AutomationStatus.DONE,
            LogEntry(kind=LogKind.COMPLETED, message=message, output=output),
            fields=fields,
        )

    async def fail(self, task: Task, *, message: str) -> None:
        """running -> failed with an ``error`` entry."""

        await self._transition(
            task,
            AutomationStatus.FAILED,
            LogEntry(kind=LogKind.ERROR, message=message),
        )

    async def reject(self, task: Task, *, message: str) -> None:
        """Refuse a picked-up task before any session is spawned.

        There is no queued -> failed edge, so the task passes through running
        and ends with a ``started`` and an ``error`` entry.
        """

        await self.start(task, message="Task picked up")
        await self.fail(task, message=message)

    def queue(self, task_id: str) -> Task:
        """External action: idle | failed -> queued.

        Mirrors the dashboard queue button, which is only offered for tasks
        carrying an automation tag.
        """

        task = self.store.get_task(task_id)
        if task is None:
            raise StoreError(f"Task not found: {task_id}")
        if task.automation_tag == AutomationTag.NONE.value:
            raise ValueError(f"Task {task_id} has no automation tag and cannot be queued.")
        previous = task.automation_status
        ensure_transition(previous, AutomationStatus.QUEUED)
        self.store.update_fields(task_id, {"automation_status": AutomationStatus.QUEUED.value})
        task.automation_status = AutomationStatus.QUEUED
        logger.info("Task %s: %s -> queued", task_id, previous.value)
        return task

    async def _transition(
        self,
        task: Task,
        target: AutomationStatus,
        entry: LogEntry,
        *,
        fields: Mapping[str, Any] | None = None,
    ) -> None:
        ensure_transition(task.automation_status, target)
        updates: dict[str, Any] = dict(fields or {})
        updates["automation_status"] = target.value

        await asyncio.to_thread(self.store.update_fields, task.id, updates)
        previous = task.automation_status
        task.automation_status = target
        await asyncio.to_thread(self.store.append_log, task.id, entry)
        task.automation_log.append(entry)
        logger.info("Task %s: %s -> %s", task.id, previous.value, target.value)

