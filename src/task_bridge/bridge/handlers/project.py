"""Project-class handler for project, refactor and infra tasks."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from task_bridge.bridge.backend import AgentSession, SessionError, SessionRequest
from task_bridge.bridge.handlers.base import (
    ERROR_MESSAGE_LIMIT,
    PROJECT_OUTPUT_LIMIT,
    PROJECT_TOOLS,
)
from task_bridge.bridge.models import ProjectConfig, Task, truncate
from task_bridge.bridge.prompts import project_class_prompt
from task_bridge.bridge.transitions import StatusMachine

logger = logging.getLogger(__name__)


def resolve_project(task: Task, projects: Mapping[str, ProjectConfig]) -> ProjectConfig | None:
    """Mapped ``project_tag`` wins; a bare ``repo_path`` gets generic defaults."""

    if task.project_tag and task.project_tag in projects:
        return projects[task.project_tag]
    if task.repo_path:
        return ProjectConfig(repo_path=task.repo_path)
    return None


class ProjectHandler:
    """Runs a code-changing session inside the task's repository.

    The change itself is not inspected; on success only the status moves to
    done. The agent process sees ``TASK_ID`` so a post-commit hook running
    ``task-bridge record-commit`` can attach commits to the task.
    """

    def __init__(
        self,
        *,
        machine: StatusMachine,
        session: AgentSession,
        projects: Mapping[str, ProjectConfig],
        timeout_seconds: float | None = None,
    ) -> None:
        self.machine = machine
        self.session = session
        self.projects = projects
        self.timeout_seconds = timeout_seconds

    async def handle(self, task: Task) -> None:
        logger.info("[Project] Processing task: %s", task.title)

        project = resolve_project(task, self.projects)
        if project is None:
            if task.project_tag:
                message = f"Unknown project_tag {task.project_tag!r} and no repo_path specified"
            else:
                message = "No project_tag or repo_path specified"
            logger.error("[Project] Task %s rejected: %s", task.id, message)
            await self.machine.reject(task, message=message)
            return

        workdir = Path(project.repo_path)
        await self.machine.start(task, message=f"Project task started in {workdir}")
        try:
            result = await self.session.run(
                SessionRequest(
                    prompt=project_class_prompt(task, project),
                    workdir=workdir,
                    allowed_tools=PROJECT_TOOLS,
                    timeout_seconds=self.timeout_seconds,
                    env={"TASK_ID": task.id},
                ),
            )
        except SessionError as error:
            logger.error("[Project] Task failed: %s", error)
            await self.machine.fail(
                task,
                message=f"Project task failed: {truncate(str(error), ERROR_MESSAGE_LIMIT)}",
            )
            return

        await self.machine.complete(
            task,
            message="Project task completed successfully",
            output=truncate(result.output, PROJECT_OUTPUT_LIMIT),
        )
        logger.info("[Project] Task completed: %s", task.title)
