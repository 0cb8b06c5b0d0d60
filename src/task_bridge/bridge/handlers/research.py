"""Research handler: web research in a throwaway working directory."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from task_bridge.bridge.backend import AgentSession, SessionError, SessionRequest
from task_bridge.bridge.handlers.base import (
    ERROR_MESSAGE_LIMIT,
    RESEARCH_OUTPUT_LIMIT,
    RESEARCH_TOOLS,
)
from task_bridge.bridge.models import Task, truncate
from task_bridge.bridge.prompts import research_prompt
from task_bridge.bridge.transitions import StatusMachine

logger = logging.getLogger(__name__)

RESEARCH_RESULTS_HEADER = "\n\n---\n## Research Results\n"


class ResearchHandler:
    """Runs a read-only research session and appends the findings to the description.

    The working directory is private to one dispatch and is removed on every
    exit path, including timeouts and store errors.
    """

    def __init__(
        self,
        *,
        machine: StatusMachine,
        session: AgentSession,
        timeout_seconds: float | None = None,
        temp_root: Path | None = None,
    ) -> None:
        self.machine = machine
        self.session = session
        self.timeout_seconds = timeout_seconds
        self.temp_root = temp_root

    async def handle(self, task: Task) -> None:
        logger.info("[Research] Processing task: %s", task.title)
        with tempfile.TemporaryDirectory(
            prefix="research-",
            dir=self.temp_root,
            ignore_cleanup_errors=True,
        ) as workdir:
            await self.machine.start(task, message="Research task started")
            try:
                result = await self.session.run(
                    SessionRequest(
                        prompt=research_prompt(task),
                        workdir=Path(workdir),
                        allowed_tools=RESEARCH_TOOLS,
                        timeout_seconds=self.timeout_seconds,
                    ),
                )
            except SessionError as error:
                logger.error("[Research] Task failed: %s", error)
                await self.machine.fail(
                    task,
                    message=f"Research failed: {truncate(str(error), ERROR_MESSAGE_LIMIT)}",
                )
                return

            if not result.output.strip():
                logger.error("[Research] Agent returned no output for task %s", task.id)
                await self.machine.fail(task, message="Research failed: agent returned no output")
                return

            description = (task.description or "") + RESEARCH_RESULTS_HEADER + result.output
            await self.machine.complete(
                task,
                message="Research completed successfully",
                output=truncate(result.output, RESEARCH_OUTPUT_LIMIT),
                fields={"description": description},
            )
            task.description = description
            logger.info("[Research] Task completed: %s", task.title)
