"""Controllers for bridge CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from task_bridge import __version__
from task_bridge.bridge.backend import CliAgentSession
from task_bridge.bridge.commits import GitError, read_head_commit
from task_bridge.bridge.dispatcher import Dispatcher
from task_bridge.bridge.handlers import ProjectHandler, ResearchHandler, TaskHandler
from task_bridge.bridge.models import AutomationTag, LogEntry
from task_bridge.bridge.repository import SqlTaskStore, StoreError
from task_bridge.bridge.transitions import StatusMachine
from task_bridge.config import ConfigError, Settings

logger = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Startup precondition failed; the bridge must not enter the poll loop."""


@dataclass(slots=True)
class BridgeRunCommand:
    """CLI input for the long-running poll loop."""

    store_url: str | None


@dataclass(slots=True)
class BridgePollCommand:
    """CLI input for a single poll attempt."""

    store_url: str | None


@dataclass(slots=True)
class BridgeCheckCommand:
    """CLI input for startup precondition checks."""

    store_url: str | None


@dataclass(slots=True)
class BridgeInitDbCommand:
    """CLI input for schema migration."""

    store_url: str | None


@dataclass(slots=True)
class BridgeQueueCommand:
    """CLI input for queueing a task."""

    store_url: str | None
    task_id: str


@dataclass(slots=True)
class BridgeLogCommand:
    """CLI input for automation log inspection."""

    store_url: str | None
    task_id: str
    show_output: bool = False
    as_json: bool = False


@dataclass(slots=True)
class BridgeRecordCommitCommand:
    """CLI input for the post-commit hook."""

    store_url: str | None
    task_id: str | None
    repo: Path


@dataclass(slots=True)
class BridgeCheckResult:
    """Precondition report to render in CLI."""

    lines: list[str]
    success: bool


def build_dispatcher(
    *,
    settings: Settings,
    store: SqlTaskStore,
    session: CliAgentSession,
    temp_root: Path | None = None,
) -> Dispatcher:
    """Wire store, state machine, handlers and session into a dispatcher."""

    machine = StatusMachine(store)
    timeout_seconds = settings.agent_timeout_seconds
    research = ResearchHandler(
        machine=machine,
        session=session,
        timeout_seconds=timeout_seconds,
        temp_root=temp_root,
    )
    project = ProjectHandler(
        machine=machine,
        session=session,
        projects=settings.projects,
        timeout_seconds=timeout_seconds,
    )
    handlers: dict[str, TaskHandler] = {
        AutomationTag.RESEARCH.value: research,
        AutomationTag.PROJECT.value: project,
        AutomationTag.REFACTOR.value: project,
        AutomationTag.INFRA.value: project,
    }
    return Dispatcher(store=store, machine=machine, handlers=handlers)


class BridgeCliController:
    """Coordinates settings, store, session and dispatcher for CLI commands."""

    def run(self, command: BridgeRunCommand) -> list[str]:
        settings = _load_settings(command.store_url)
        logger.info("Task Bridge v%s", __version__)
        logger.info("Configuration validated")

        session = _session(settings)
        if not asyncio.run(session.is_available()):
            raise StartupError(
                f"Agent CLI is not available: {' '.join(session.command)!r}. "
                "Install it or set TASK_BRIDGE_AGENT_COMMAND.",
            )
        logger.info("Agent CLI is available")

        with _repository(settings) as store:
            dispatcher = build_dispatcher(settings=settings, store=store, session=session)
            logger.info(
                "Starting poll loop (interval: %dms); waiting for queued tasks",
                settings.polling.interval_ms,
            )
            asyncio.run(_serve(dispatcher, interval_seconds=settings.poll_interval_seconds))
        return ["Shutdown complete."]

    def poll_once(self, command: BridgePollCommand) -> list[str]:
        settings = _load_settings(command.store_url)
        with _repository(settings) as store:
            dispatcher = build_dispatcher(
                settings=settings,
                store=store,
                session=_session(settings),
            )
            dispatched = asyncio.run(dispatcher.poll())
        if dispatched:
            return ["Poll finished: dispatched=1"]
        return ["Poll finished: dispatched=0"]

    def check(self, command: BridgeCheckCommand) -> BridgeCheckResult:
        lines: list[str] = []
        success = True
        try:
            settings = _load_settings(command.store_url)
        except ConfigError as error:
            return BridgeCheckResult(lines=[f"Configuration: FAILED ({error})"], success=False)
        lines.append("Configuration: ok")
        lines.append(f"Projects mapped: {len(settings.projects)}")

        session = _session(settings)
        if asyncio.run(session.is_available()):
            lines.append(f"Agent CLI: available ({' '.join(session.command)})")
        else:
            lines.append(f"Agent CLI: NOT available ({' '.join(session.command)})")
            success = False
        return BridgeCheckResult(lines=lines, success=success)

    def init_db(self, command: BridgeInitDbCommand) -> list[str]:
        settings = _load_settings(command.store_url)
        with _repository(settings) as store:
            store.init_schema()
        return ["Schema is up to date."]

    def queue(self, command: BridgeQueueCommand) -> list[str]:
        settings = _load_settings(command.store_url)
        with _repository(settings) as store:
            task = StatusMachine(store).queue(command.task_id)
        return [
            f"Task queued: task_id={task.id} tag={task.automation_tag} "
            f"status={task.automation_status.value}",
        ]

    def show_log(self, command: BridgeLogCommand) -> list[str]:
        settings = _load_settings(command.store_url)
        with _repository(settings) as store:
            task = store.get_task(command.task_id)
        if task is None:
            raise StoreError(f"Task not found: {command.task_id}")
        if command.as_json:
            return [json.dumps([entry.to_dict() for entry in task.automation_log], indent=2)]

        lines = [
            f"Task: {task.id} {task.title}",
            f"Automation: tag={task.automation_tag} status={task.automation_status.value}",
        ]
        if not task.automation_log:
            lines.append("No automation log entries.")
            return lines
        for entry in task.automation_log:
            lines.extend(_render_entry(entry, show_output=command.show_output))
        return lines

    def record_commit(self, command: BridgeRecordCommitCommand) -> list[str]:
        """Append a progress entry for HEAD; never fails so the commit is not blocked."""

        if not command.task_id:
            return ["No task id given; commit not recorded."]
        try:
            settings = _load_settings(command.store_url)
            commit = read_head_commit(command.repo)
            with _repository(settings) as store:
                store.append_log(command.task_id, commit.to_log_entry())
        except (ConfigError, GitError, StoreError) as error:
            logger.error("Could not record commit for task %s: %s", command.task_id, error)
            return [f"Commit not recorded: {error}"]
        return [f"Commit {commit.commit_hash[:12]} recorded on task {command.task_id}."]


def _render_entry(entry: LogEntry, *, show_output: bool) -> list[str]:
    lines = [f"{entry.timestamp.isoformat()} {entry.kind.value:<9} {entry.message or ''}".rstrip()]
    if show_output and entry.output:
        lines.extend(f"    {line}" for line in entry.output.splitlines())
    return lines


def _load_settings(store_url: str | None) -> Settings:
    settings = Settings.from_env()
    if store_url:
        settings = replace(settings, store=replace(settings.store, url=store_url))
    settings.validate()
    return settings


def _session(settings: Settings) -> CliAgentSession:
    return CliAgentSession(
        command=settings.agent.command,
        default_timeout_seconds=settings.agent_timeout_seconds,
        kill_grace_seconds=settings.agent.kill_grace_seconds,
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[SqlTaskStore]:
    store = SqlTaskStore(settings.store_url(), busy_timeout_ms=settings.store.busy_timeout_ms)
    try:
        yield store
    finally:
        store.close()


async def _serve(dispatcher: Dispatcher, *, interval_seconds: float) -> None:
    stop = asyncio.Event()
    with _signal_handlers(stop):
        await dispatcher.run_forever(interval_seconds=interval_seconds, stop=stop)


@contextmanager
def _signal_handlers(stop: asyncio.Event) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    def _handler(signum: signal.Signals) -> None:
        logger.info("Received %s, shutting down gracefully...", signum.name)
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handler, signum)
        except (NotImplementedError, RuntimeError, ValueError):
            # Signal handlers can only be installed in main thread on Unix loops.
            continue
        installed.append(signum)
    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
