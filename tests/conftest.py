"""Shared test fixtures."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlmodel import Session

from task_bridge.bridge.backend import SessionRequest, SessionResult
from task_bridge.bridge.repository import SqlTaskStore
from task_bridge.storage.sqlmodel_models import TaskRow

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
ECHO_AGENT_COMMAND = (sys.executable, "-m", "task_bridge.bridge.backend.echo_agent")
_BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

_ENV_NAMES = (
    "TASK_BRIDGE_STORE_URL",
    "TASK_BRIDGE_STORE_KEY",
    "TASK_BRIDGE_POLL_INTERVAL_MS",
    "TASK_BRIDGE_AGENT_TIMEOUT_MS",
    "TASK_BRIDGE_AGENT_COMMAND",
    "TASK_BRIDGE_AGENT_KILL_GRACE_SECONDS",
    "TASK_BRIDGE_PROJECTS_FILE",
    "TASK_BRIDGE_LOG_LEVEL",
    "TASK_BRIDGE_ECHO_SLEEP_SECONDS",
    "TASK_BRIDGE_ECHO_EXIT_CODE",
    "TASK_BRIDGE_ECHO_STDERR",
    "TASK_ID",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Clear bridge env vars and make the echo agent importable in subprocesses."""

    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    pythonpath = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        f"{SRC_DIR}{os.pathsep}{pythonpath}" if pythonpath else str(SRC_DIR),
    )


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """CLI invocations reconfigure the root logger; undo it after each test."""

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def store_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'tasks.db'}"


@pytest.fixture()
def store(store_url: str) -> Iterator[SqlTaskStore]:
    repository = SqlTaskStore(store_url)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


def _insert_task(
    store: SqlTaskStore,
    task_id: str,
    *,
    automation_tag: str = "research",
    automation_status: str = "queued",
    age_minutes: int = 0,
    **fields,
) -> None:
    """Insert a task row directly, as the dashboard would."""

    created_at = _BASE_TIME - timedelta(minutes=age_minutes)
    with Session(store.engine) as session:
        session.add(
            TaskRow(
                id=task_id,
                title=fields.pop("title", f"Task {task_id}"),
                automation_tag=automation_tag,
                automation_status=automation_status,
                created_at=created_at,
                updated_at=created_at,
                **fields,
            ),
        )
        session.commit()


class FakeSession:
    """Agent session double returning a canned result or raising."""

    def __init__(self, *, output: str = "agent output", error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.requests: list[SessionRequest] = []

    async def run(self, request: SessionRequest) -> SessionResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return SessionResult(output=self.output)


@pytest.fixture()
def seed_task(store: SqlTaskStore):
    """Factory inserting task rows into the test store."""

    def _seed(task_id: str, **fields) -> None:
        _insert_task(store, task_id, **fields)

    return _seed


@pytest.fixture()
def fake_session():
    """Factory building agent session doubles."""

    return FakeSession


@pytest.fixture()
def echo_command() -> tuple[str, ...]:
    """Agent command running the bundled echo agent with this interpreter."""

    return ECHO_AGENT_COMMAND
