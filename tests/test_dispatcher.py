from __future__ import annotations

import asyncio
from pathlib import Path

import allure
import pytest

from task_bridge.bridge.backend import SessionRequest, SessionResult
from task_bridge.bridge.dispatcher import Dispatcher
from task_bridge.bridge.handlers import ResearchHandler
from task_bridge.bridge.models import AutomationStatus, LogKind, Task
from task_bridge.bridge.repository import SqlTaskStore, StoreError
from task_bridge.bridge.transitions import StatusMachine

pytestmark = [
    allure.epic("Task Bridge"),
    allure.feature("Dispatcher"),
]


class BlockingSession:
    """Session double that holds the dispatch open until released."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def run(self, request: SessionRequest) -> SessionResult:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return SessionResult(output="done")


class ExplodingHandler:
    async def handle(self, task: Task) -> None:
        raise RuntimeError("handler blew up")


class FailingFetchStore:
    def __init__(self) -> None:
        self.calls = 0

    def fetch_eligible(self) -> Task | None:
        self.calls += 1
        raise StoreError("connection refused")


def _dispatcher(store, session, tmp_path: Path) -> Dispatcher:
    machine = StatusMachine(store)
    handler = ResearchHandler(machine=machine, session=session, temp_root=tmp_path)
    return Dispatcher(store=store, machine=machine, handlers={"research": handler})


def test_poll_dispatches_oldest_queued_task(
    store: SqlTaskStore,
    seed_task,
    fake_session,
    tmp_path: Path,
) -> None:
    seed_task("newer", age_minutes=1)
    seed_task("older", age_minutes=5)
    session = fake_session(output="findings")
    dispatcher = _dispatcher(store, session, tmp_path)

    assert asyncio.run(dispatcher.poll()) is True

    assert store.get_task("older").automation_status is AutomationStatus.DONE
    assert store.get_task("newer").automation_status is AutomationStatus.QUEUED
    assert dispatcher.busy is False


def test_poll_during_dispatch_is_skipped(
    store: SqlTaskStore,
    seed_task,
    tmp_path: Path,
) -> None:
    seed_task("t1", age_minutes=2)
    seed_task("t2", age_minutes=1)

    async def scenario() -> tuple[bool, bool, BlockingSession]:
        session = BlockingSession()
        dispatcher = _dispatcher(store, session, tmp_path)
        first = asyncio.create_task(dispatcher.poll())
        await asyncio.wait_for(session.started.wait(), timeout=10)
        assert dispatcher.busy is True
        second = await dispatcher.poll()
        session.release.set()
        return await first, second, session

    first, second, session = asyncio.run(scenario())

    assert first is True
    assert second is False
    assert session.calls == 1
    assert store.get_task("t1").automation_status is AutomationStatus.DONE
    assert store.get_task("t2").automation_status is AutomationStatus.QUEUED


def test_overlapping_polls_never_pick_the_same_task(
    store: SqlTaskStore,
    seed_task,
    fake_session,
    tmp_path: Path,
) -> None:
    seed_task("t1")
    session = fake_session()
    dispatcher = _dispatcher(store, session, tmp_path)

    async def scenario() -> list[bool]:
        return list(await asyncio.gather(dispatcher.poll(), dispatcher.poll()))

    results = asyncio.run(scenario())

    assert sorted(results) == [False, True]
    assert len(session.requests) == 1
    started = [entry for entry in store.read_log("t1") if entry.kind is LogKind.STARTED]
    assert len(started) == 1


def test_empty_queue_makes_no_writes(
    store: SqlTaskStore,
    seed_task,
    fake_session,
    tmp_path: Path,
) -> None:
    seed_task("idle", automation_status="idle")
    seed_task("untagged", automation_tag="none")
    session = fake_session()
    dispatcher = _dispatcher(store, session, tmp_path)
    before = store.get_task("idle").updated_at

    for _ in range(3):
        assert asyncio.run(dispatcher.poll()) is False

    assert session.requests == []
    assert store.get_task("idle").updated_at == before
    assert store.read_log("idle") == []
    assert store.read_log("untagged") == []


def test_unknown_tag_fails_task(
    store: SqlTaskStore,
    seed_task,
    fake_session,
    tmp_path: Path,
) -> None:
    seed_task("t1", automation_tag="mystery")
    session = fake_session()
    dispatcher = _dispatcher(store, session, tmp_path)

    assert asyncio.run(dispatcher.poll()) is True

    stored = store.get_task("t1")
    assert stored.automation_status is AutomationStatus.FAILED
    assert stored.automation_log[-1].message == "Unknown automation tag: mystery"
    assert session.requests == []


def test_handler_exception_after_start_is_recorded(store: SqlTaskStore, seed_task) -> None:
    seed_task("t1")
    machine = StatusMachine(store)

    class StartThenExplode:
        async def handle(self, task: Task) -> None:
            await machine.start(task, message="Research task started")
            raise RuntimeError("handler blew up")

    dispatcher = Dispatcher(
        store=store,
        machine=machine,
        handlers={"research": StartThenExplode()},
    )

    assert asyncio.run(dispatcher.poll()) is True

    stored = store.get_task("t1")
    assert stored.automation_status is AutomationStatus.FAILED
    assert stored.automation_log[-1].message == "Task failed: handler blew up"
    assert dispatcher.busy is False


def test_handler_exception_before_start_fails_task(
    store: SqlTaskStore,
    seed_task,
) -> None:
    seed_task("t1")
    dispatcher = Dispatcher(
        store=store,
        machine=StatusMachine(store),
        handlers={"research": ExplodingHandler()},
    )

    assert asyncio.run(dispatcher.poll()) is True

    stored = store.get_task("t1")
    assert stored.automation_status is AutomationStatus.FAILED
    assert [entry.kind for entry in stored.automation_log] == [LogKind.STARTED, LogKind.ERROR]
    assert stored.automation_log[-1].message == "Task failed: handler blew up"
    assert dispatcher.busy is False
    # Not refetched on the next tick.
    assert asyncio.run(dispatcher.poll()) is False


def test_research_task_id_with_slash_completes(
    store: SqlTaskStore,
    seed_task,
    fake_session,
    tmp_path: Path,
) -> None:
    seed_task("team/42", title="Compare brokers")
    session = fake_session(output="findings")
    dispatcher = _dispatcher(store, session, tmp_path)

    assert asyncio.run(dispatcher.poll()) is True

    stored = store.get_task("team/42")
    assert stored.automation_status is AutomationStatus.DONE
    assert "findings" in stored.description
    [request] = session.requests
    assert request.workdir.parent == tmp_path
    assert request.workdir.name.startswith("research-")


def test_fetch_error_is_logged_and_swallowed(caplog: pytest.LogCaptureFixture) -> None:
    store = FailingFetchStore()
    dispatcher = Dispatcher(store=store, machine=StatusMachine(store), handlers={})

    with caplog.at_level("ERROR"):
        assert asyncio.run(dispatcher.poll()) is False
        assert asyncio.run(dispatcher.poll()) is False

    assert store.calls == 2
    assert "connection refused" in caplog.text
    assert dispatcher.busy is False


def test_run_forever_polls_until_stopped(
    store: SqlTaskStore,
    seed_task,
    fake_session,
    tmp_path: Path,
) -> None:
    seed_task("t1", age_minutes=2)
    seed_task("t2", age_minutes=1)
    session = fake_session()
    dispatcher = _dispatcher(store, session, tmp_path)

    async def scenario() -> None:
        stop = asyncio.Event()
        runner = asyncio.create_task(dispatcher.run_forever(interval_seconds=0.05, stop=stop))
        for _ in range(200):
            if store.get_task("t2").automation_status is AutomationStatus.DONE:
                break
            await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(runner, timeout=10)

    asyncio.run(scenario())

    assert store.get_task("t1").automation_status is AutomationStatus.DONE
    assert store.get_task("t2").automation_status is AutomationStatus.DONE
    assert len(session.requests) == 2


def test_shutdown_during_dispatch_marks_task_failed(
    store: SqlTaskStore,
    seed_task,
    tmp_path: Path,
) -> None:
    seed_task("t1")

    async def scenario() -> None:
        session = BlockingSession()
        dispatcher = _dispatcher(store, session, tmp_path)
        stop = asyncio.Event()
        runner = asyncio.create_task(dispatcher.run_forever(interval_seconds=60, stop=stop))
        await asyncio.wait_for(session.started.wait(), timeout=10)
        stop.set()
        await asyncio.wait_for(runner, timeout=10)

    asyncio.run(scenario())

    stored = store.get_task("t1")
    assert stored.automation_status is AutomationStatus.FAILED
    assert stored.automation_log[-1].message == "Task failed: bridge shut down during dispatch"
