"""Poll loop that dispatches queued tasks one at a time."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager

from task_bridge.bridge.handlers import TaskHandler
from task_bridge.bridge.handlers.base import ERROR_MESSAGE_LIMIT
from task_bridge.bridge.models import AutomationStatus, Task, truncate
from task_bridge.bridge.repository import StoreError, TaskStore
from task_bridge.bridge.transitions import StatusMachine

logger = logging.getLogger(__name__)

_BANNER = "=" * 60


class Dispatcher:
    """Single-flight dispatcher.

    A timer tick calls ``poll``; a tick that arrives while an earlier dispatch
    is still in flight is skipped rather than queued. The guard is held from
    the eligibility query until the handler returns, so two overlapping ticks
    can never pick up the same task. There is no mutual exclusion between
    separate bridge processes sharing one store.
    """

    def __init__(
        self,
        *,
        store: TaskStore,
        machine: StatusMachine,
        handlers: Mapping[str, TaskHandler],
    ) -> None:
        self.store = store
        self.machine = machine
        self.handlers = dict(handlers)
        self._busy = False
        self._ticks: set[asyncio.Task[bool]] = set()

    @property
    def busy(self) -> bool:
        return self._busy

    async def poll(self) -> bool:
        """Run one poll attempt; returns True when a task was dispatched."""

        if self._busy:
            logger.info("[Poll] Already processing a task, skipping this poll")
            return False

        with self._in_flight():
            try:
                task = await asyncio.to_thread(self.store.fetch_eligible)
            except StoreError as error:
                logger.error("Error fetching queued tasks: %s", error)
                return False
            if task is None:
                return False
            await self._dispatch(task)
            return True

    async def run_forever(self, *, interval_seconds: float, stop: asyncio.Event) -> None:
        """Poll once immediately, then on every tick until ``stop`` is set.

        Ticks still running when ``stop`` is set are cancelled, which terminates
        the agent process of an in-flight dispatch.
        """

        self._tick()
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            except TimeoutError:
                self._tick()
        await self._cancel_ticks()

    def _tick(self) -> None:
        tick = asyncio.create_task(self.poll())
        self._ticks.add(tick)
        tick.add_done_callback(self._tick_done)

    def _tick_done(self, tick: asyncio.Task[bool]) -> None:
        self._ticks.discard(tick)
        if tick.cancelled():
            return
        error = tick.exception()
        if error is not None:
            logger.error("Poll tick crashed", exc_info=error)

    async def _cancel_ticks(self) -> None:
        pending = list(self._ticks)
        for tick in pending:
            tick.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    @contextmanager
    def _in_flight(self) -> Iterator[None]:
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    async def _dispatch(self, task: Task) -> None:
        logger.info(_BANNER)
        logger.info("Processing task: %s", task.title)
        logger.info("  ID: %s", task.id)
        logger.info("  Tag: %s", task.automation_tag)
        logger.info("  Project: %s", task.project_tag or "N/A")
        logger.info(_BANNER)

        try:
            handler = self.handlers.get(task.automation_tag)
            if handler is None:
                logger.warning(
                    "Unknown automation tag %r on task %s",
                    task.automation_tag,
                    task.id,
                )
                await self.machine.reject(
                    task,
                    message=f"Unknown automation tag: {task.automation_tag}",
                )
                return
            await handler.handle(task)
        except asyncio.CancelledError:
            logger.warning("Dispatch of task %s cancelled", task.id)
            await self._record_failure(task, RuntimeError("bridge shut down during dispatch"))
            raise
        except Exception as error:  # noqa: BLE001
            logger.exception("Error processing task %s", task.id)
            await self._record_failure(task, error)

    async def _record_failure(self, task: Task, error: Exception) -> None:
        message = f"Task failed: {truncate(str(error), ERROR_MESSAGE_LIMIT)}"
        try:
            if task.automation_status == AutomationStatus.QUEUED:
                # Failed before the handler picked it up; reject so it is not refetched.
                await self.machine.reject(task, message=message)
            elif task.automation_status == AutomationStatus.RUNNING:
                await self.machine.fail(task, message=message)
            else:
                logger.error(
                    "Task %s left in %s after error; store may be stale",
                    task.id,
                    task.automation_status.value,
                )
        except Exception:  # noqa: BLE001
            logger.exception("Could not record failure of task %s", task.id)
