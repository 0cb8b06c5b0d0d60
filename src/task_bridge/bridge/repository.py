"""Task store contract and its SQLModel implementation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from sqlalchemy import update as sa_update
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from task_bridge.bridge.models import AutomationStatus, AutomationTag, LogEntry, LogKind, Task
from task_bridge.storage.alembic_runner import upgrade_head
from task_bridge.storage.common import build_engine, to_utc, utc_now
from task_bridge.storage.sqlmodel_models import TaskLogRow, TaskRow

UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "priority",
        "status",
        "context",
        "next_actions",
        "project_tag",
        "repo_path",
        "pr_link",
        "automation_tag",
        "automation_status",
    },
)


class StoreError(RuntimeError):
    """Read or write against the task store failed."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TaskStore(Protocol):
    """Operations the bridge needs from the task store."""

    def fetch_eligible(self) -> Task | None:
        """Return the oldest queued task with an automation tag, if any."""

    def get_task(self, task_id: str) -> Task | None:
        """Return one task with its automation log."""

    def read_log(self, task_id: str) -> list[LogEntry]:
        """Return the automation log in chronological order."""

    def append_log(self, task_id: str, entry: LogEntry) -> None:
        """Append one entry to the end of the automation log."""

    def update_fields(self, task_id: str, fields: Mapping[str, Any]) -> None:
        """Merge fields into the task row and stamp ``updated_at``."""


class SqlTaskStore:
    """Task store facade backed by SQLModel.

    The automation log lives in its own append-only table, so appending is a
    single INSERT and concurrent writers cannot drop each other's entries.
    """

    def __init__(self, url: str | URL, *, busy_timeout_ms: int = 5000) -> None:
        self.url = url
        self.engine = build_engine(url=url, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        try:
            upgrade_head(self.url)
        except SQLAlchemyError as error:
            raise StoreError(f"Schema migration failed: {error}", cause=error) from error

    def fetch_eligible(self) -> Task | None:
        try:
            with Session(self.engine) as session:
                row = session.exec(
                    select(TaskRow)
                    .where(
                        col(TaskRow.automation_tag) != AutomationTag.NONE.value,
                        col(TaskRow.automation_status) == AutomationStatus.QUEUED.value,
                    )
                    .order_by(col(TaskRow.created_at).asc(), col(TaskRow.id).asc())
                    .limit(1),
                ).one_or_none()
                if row is None:
                    return None
                return _to_task(row, self._select_log(session, row.id))
        except SQLAlchemyError as error:
            raise StoreError(f"Fetching queued tasks failed: {error}", cause=error) from error

    def get_task(self, task_id: str) -> Task | None:
        try:
            with Session(self.engine) as session:
                row = session.get(TaskRow, task_id)
                if row is None:
                    return None
                return _to_task(row, self._select_log(session, task_id))
        except SQLAlchemyError as error:
            raise StoreError(f"Reading task {task_id} failed: {error}", cause=error) from error

    def read_log(self, task_id: str) -> list[LogEntry]:
        try:
            with Session(self.engine) as session:
                return self._select_log(session, task_id)
        except SQLAlchemyError as error:
            raise StoreError(
                f"Reading automation log of {task_id} failed: {error}",
                cause=error,
            ) from error

    def append_log(self, task_id: str, entry: LogEntry) -> None:
        try:
            with Session(self.engine) as session:
                if session.get(TaskRow, task_id) is None:
                    raise StoreError(f"Task not found: {task_id}")
                session.add(
                    TaskLogRow(
                        task_id=task_id,
                        timestamp=entry.timestamp,
                        kind=entry.kind.value,
                        message=entry.message,
                        output=entry.output,
                    ),
                )
                session.commit()
        except SQLAlchemyError as error:
            raise StoreError(
                f"Appending automation log of {task_id} failed: {error}",
                cause=error,
            ) from error

    def update_fields(self, task_id: str, fields: Mapping[str, Any]) -> None:
        unknown = sorted(set(fields) - UPDATABLE_FIELDS)
        if unknown:
            raise StoreError(f"Unsupported task fields: {', '.join(unknown)}")

        values = {key: _db_value(value) for key, value in fields.items()}
        values["updated_at"] = utc_now()
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(TaskRow).where(col(TaskRow.id) == task_id).values(**values),
                )
                if result.rowcount != 1:
                    session.rollback()
                    raise StoreError(f"Task not found: {task_id}")
                session.commit()
        except SQLAlchemyError as error:
            raise StoreError(f"Updating task {task_id} failed: {error}", cause=error) from error

    def _select_log(self, session: Session, task_id: str) -> list[LogEntry]:
        rows = session.exec(
            select(TaskLogRow)
            .where(TaskLogRow.task_id == task_id)
            .order_by(col(TaskLogRow.entry_id).asc()),
        ).all()
        return [
            LogEntry(
                kind=LogKind(row.kind),
                message=row.message,
                output=row.output,
                timestamp=to_utc(row.timestamp),
            )
            for row in rows
        ]


def _db_value(value: Any) -> Any:
    if isinstance(value, AutomationStatus | AutomationTag):
        return value.value
    return value


def _to_task(row: TaskRow, log: list[LogEntry]) -> Task:
    return Task(
        id=row.id,
        title=row.title,
        automation_tag=row.automation_tag,
        automation_status=AutomationStatus(row.automation_status),
        description=row.description,
        category=row.category,
        priority=row.priority,
        context=row.context,
        next_actions=list(row.next_actions or []),
        project_tag=row.project_tag,
        repo_path=row.repo_path,
        created_at=to_utc(row.created_at),
        updated_at=to_utc(row.updated_at),
        automation_log=log,
    )
