"""SQLModel ORM tables for the task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "idx_tasks_automation_queue",
            "automation_status",
            "automation_tag",
            "created_at",
        ),
    )

    id: str = Field(primary_key=True)
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    category: str | None = None
    priority: str | None = None
    status: str | None = None
    context: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    next_actions: list[str] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    project_tag: str | None = None
    repo_path: str | None = None
    pr_link: str | None = None
    automation_tag: str = Field(
        default="none",
        sa_column=Column(String, nullable=False, server_default="none"),
    )
    automation_status: str = Field(
        default="idle",
        sa_column=Column(String, nullable=False, server_default="idle"),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskLogRow(SQLModel, table=True):
    __tablename__ = "task_automation_log"  # type: ignore[bad-override]

    entry_id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    kind: str
    message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    output: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
