"""Create tasks table and append-only automation log."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("next_actions", sa.JSON(), nullable=True),
        sa.Column("project_tag", sa.String(), nullable=True),
        sa.Column("repo_path", sa.String(), nullable=True),
        sa.Column("pr_link", sa.String(), nullable=True),
        sa.Column("automation_tag", sa.String(), server_default="none", nullable=False),
        sa.Column("automation_status", sa.String(), server_default="idle", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_tasks_automation_queue",
        "tasks",
        ["automation_status", "automation_tag", "created_at"],
        unique=False,
    )

    op.create_table(
        "task_automation_log",
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("output", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("entry_id"),
    )
    op.create_index(
        "ix_task_automation_log_task_id",
        "task_automation_log",
        ["task_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_task_automation_log_task_id", table_name="task_automation_log")
    op.drop_table("task_automation_log")
    op.drop_index("idx_tasks_automation_queue", table_name="tasks")
    op.drop_table("tasks")
