"""create workspace tasks and runs

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns store member names.
_TASK_KIND = sa.Enum("GENERAL", "REPORT", "ANALYSIS", name="task_kind")
_WORK_STATUS = sa.Enum("TODO", "IN_PROGRESS", "DONE", name="work_status")
_TRIGGER_TYPE = sa.Enum("MANUAL", "ONCE", "DAILY", "INTERVAL_HOURS", name="trigger_type")
_ASYNC_STATUS = sa.Enum("IDLE", "SCHEDULED", "RUNNING", "COMPLETED", "FAILED", name="async_status")
_TRIGGER_SOURCE = sa.Enum("MANUAL", "SCHEDULER", "BATCH", name="trigger_source")
_RUN_STATUS = sa.Enum("RUNNING", "COMPLETED", "FAILED", name="run_status")


def upgrade() -> None:
    op.create_table(
        "workspace_tasks",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("group_id", sa.String(128), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("kind", _TASK_KIND, nullable=False),
        sa.Column("status", _WORK_STATUS, nullable=False),
        sa.Column("trigger_type", _TRIGGER_TYPE, nullable=False),
        sa.Column("trigger_value", sa.String(64), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("next_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("async_status", _ASYNC_STATUS, nullable=False),
        sa.Column("input_source", sa.Text(), nullable=False),
        sa.Column("report_rule", sa.Text(), nullable=False),
        sa.Column("result_summary", sa.Text(), nullable=False),
        sa.Column("config", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_workspace_tasks_user_id", "workspace_tasks", ["user_id"])
    op.create_index("ix_workspace_tasks_group_id", "workspace_tasks", ["group_id"])
    op.create_index("ix_workspace_tasks_due", "workspace_tasks", ["async_status", "next_due_at"])

    op.create_table(
        "workspace_runs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "task_id",
            sa.String(64),
            sa.ForeignKey("workspace_tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("group_id", sa.String(128), nullable=True),
        sa.Column("trigger_source", _TRIGGER_SOURCE, nullable=False),
        sa.Column("status", _RUN_STATUS, nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("final_answer", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("trace", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_workspace_runs_task_id", "workspace_runs", ["task_id"])
    op.create_index("ix_workspace_runs_user_id", "workspace_runs", ["user_id"])


def downgrade() -> None:
    op.drop_table("workspace_runs")
    op.drop_table("workspace_tasks")
    bind = op.get_bind()
    for enum in (_RUN_STATUS, _TRIGGER_SOURCE, _ASYNC_STATUS, _TRIGGER_TYPE, _WORK_STATUS, _TASK_KIND):
        enum.drop(bind, checkfirst=True)
