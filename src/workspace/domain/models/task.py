from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.workspace.domain.models.task_state import AsyncStatus, WorkStatus
from src.workspace.domain.models.task_type import TaskKind
from src.workspace.domain.models.trigger import TriggerType


class Task(BaseModel):
    """Snapshot of a workspace task. Copies travel between layers, never shared rows."""

    id: str = Field(description="Unique task identifier.")
    user_id: str = Field(description="Owner of the task.")
    group_id: str | None = Field(default=None, description="Optional owning group.")
    name: str = Field(default="", description="Display name.")
    description: str = Field(default="", description="Free-text description of the work.")
    kind: TaskKind = Field(default=TaskKind.GENERAL, description="Kind of work.")
    status: WorkStatus = Field(default=WorkStatus.TODO, description="User-facing progress.")
    trigger_type: TriggerType = Field(default=TriggerType.MANUAL, description="Trigger kind.")
    trigger_value: str = Field(default="", description="Timestamp, HH:MM or hour count.")
    timezone: str = Field(default="Asia/Shanghai", description="IANA timezone of the trigger.")
    next_due_at: datetime | None = Field(default=None, description="Next scheduled execution.")
    last_run_at: datetime | None = Field(default=None, description="Last finished execution.")
    async_status: AsyncStatus = Field(default=AsyncStatus.IDLE, description="Scheduling state.")
    input_source: str = Field(default="", description="Where the task reads its input.")
    report_rule: str = Field(default="", description="How results should be reported.")
    result_summary: str = Field(default="", description="Summary of the latest run.")
    config: str = Field(default="", description="Serialized execution configuration.")
    created_at: datetime = Field(description="Creation timestamp.")
    updated_at: datetime = Field(description="Last update timestamp.")
