from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.workspace.domain.models.task_type import TaskKind
from src.workspace.domain.models.trigger import TriggerType


class TaskDraft(BaseModel):
    """Fields a user supplies when creating a task."""

    name: str = Field(min_length=1, description="Display name.")
    description: str = Field(default="", description="What the task should achieve.")
    group_id: str | None = Field(default=None, description="Optional owning group.")
    kind: TaskKind = Field(default=TaskKind.GENERAL, description="Kind of work.")
    trigger_type: TriggerType = Field(default=TriggerType.MANUAL, description="Trigger kind.")
    trigger_value: str = Field(default="", description="Timestamp, HH:MM or hour count.")
    timezone: str = Field(default="", description="IANA timezone; empty uses the default.")
    input_source: str = Field(default="", description="Where the task reads its input.")
    report_rule: str = Field(default="", description="How results should be reported.")
    config: dict[str, Any] | None = Field(default=None, description="Execution configuration.")


class TaskUpdate(BaseModel):
    """Partial edit of a task. ``None`` leaves a field untouched."""

    name: str | None = None
    description: str | None = None
    kind: TaskKind | None = None
    trigger_type: TriggerType | None = None
    trigger_value: str | None = None
    timezone: str | None = None
    input_source: str | None = None
    report_rule: str | None = None
    config: dict[str, Any] | None = None
