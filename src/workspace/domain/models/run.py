from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TriggerSource(str, Enum):
    MANUAL = "manual"
    SCHEDULER = "scheduler"
    BATCH = "batch"


class Run(BaseModel):
    """One execution of a task. Sealed once ``status`` leaves ``running``."""

    id: str = Field(description="Unique run identifier.")
    task_id: str = Field(description="Task this run executed.")
    user_id: str = Field(description="Owner of the task.")
    group_id: str | None = Field(default=None, description="Group the task belongs to.")
    trigger_source: TriggerSource = Field(description="What started this run.")
    status: RunStatus = Field(default=RunStatus.RUNNING, description="Run lifecycle state.")
    summary: str = Field(default="", description="Human readable outcome.")
    final_answer: str = Field(default="", description="Final answer produced by the pipeline.")
    confidence: float = Field(default=0.0, description="Confidence score between 0 and 1.")
    trace: dict[str, Any] = Field(
        default_factory=dict, description="Attempts, policy, steps and evidence."
    )
    error_message: str = Field(default="", description="Recorded failure reason.")
    started_at: datetime | None = Field(default=None, description="When the run started.")
    finished_at: datetime | None = Field(default=None, description="When the run finished.")
    created_at: datetime = Field(description="Creation timestamp.")
    updated_at: datetime = Field(description="Last update timestamp.")
