from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from src.workspace.domain.models.run import Run


class BatchItemStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NOT_FOUND = "not_found"


class BatchRunItem(BaseModel):
    task_id: str = Field(description="Requested task identifier.")
    status: BatchItemStatus = Field(default=BatchItemStatus.FAILED, description="Outcome for this task.")
    error: str | None = Field(default=None, description="Why the task did not complete.")
    run: Run | None = Field(default=None, description="The run, when one was started.")


class BatchRunReport(BaseModel):
    """Per-task outcomes of a batch run. Busy and not-found items also count as failed."""

    items: list[BatchRunItem] = Field(default_factory=list)
    total: int = 0
    success: int = 0
    failed: int = 0
    busy: int = 0
    not_found: int = 0
