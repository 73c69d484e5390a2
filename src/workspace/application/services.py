import json
from datetime import UTC, datetime
from typing import cast
from uuid import uuid4

import inject

from src.workspace.application.schedule import (
    compute_next_due_at,
    default_async_status,
    normalize_timezone,
)
from src.workspace.domain.exceptions import TaskBusyError
from src.workspace.domain.models import AsyncStatus, Run, Task, TaskDraft, TaskUpdate
from src.workspace.domain.repositories import StorageRepository

_SCHEDULE_FIELDS = {"trigger_type", "trigger_value", "timezone"}


class TaskService:
    """User-facing task operations. Every trigger edit recomputes the next due time."""

    def __init__(self, storage: StorageRepository | None = None) -> None:
        self._storage = storage or cast(StorageRepository, inject.instance(StorageRepository))

    async def create_task(self, user_id: str, draft: TaskDraft) -> Task:
        """Validate the trigger and persist a new task."""
        now = datetime.now(UTC)
        timezone = normalize_timezone(draft.timezone)
        next_due_at = compute_next_due_at(draft.trigger_type, draft.trigger_value, timezone, now)
        task = Task(
            id=uuid4().hex,
            user_id=user_id,
            group_id=draft.group_id,
            name=draft.name,
            description=draft.description,
            kind=draft.kind,
            trigger_type=draft.trigger_type,
            trigger_value=draft.trigger_value.strip(),
            timezone=timezone,
            next_due_at=next_due_at,
            async_status=default_async_status(draft.trigger_type),
            input_source=draft.input_source,
            report_rule=draft.report_rule,
            config=json.dumps(draft.config) if draft.config else "",
            created_at=now,
            updated_at=now,
        )
        return await self._storage.create_task(task)

    async def update_task(self, user_id: str, task_id: str, changes: TaskUpdate) -> Task:
        """
        Apply a partial edit. Refused while the task is running; the write is
        conditional so a claim taken after the read still wins.
        """
        current = await self._storage.get_task(user_id, task_id)
        if current.async_status is AsyncStatus.RUNNING:
            raise TaskBusyError(task_id)

        values = changes.model_dump(exclude_none=True)
        if "config" in values:
            values["config"] = json.dumps(values["config"])
        if "timezone" in values:
            values["timezone"] = normalize_timezone(values["timezone"])
        now = datetime.now(UTC)
        if _SCHEDULE_FIELDS & values.keys():
            merged = current.model_copy(update=values)
            values["next_due_at"] = compute_next_due_at(
                merged.trigger_type, merged.trigger_value, merged.timezone, now
            )
            values["async_status"] = default_async_status(merged.trigger_type)
        values["updated_at"] = now

        affected = await self._storage.update_task_if(
            task_id, user_id, status_not=AsyncStatus.RUNNING, values=values
        )
        if affected == 0:
            raise TaskBusyError(task_id)
        return await self._storage.get_task(user_id, task_id)

    async def get_task(self, user_id: str, task_id: str) -> Task:
        return await self._storage.get_task(user_id, task_id)

    async def list_runs(self, user_id: str, task_id: str, limit: int = 20) -> list[Run]:
        await self._storage.get_task(user_id, task_id)
        return await self._storage.list_runs(user_id, task_id, limit)
