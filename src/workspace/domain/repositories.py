from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from src.workspace.domain.models.chat import ChatCompletion
from src.workspace.domain.models.run import Run
from src.workspace.domain.models.task import Task
from src.workspace.domain.models.task_state import AsyncStatus


class StorageRepository(Protocol):
    """Repository contract for tasks and their runs."""

    async def create_task(self, task: Task) -> Task:
        """Persist a new task and return the stored snapshot."""

    async def update_task(self, task: Task) -> Task:
        """Overwrite a task with the given snapshot."""

    async def get_task(self, user_id: str, task_id: str) -> Task:
        """Fetch a task by id and enforce ownership."""

    async def update_task_if(
        self,
        task_id: str,
        user_id: str,
        *,
        status_not: AsyncStatus,
        values: dict[str, Any],
    ) -> int:
        """
        Atomically apply ``values`` when the task belongs to ``user_id`` and its
        async status differs from ``status_not``. Return the affected row count.
        """

    async def list_due_tasks(self, now: datetime, limit: int) -> list[Task]:
        """Return non-manual tasks due at or before ``now``, oldest due first."""

    async def create_run(self, run: Run) -> Run:
        """Persist a run in ``running`` state."""

    async def count_failed_runs(self, task_id: str, since: datetime) -> int:
        """Count failed runs of a task created at or after ``since``."""

    async def list_runs(self, user_id: str, task_id: str, limit: int = 20) -> list[Run]:
        """Return the latest runs of a task, newest first."""

    async def save_execution(self, run: Run, task: Task) -> None:
        """Persist a finalized run together with its task in one transaction."""


class ChatCompletionRepository(Protocol):
    """Contract for a single request/response chat completion backend."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> ChatCompletion:
        """Send one system + user exchange and return the raw completion."""
