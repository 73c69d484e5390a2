from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from src.workspace.domain.exceptions import StorageError, TaskAccessDeniedError, TaskNotFoundError
from src.workspace.domain.models.run import Run, RunStatus
from src.workspace.domain.models.task import Task
from src.workspace.domain.models.task_state import AsyncStatus
from src.workspace.domain.models.trigger import TriggerType
from src.workspace.domain.repositories import StorageRepository
from src.workspace.infrastructure.postgres.mappers import OrmMapper, to_utc
from src.workspace.infrastructure.postgres.orm import PostgresOrm, RunRow, TaskRow

_DUE_STATUSES = (AsyncStatus.SCHEDULED, AsyncStatus.IDLE)


class PostgresStorageRepository(StorageRepository):
    """Task and run storage using SQLAlchemy async sessions."""

    def __init__(self, orm: PostgresOrm) -> None:
        self._orm = orm

    async def create_task(self, task: Task) -> Task:
        """Persist a new task and return it."""
        try:
            async with self._orm.session_factory() as session:
                async with session.begin():
                    session.add(OrmMapper.to_task_row(task))
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to create task '{task.id}': {exc}") from exc
        return task

    async def update_task(self, task: Task) -> Task:
        """Overwrite the stored task with ``task``."""
        try:
            async with self._orm.session_factory() as session:
                async with session.begin():
                    if await session.get(TaskRow, task.id) is None:
                        raise TaskNotFoundError(task.id)
                    await session.merge(OrmMapper.to_task_row(task))
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to update task '{task.id}': {exc}") from exc
        return task

    async def get_task(self, user_id: str, task_id: str) -> Task:
        """Fetch a task by id and enforce ownership."""
        try:
            async with self._orm.session_factory() as session:
                task_row = await session.get(TaskRow, task_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load task '{task_id}': {exc}") from exc

        if task_row is None:
            raise TaskNotFoundError(task_id)
        if task_row.user_id != user_id:
            raise TaskAccessDeniedError(task_id, user_id)
        return OrmMapper.to_domain_task(task_row)

    async def update_task_if(
        self,
        task_id: str,
        user_id: str,
        *,
        status_not: AsyncStatus,
        values: dict[str, Any],
    ) -> int:
        """Single conditional UPDATE; the row count tells the caller whether it won."""
        statement = (
            update(TaskRow)
            .where(
                TaskRow.id == task_id,
                TaskRow.user_id == user_id,
                TaskRow.async_status != status_not,
            )
            .values(**OrmMapper.to_task_values(values))
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._orm.session_factory() as session:
                async with session.begin():
                    result = await session.execute(statement)
                    affected = result.rowcount
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to update task '{task_id}': {exc}") from exc
        return affected or 0

    async def list_due_tasks(self, now: datetime, limit: int) -> list[Task]:
        statement = (
            select(TaskRow)
            .where(
                TaskRow.trigger_type != TriggerType.MANUAL,
                TaskRow.next_due_at.is_not(None),
                TaskRow.next_due_at <= to_utc(now),
                TaskRow.async_status.in_(_DUE_STATUSES),
            )
            .order_by(TaskRow.next_due_at.asc())
            .limit(limit)
        )
        try:
            async with self._orm.session_factory() as session:
                result = await session.execute(statement)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to list due tasks: {exc}") from exc
        return [OrmMapper.to_domain_task(row) for row in rows]

    async def create_run(self, run: Run) -> Run:
        try:
            async with self._orm.session_factory() as session:
                async with session.begin():
                    session.add(OrmMapper.to_run_row(run))
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to create run for task '{run.task_id}': {exc}") from exc
        return run

    async def count_failed_runs(self, task_id: str, since: datetime) -> int:
        statement = select(func.count(RunRow.id)).where(
            RunRow.task_id == task_id,
            RunRow.status == RunStatus.FAILED,
            RunRow.created_at >= to_utc(since),
        )
        try:
            async with self._orm.session_factory() as session:
                count = await session.scalar(statement)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to count runs of task '{task_id}': {exc}") from exc
        return int(count or 0)

    async def list_runs(self, user_id: str, task_id: str, limit: int = 20) -> list[Run]:
        statement = (
            select(RunRow)
            .where(RunRow.task_id == task_id, RunRow.user_id == user_id)
            .order_by(RunRow.created_at.desc())
            .limit(limit)
        )
        try:
            async with self._orm.session_factory() as session:
                result = await session.execute(statement)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to list runs of task '{task_id}': {exc}") from exc
        return [OrmMapper.to_domain_run(row) for row in rows]

    async def save_execution(self, run: Run, task: Task) -> None:
        """Persist the finalized run and the task update in one transaction."""
        try:
            async with self._orm.session_factory() as session:
                async with session.begin():
                    await session.merge(OrmMapper.to_run_row(run))
                    await session.merge(OrmMapper.to_task_row(task))
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to save run '{run.id}': {exc}") from exc
