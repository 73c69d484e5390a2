from __future__ import annotations

from datetime import UTC, datetime

from src.workspace.domain.models.run import Run
from src.workspace.domain.models.task import Task
from src.workspace.infrastructure.postgres.orm import RunRow, TaskRow

_TASK_COLUMNS = tuple(TaskRow.__table__.columns.keys())
_RUN_COLUMNS = tuple(RunRow.__table__.columns.keys())


def to_utc(value: datetime | None) -> datetime | None:
    """Store every timestamp in UTC; naive values read back from the driver are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class OrmMapper:
    @staticmethod
    def to_task_row(task: Task) -> TaskRow:
        values = task.model_dump(include=set(_TASK_COLUMNS))
        for field in ("next_due_at", "last_run_at", "created_at", "updated_at"):
            values[field] = to_utc(values[field])
        return TaskRow(**values)

    @staticmethod
    def to_run_row(run: Run) -> RunRow:
        values = run.model_dump(include=set(_RUN_COLUMNS))
        values["trace"] = run.model_dump(mode="json", include={"trace"})["trace"]
        for field in ("started_at", "finished_at", "created_at", "updated_at"):
            values[field] = to_utc(values[field])
        return RunRow(**values)

    @staticmethod
    def to_domain_task(row: TaskRow) -> Task:
        values = {column: getattr(row, column) for column in _TASK_COLUMNS}
        for field in ("next_due_at", "last_run_at", "created_at", "updated_at"):
            values[field] = to_utc(values[field])
        return Task.model_validate(values)

    @staticmethod
    def to_domain_run(row: RunRow) -> Run:
        values = {column: getattr(row, column) for column in _RUN_COLUMNS}
        values["trace"] = values["trace"] or {}
        for field in ("started_at", "finished_at", "created_at", "updated_at"):
            values[field] = to_utc(values[field])
        return Run.model_validate(values)

    @staticmethod
    def to_task_values(values: dict) -> dict:
        """Prepare a partial update for ``TaskRow`` columns."""
        unknown = set(values) - set(_TASK_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown task columns: {sorted(unknown)}")
        return {
            key: to_utc(value) if isinstance(value, datetime) else value
            for key, value in values.items()
        }
