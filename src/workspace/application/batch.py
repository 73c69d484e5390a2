from __future__ import annotations

import asyncio
import logging

import inject

from src.workspace.application.runner import Runner
from src.workspace.domain.exceptions import (
    BatchRequestError,
    ExecutionFailedError,
    TaskAccessDeniedError,
    TaskNotFoundError,
)
from src.workspace.domain.models import (
    BatchItemStatus,
    BatchRunItem,
    BatchRunReport,
    TriggerSource,
)

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50
DEFAULT_PARALLELISM = 3
MAX_PARALLELISM = 10


class BatchRunner:
    """Runs several tasks of one user with bounded concurrency."""

    def __init__(self, runner: Runner | None = None) -> None:
        self._runner = runner or inject.instance(Runner)

    async def run(
        self,
        user_id: str,
        task_ids: list[str],
        max_parallel: int | None = None,
    ) -> BatchRunReport:
        ids = dedupe_ids(task_ids)
        if not ids:
            raise BatchRequestError("ids is required")
        if len(ids) > MAX_BATCH_SIZE:
            raise BatchRequestError(f"batch size exceeded, max {MAX_BATCH_SIZE}")

        parallelism = max_parallel if max_parallel and max_parallel > 0 else DEFAULT_PARALLELISM
        semaphore = asyncio.Semaphore(min(parallelism, MAX_PARALLELISM))

        async def _guarded(task_id: str) -> BatchRunItem:
            async with semaphore:
                return await self._run_one(user_id, task_id)

        items = await asyncio.gather(*(_guarded(task_id) for task_id in ids))
        report = BatchRunReport(items=list(items), total=len(items))
        for item in items:
            if item.status is BatchItemStatus.COMPLETED:
                report.success += 1
                continue
            report.failed += 1
            if item.status is BatchItemStatus.BUSY:
                report.busy += 1
            elif item.status is BatchItemStatus.NOT_FOUND:
                report.not_found += 1
        return report

    async def _run_one(self, user_id: str, task_id: str) -> BatchRunItem:
        item = BatchRunItem(task_id=task_id)
        try:
            task, claimed = await self._runner.claim_work(task_id, user_id)
        except (TaskNotFoundError, TaskAccessDeniedError):
            item.status = BatchItemStatus.NOT_FOUND
            item.error = "task not found"
            return item
        if not claimed:
            item.status = BatchItemStatus.BUSY
            item.error = "task is running"
            return item

        try:
            item.run = await self._runner.execute_claimed(task, TriggerSource.BATCH)
        except ExecutionFailedError as exc:
            item.run = exc.run
            item.error = exc.run.error_message or str(exc)
            return item
        except Exception as exc:
            logger.exception("Batch run crashed: task=%s", task_id)
            item.error = str(exc)
            return item

        item.status = BatchItemStatus.COMPLETED
        return item


def dedupe_ids(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for raw in ids:
        task_id = raw.strip()
        if task_id and task_id not in seen:
            seen.add(task_id)
            result.append(task_id)
    return result
