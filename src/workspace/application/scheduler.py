from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import inject

from src.workspace.application.runner import Runner
from src.workspace.domain.exceptions import ExecutionFailedError
from src.workspace.domain.models import TriggerSource
from src.workspace.domain.repositories import StorageRepository

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Periodic scan for due tasks.

    Scans once on start and then every ``interval_seconds`` until stopped. Due
    tasks are claimed and executed one at a time; a failing task never halts
    the rest of the scan.
    """

    def __init__(
        self,
        storage: StorageRepository | None = None,
        runner: Runner | None = None,
        *,
        interval_seconds: float = 30.0,
        batch_size: int = 20,
    ) -> None:
        self._storage = storage or inject.instance(StorageRepository)
        self._runner = runner or inject.instance(Runner)
        self._interval = interval_seconds if interval_seconds > 0 else 30.0
        self._batch_size = batch_size if batch_size > 0 else 20
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self._loop_task is not None:
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._loop(self._stop_event), name="workspace-scheduler")
        logger.info("Workspace scheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        if self._loop_task is None or self._stop_event is None:
            return
        loop_task, self._loop_task = self._loop_task, None
        self._stop_event.set()
        self._stop_event = None
        await loop_task
        logger.info("Workspace scheduler stopped")

    async def scan_and_run(self, stop: asyncio.Event | None = None) -> int:
        """Run every due task once. Returns how many executions were started."""
        now = datetime.now(UTC)
        try:
            due = await self._storage.list_due_tasks(now, self._batch_size)
        except Exception:
            logger.exception("Workspace scheduler query failed")
            return 0

        started = 0
        for item in due:
            if stop is not None and stop.is_set():
                break
            try:
                task, claimed = await self._runner.claim_work(item.id, item.user_id)
            except Exception as exc:
                logger.warning("Workspace scheduler claim failed: task=%s err=%s", item.id, exc)
                continue
            if not claimed:
                logger.debug("Workspace scheduler lost claim: task=%s", item.id)
                continue

            started += 1
            try:
                await self._runner.execute_claimed(task, TriggerSource.SCHEDULER, cancel=stop)
            except ExecutionFailedError as exc:
                logger.warning("Workspace scheduler run failed: task=%s err=%s", item.id, exc)
            except Exception:
                logger.exception("Workspace scheduler run crashed: task=%s", item.id)
        return started

    async def _loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            await self.scan_and_run(stop)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
            except TimeoutError:
                continue
