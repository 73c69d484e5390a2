from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar
from uuid import uuid4

import inject

from src.workspace.application.orchestrator import Orchestrator
from src.workspace.application.schedule import compute_next_due_at, default_async_status
from src.workspace.application.text import clip, sanitize_list, sanitize_text
from src.workspace.domain.exceptions import (
    ExecutionCancelledError,
    ExecutionFailedError,
    ExecutionNotPersistedError,
    InvalidTriggerError,
    StorageError,
)
from src.workspace.domain.models import (
    AgentStep,
    AsyncStatus,
    AttemptLog,
    ExecutionPolicy,
    PipelineRequest,
    PipelineResult,
    Run,
    RunStatus,
    Task,
    TriggerSource,
    TriggerType,
    WorkStatus,
)
from src.workspace.domain.repositories import StorageRepository

logger = logging.getLogger(__name__)

SUMMARY_LIMIT = 240
ATTEMPT_SUMMARY_LIMIT = 120
T = TypeVar("T")


class Runner:
    """
    Executes claimed tasks.

    ``claim_work`` is the only way into ``execute_claimed``: the conditional
    status update it performs guarantees a single in-flight execution per task,
    across processes, without any in-process lock.
    """

    def __init__(
        self,
        storage: StorageRepository | None = None,
        orchestrator: Orchestrator | None = None,
    ) -> None:
        self._storage = storage or inject.instance(StorageRepository)
        self._orchestrator = orchestrator or inject.instance(Orchestrator)

    async def claim_work(self, task_id: str, user_id: str) -> tuple[Task, bool]:
        """
        Try to flip the task to ``running``.

        Returns the post-claim snapshot and ``True`` when this caller won, or the
        pre-claim snapshot and ``False`` when another execution holds the task.
        Missing or foreign tasks raise.
        """
        task = await self._storage.get_task(user_id, task_id)
        affected = await self._storage.update_task_if(
            task_id,
            user_id,
            status_not=AsyncStatus.RUNNING,
            values={"async_status": AsyncStatus.RUNNING, "updated_at": datetime.now(UTC)},
        )
        if affected == 0:
            return task, False
        return await self._storage.get_task(user_id, task_id), True

    async def execute_claimed(
        self,
        task: Task,
        trigger_source: TriggerSource | str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> Run:
        """
        Run a claimed task to completion and persist the outcome.

        Raises ``ExecutionFailedError`` when the run ends failed. The run and the
        task are already saved at that point.
        """
        policy = ExecutionPolicy.from_config(task.config, task.group_id)
        started_at = datetime.now(UTC)
        try:
            run = await self._storage.create_run(
                Run(
                    id=uuid4().hex,
                    task_id=task.id,
                    user_id=task.user_id,
                    group_id=task.group_id,
                    trigger_source=TriggerSource(trigger_source),
                    status=RunStatus.RUNNING,
                    started_at=started_at,
                    created_at=started_at,
                    updated_at=started_at,
                )
            )
        except (ValueError, StorageError):
            await self._release_claim(task)
            raise

        attempts, result, error = await self._run_attempts(task, policy, cancel)

        finished_at = datetime.now(UTC)
        trace: dict[str, Any] = {
            "attempts": [item.model_dump(by_alias=True, exclude_none=True) for item in attempts],
            "policy": policy.model_dump(mode="json", by_alias=True),
        }
        run_updates: dict[str, Any] = {"finished_at": finished_at, "updated_at": finished_at}
        task_updates: dict[str, Any] = {"last_run_at": finished_at, "updated_at": finished_at}

        if result is None:
            await self._finalize_failure(
                task, policy, error or "execution failed", finished_at, trace, run_updates, task_updates
            )
        else:
            self._finalize_success(task, result, len(attempts), finished_at, trace, run_updates, task_updates)

        run_updates["trace"] = trace
        run = run.model_copy(update=run_updates)
        task = task.model_copy(update=task_updates)
        await self.persist_execution(run, task)

        if run.status is RunStatus.FAILED:
            raise ExecutionFailedError(run.error_message, run)
        return run

    async def persist_execution(self, run: Run, task: Task) -> None:
        """Save a finalized run with its task. Safe to call again after a failure."""
        try:
            await self._storage.save_execution(run, task)
        except StorageError as exc:
            logger.error("Failed to persist run %s of task %s: %s", run.id, task.id, exc)
            raise ExecutionNotPersistedError(run, task, exc) from exc

    async def _release_claim(self, task: Task) -> None:
        """Hand a claimed task back to the scheduler when no run could be started."""
        released = task.model_copy(
            update={
                "async_status": default_async_status(task.trigger_type),
                "updated_at": datetime.now(UTC),
            }
        )
        try:
            await self._storage.update_task(released)
        except StorageError as exc:
            logger.error("Failed to release claim on task %s: %s", task.id, exc)
            return
        logger.warning("Released claim on task %s without starting a run", task.id)

    async def _run_attempts(
        self,
        task: Task,
        policy: ExecutionPolicy,
        cancel: asyncio.Event | None,
    ) -> tuple[list[AttemptLog], PipelineResult | None, str | None]:
        request = PipelineRequest(
            task_name=task.name,
            task_description=task.description,
            task_kind=task.kind.value,
            input_source=task.input_source,
            report_rule=task.report_rule,
            execution_mode=policy.execution_mode.value,
        )
        attempts: list[AttemptLog] = []
        error: str | None = None
        total = policy.max_retries + 1

        for number in range(1, total + 1):
            started = time.perf_counter()
            try:
                pipeline = asyncio.wait_for(
                    self._orchestrator.run(request), timeout=policy.timeout_seconds
                )
                result = await _until_cancelled(pipeline, cancel)
            except TimeoutError:
                error = f"execution timeout after {policy.timeout_seconds}s"
            except Exception as exc:
                error = sanitize_text(str(exc)) or type(exc).__name__
            else:
                attempts.append(
                    AttemptLog(
                        attempt=number,
                        duration_ms=_elapsed_ms(started),
                        status="completed",
                        summary=clip(result.summary, ATTEMPT_SUMMARY_LIMIT),
                    )
                )
                return attempts, result, None

            attempts.append(
                AttemptLog(attempt=number, duration_ms=_elapsed_ms(started), status="failed", error=error)
            )
            logger.warning("Attempt %d/%d of task %s failed: %s", number, total, task.id, error)
            if number == total or (cancel is not None and cancel.is_set()):
                break
            if not await _wait_retry(policy.retry_delay_seconds, cancel):
                break

        return attempts, None, error

    def _finalize_success(
        self,
        task: Task,
        result: PipelineResult,
        attempt_count: int,
        finished_at: datetime,
        trace: dict[str, Any],
        run_updates: dict[str, Any],
        task_updates: dict[str, Any],
    ) -> None:
        trace["steps"] = [step.model_dump(by_alias=True) for step in _sanitize_steps(result.steps)]
        trace["nextActions"] = sanitize_list(result.next_actions)
        trace["evidence"] = sanitize_list(result.evidence)

        summary = clip(result.summary, SUMMARY_LIMIT)
        if attempt_count > 1:
            summary = clip(f"Retried {attempt_count - 1} times before succeeding. {summary}", SUMMARY_LIMIT)
        run_updates.update(
            status=RunStatus.COMPLETED,
            summary=summary,
            final_answer=sanitize_text(result.final_answer),
            confidence=result.confidence,
        )
        task_updates.update(result_summary=summary, status=WorkStatus.DONE)

        try:
            next_due_at = compute_next_due_at(
                task.trigger_type, task.trigger_value, task.timezone, finished_at
            )
        except InvalidTriggerError as exc:
            run_updates.update(status=RunStatus.FAILED, error_message=sanitize_text(str(exc)))
            task_updates.update(async_status=AsyncStatus.FAILED, next_due_at=None)
            return

        if task.trigger_type is TriggerType.ONCE:
            next_due_at = None
        task_updates.update(
            next_due_at=next_due_at,
            async_status=AsyncStatus.COMPLETED if next_due_at is None else AsyncStatus.SCHEDULED,
        )

    async def _finalize_failure(
        self,
        task: Task,
        policy: ExecutionPolicy,
        error: str,
        finished_at: datetime,
        trace: dict[str, Any],
        run_updates: dict[str, Any],
        task_updates: dict[str, Any],
    ) -> None:
        error_message = sanitize_text(error)
        summary = clip(f"Execution failed: {clip(error_message, ATTEMPT_SUMMARY_LIMIT)}", SUMMARY_LIMIT)

        retry_at, decision = await self._queue_failure_retry(task, policy, finished_at)
        trace["retryQueue"] = decision
        if retry_at is not None:
            summary = clip(f"{summary} (queued for retry)", SUMMARY_LIMIT)
            task_updates.update(async_status=AsyncStatus.SCHEDULED, next_due_at=retry_at)
        else:
            task_updates.update(async_status=AsyncStatus.FAILED, next_due_at=None)

        run_updates.update(status=RunStatus.FAILED, error_message=error_message, summary=summary)
        task_updates.update(status=WorkStatus.TODO, result_summary=summary)

    async def _queue_failure_retry(
        self,
        task: Task,
        policy: ExecutionPolicy,
        now: datetime,
    ) -> tuple[datetime | None, dict[str, Any]]:
        """Decide whether an exhausted task gets another cycle later."""
        if not policy.queue_retry_on_failure or task.trigger_type is TriggerType.MANUAL:
            return None, {"queued": False, "reason": "queue disabled or manual trigger"}

        window_start = now - timedelta(minutes=policy.retry_window_minutes)
        try:
            previous_failures = await self._storage.count_failed_runs(task.id, window_start)
        except StorageError as exc:
            logger.error("Failed to count failed runs of task %s: %s", task.id, exc)
            return None, {
                "queued": False,
                "reason": "count failures failed",
                "error": sanitize_text(str(exc)),
            }

        current_cycle = previous_failures + 1
        budget = {
            "currentCycle": current_cycle,
            "maxFailureCycles": policy.max_failure_cycles,
            "retryWindowMinutes": policy.retry_window_minutes,
        }
        if current_cycle > policy.max_failure_cycles:
            logger.info("Task %s exhausted %d failure cycles", task.id, policy.max_failure_cycles)
            return None, {"queued": False, "reason": "failure cycles exceeded", **budget}

        delay = max(policy.retry_delay_seconds, 1)
        retry_at = now + timedelta(seconds=delay)
        logger.info("Task %s queued for retry at %s (cycle %d)", task.id, retry_at.isoformat(), current_cycle)
        return retry_at, {
            "queued": True,
            "retryAt": retry_at.isoformat(),
            "retryDelaySeconds": delay,
            **budget,
        }


async def _until_cancelled(work: Awaitable[T], cancel: asyncio.Event | None) -> T:
    if cancel is None:
        return await work
    if cancel.is_set():
        if asyncio.iscoroutine(work):
            work.close()
        raise ExecutionCancelledError()

    work_task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({work_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work_task.cancel()
        raise
    finally:
        waiter.cancel()

    if work_task.done():
        return work_task.result()
    work_task.cancel()
    await asyncio.wait({work_task})
    raise ExecutionCancelledError()


async def _wait_retry(delay_seconds: int, cancel: asyncio.Event | None) -> bool:
    """Sleep between attempts. Returns ``False`` when cancelled during the wait."""
    if delay_seconds <= 0:
        return True
    if cancel is None:
        await asyncio.sleep(delay_seconds)
        return True
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay_seconds)
    except TimeoutError:
        return True
    return False


def _sanitize_steps(steps: list[AgentStep]) -> list[AgentStep]:
    cleaned = []
    for step in steps:
        agent = sanitize_text(step.agent)
        purpose = sanitize_text(step.purpose)
        output = sanitize_text(step.output)
        if agent or purpose or output:
            cleaned.append(AgentStep(agent=agent, purpose=purpose, output=output, duration_ms=step.duration_ms))
    return cleaned


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
