from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

import src.workspace.application.runner as runner_module
from src.workspace.application.runner import Runner
from src.workspace.domain.exceptions import (
    ExecutionFailedError,
    ExecutionNotPersistedError,
    StorageError,
    TaskAccessDeniedError,
    TaskNotFoundError,
)
from src.workspace.domain.models import (
    AsyncStatus,
    ExecutionPolicy,
    PipelineResult,
    Run,
    RunStatus,
    TriggerSource,
    TriggerType,
    WorkStatus,
)


async def _claim(runner: Runner, task_id: str = "task-1", user_id: str = "u1"):
    task, claimed = await runner.claim_work(task_id, user_id)
    assert claimed
    return task


@pytest.mark.asyncio
async def test_claim_flips_status_once(runner, storage, task_factory) -> None:
    task_factory(async_status=AsyncStatus.SCHEDULED)

    first, first_claimed = await runner.claim_work("task-1", "u1")
    second, second_claimed = await runner.claim_work("task-1", "u1")

    assert first_claimed is True
    assert first.async_status is AsyncStatus.RUNNING
    assert second_claimed is False
    assert storage.tasks["task-1"].async_status is AsyncStatus.RUNNING


@pytest.mark.asyncio
async def test_claim_rejects_missing_and_foreign_tasks(runner, task_factory) -> None:
    task_factory(user_id="owner")

    with pytest.raises(TaskNotFoundError):
        await runner.claim_work("nope", "owner")
    with pytest.raises(TaskAccessDeniedError):
        await runner.claim_work("task-1", "intruder")


@pytest.mark.asyncio
async def test_daily_task_success_is_rescheduled(runner, storage, task_factory) -> None:
    task_factory(trigger_type=TriggerType.DAILY, trigger_value="09:00", async_status=AsyncStatus.SCHEDULED)
    task = await _claim(runner)

    run = await runner.execute_claimed(task, TriggerSource.SCHEDULER)

    stored = storage.tasks["task-1"]
    assert run.status is RunStatus.COMPLETED
    assert run.trigger_source is TriggerSource.SCHEDULER
    assert run.summary == "All good"
    assert run.final_answer == "Done"
    assert run.confidence == pytest.approx(0.8)
    assert stored.async_status is AsyncStatus.SCHEDULED
    assert stored.status is WorkStatus.DONE
    assert stored.next_due_at > datetime.now(UTC)
    assert stored.last_run_at == run.finished_at
    assert stored.result_summary == "All good"
    assert storage.runs[run.id].status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_success_trace_layout(runner, task_factory) -> None:
    task_factory()
    run = await runner.execute_claimed(await _claim(runner), TriggerSource.MANUAL)

    assert [attempt["status"] for attempt in run.trace["attempts"]] == ["completed"]
    assert "durationMs" in run.trace["attempts"][0]
    assert run.trace["policy"]["maxRetries"] == 1
    assert run.trace["steps"][0]["agent"] == "Planner"
    assert run.trace["nextActions"] == ["ship it"]
    assert run.trace["evidence"] == ["build log"]
    assert "retryQueue" not in run.trace


@pytest.mark.asyncio
async def test_once_task_completes_without_next_due(runner, storage, task_factory) -> None:
    task_factory(
        trigger_type=TriggerType.ONCE,
        trigger_value="2020-01-01 08:00",
        async_status=AsyncStatus.SCHEDULED,
    )

    await runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER)

    stored = storage.tasks["task-1"]
    assert stored.async_status is AsyncStatus.COMPLETED
    assert stored.next_due_at is None


@pytest.mark.asyncio
async def test_manual_task_completes(runner, storage, task_factory) -> None:
    task_factory()

    await runner.execute_claimed(await _claim(runner), "manual")

    assert storage.tasks["task-1"].async_status is AsyncStatus.COMPLETED


@pytest.mark.asyncio
async def test_retries_exhausted_marks_run_failed(runner, storage, orchestrator, task_factory) -> None:
    task_factory(config='{"maxRetries": 2, "retryDelaySeconds": 0}')
    orchestrator.error = RuntimeError("boom")

    with pytest.raises(ExecutionFailedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.MANUAL)

    run = exc_info.value.run
    stored = storage.tasks["task-1"]
    assert len(orchestrator.calls) == 3
    assert [a["status"] for a in run.trace["attempts"]] == ["failed", "failed", "failed"]
    assert run.status is RunStatus.FAILED
    assert run.error_message == "boom"
    assert run.summary == "Execution failed: boom"
    assert run.trace["retryQueue"] == {"queued": False, "reason": "queue disabled or manual trigger"}
    assert stored.async_status is AsyncStatus.FAILED
    assert stored.status is WorkStatus.TODO
    assert stored.next_due_at is None
    assert storage.runs[run.id].status is RunStatus.FAILED


@pytest.mark.asyncio
async def test_success_after_retry_mentions_it(runner, orchestrator, task_factory) -> None:
    task_factory(config='{"maxRetries": 1, "retryDelaySeconds": 0}')
    orchestrator.outcomes = [RuntimeError("flaky"), PipelineResult(summary="Fine", final_answer="ok")]

    run = await runner.execute_claimed(await _claim(runner), TriggerSource.MANUAL)

    assert run.status is RunStatus.COMPLETED
    assert run.summary == "Retried 1 times before succeeding. Fine"
    assert [a["status"] for a in run.trace["attempts"]] == ["failed", "completed"]


@pytest.mark.asyncio
async def test_attempt_timeout_is_reported(monkeypatch, runner, orchestrator, task_factory) -> None:
    policy = ExecutionPolicy(max_retries=0, retry_delay_seconds=0).model_copy(update={"timeout_seconds": 0.05})
    monkeypatch.setattr(
        runner_module, "ExecutionPolicy", SimpleNamespace(from_config=lambda raw, group_id=None: policy)
    )
    orchestrator.delay = 1.0
    task_factory()

    with pytest.raises(ExecutionFailedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.MANUAL)

    assert exc_info.value.run.error_message.startswith("execution timeout after")


@pytest.mark.asyncio
async def test_scheduled_failure_is_queued_for_retry(runner, storage, orchestrator, task_factory) -> None:
    task_factory(
        trigger_type=TriggerType.DAILY,
        trigger_value="09:00",
        async_status=AsyncStatus.SCHEDULED,
        config='{"maxRetries": 0, "retryDelaySeconds": 0}',
    )
    orchestrator.error = RuntimeError("upstream down")

    with pytest.raises(ExecutionFailedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER)

    run = exc_info.value.run
    stored = storage.tasks["task-1"]
    decision = run.trace["retryQueue"]
    assert decision["queued"] is True
    assert decision["currentCycle"] == 1
    assert decision["retryDelaySeconds"] == 1
    assert run.summary.endswith("(queued for retry)")
    assert stored.async_status is AsyncStatus.SCHEDULED
    assert stored.next_due_at == run.finished_at + timedelta(seconds=1)


@pytest.mark.asyncio
async def test_failure_cycles_cap_stops_requeue(runner, storage, orchestrator, task_factory) -> None:
    task_factory(
        trigger_type=TriggerType.INTERVAL_HOURS,
        trigger_value="4",
        async_status=AsyncStatus.SCHEDULED,
        config='{"maxRetries": 0, "retryDelaySeconds": 0, "maxFailureCycles": 1}',
    )
    earlier = datetime.now(UTC) - timedelta(minutes=5)
    storage.runs["old"] = Run(
        id="old",
        task_id="task-1",
        user_id="u1",
        trigger_source=TriggerSource.SCHEDULER,
        status=RunStatus.FAILED,
        created_at=earlier,
        updated_at=earlier,
    )
    orchestrator.error = RuntimeError("still down")

    with pytest.raises(ExecutionFailedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER)

    decision = exc_info.value.run.trace["retryQueue"]
    assert decision["queued"] is False
    assert decision["reason"] == "failure cycles exceeded"
    assert decision["currentCycle"] == 2
    assert decision["maxFailureCycles"] == 1
    assert storage.tasks["task-1"].async_status is AsyncStatus.FAILED
    assert storage.tasks["task-1"].next_due_at is None


@pytest.mark.asyncio
async def test_failure_count_error_is_recorded(runner, storage, orchestrator, task_factory) -> None:
    task_factory(
        trigger_type=TriggerType.DAILY,
        trigger_value="09:00",
        async_status=AsyncStatus.SCHEDULED,
        config='{"maxRetries": 0}',
    )
    storage.fail_count = True
    orchestrator.error = RuntimeError("nope")

    with pytest.raises(ExecutionFailedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER)

    assert exc_info.value.run.trace["retryQueue"]["reason"] == "count failures failed"
    assert storage.tasks["task-1"].async_status is AsyncStatus.FAILED


@pytest.mark.asyncio
async def test_invalid_stored_trigger_fails_successful_run(runner, storage, task_factory) -> None:
    task_factory(trigger_type=TriggerType.DAILY, trigger_value="99:99", async_status=AsyncStatus.SCHEDULED)

    with pytest.raises(ExecutionFailedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER)

    assert "invalid daily hour" in exc_info.value.run.error_message
    assert storage.tasks["task-1"].async_status is AsyncStatus.FAILED
    assert storage.tasks["task-1"].next_due_at is None


@pytest.mark.asyncio
async def test_cancel_before_start_fails_fast(runner, orchestrator, task_factory) -> None:
    task_factory(config='{"maxRetries": 3, "retryDelaySeconds": 0}')
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(ExecutionFailedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER, cancel=cancel)

    run = exc_info.value.run
    assert run.error_message == "execution cancelled"
    assert len(run.trace["attempts"]) == 1
    assert orchestrator.calls == []


@pytest.mark.asyncio
async def test_cancel_interrupts_attempt(runner, orchestrator, task_factory) -> None:
    task_factory(config='{"maxRetries": 3, "retryDelaySeconds": 0}')
    orchestrator.delay = 5.0
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    with pytest.raises(ExecutionFailedError) as exc_info:
        await asyncio.wait_for(
            runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER, cancel=cancel),
            timeout=2,
        )

    assert exc_info.value.run.error_message == "execution cancelled"
    assert len(orchestrator.calls) == 1


@pytest.mark.asyncio
async def test_cancel_interrupts_retry_wait(runner, orchestrator, task_factory) -> None:
    task_factory(config='{"maxRetries": 3, "retryDelaySeconds": 30}')
    orchestrator.error = RuntimeError("flaky")
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    with pytest.raises(ExecutionFailedError):
        await asyncio.wait_for(
            runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER, cancel=cancel),
            timeout=2,
        )

    assert len(orchestrator.calls) == 1


@pytest.mark.asyncio
async def test_unpersisted_execution_can_be_saved_again(runner, storage, task_factory) -> None:
    task_factory()
    storage.fail_save = True

    with pytest.raises(ExecutionNotPersistedError) as exc_info:
        await runner.execute_claimed(await _claim(runner), TriggerSource.MANUAL)

    error = exc_info.value
    assert error.run.status is RunStatus.COMPLETED
    assert storage.tasks["task-1"].async_status is AsyncStatus.RUNNING

    storage.fail_save = False
    await runner.persist_execution(error.run, error.task)

    assert storage.tasks["task-1"].async_status is AsyncStatus.COMPLETED
    assert storage.runs[error.run.id].status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_trigger_source_releases_claim(runner, storage, orchestrator, task_factory) -> None:
    task_factory()

    with pytest.raises(ValueError):
        await runner.execute_claimed(await _claim(runner), "cron")

    assert storage.tasks["task-1"].async_status is AsyncStatus.IDLE
    assert storage.runs == {}
    assert orchestrator.calls == []


@pytest.mark.asyncio
async def test_run_creation_failure_hands_task_back_to_scheduler(runner, storage, orchestrator, task_factory) -> None:
    due = datetime.now(UTC) - timedelta(minutes=1)
    task_factory(
        trigger_type=TriggerType.DAILY,
        trigger_value="09:00",
        async_status=AsyncStatus.SCHEDULED,
        next_due_at=due,
    )
    storage.fail_create_run = True

    with pytest.raises(StorageError):
        await runner.execute_claimed(await _claim(runner), TriggerSource.SCHEDULER)

    stored = storage.tasks["task-1"]
    assert stored.async_status is AsyncStatus.SCHEDULED
    assert stored.next_due_at == due
    assert [task.id for task in await storage.list_due_tasks(datetime.now(UTC), 10)] == ["task-1"]
    assert orchestrator.calls == []
