from __future__ import annotations

import asyncio
import importlib
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.workspace.application.batch import BatchRunner
from src.workspace.application.orchestrator import Orchestrator
from src.workspace.application.runner import Runner
from src.workspace.application.services import TaskService
from src.workspace.domain.exceptions import StorageError, TaskAccessDeniedError, TaskNotFoundError
from src.workspace.domain.models import (
    AgentStep,
    AsyncStatus,
    PipelineRequest,
    PipelineResult,
    Run,
    RunStatus,
    Task,
    TriggerType,
)
from src.workspace.domain.repositories import StorageRepository


class StubStorageRepository(StorageRepository):
    """In-memory storage. Conditional updates are atomic because nothing awaits in between."""

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.runs: dict[str, Run] = {}
        self.broken_ids: set[str] = set()
        self.fail_list = False
        self.fail_count = False
        self.fail_save = False
        self.fail_create_run = False
        self.save_calls = 0

    async def create_task(self, task: Task) -> Task:
        self.tasks[task.id] = task
        return task

    async def update_task(self, task: Task) -> Task:
        if task.id not in self.tasks:
            raise TaskNotFoundError(task.id)
        self.tasks[task.id] = task
        return task

    async def get_task(self, user_id: str, task_id: str) -> Task:
        if task_id in self.broken_ids:
            raise StorageError(f"cannot read {task_id}")
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.user_id != user_id:
            raise TaskAccessDeniedError(task_id, user_id)
        return task

    async def update_task_if(
        self,
        task_id: str,
        user_id: str,
        *,
        status_not: AsyncStatus,
        values: dict[str, Any],
    ) -> int:
        task = self.tasks.get(task_id)
        if task is None or task.user_id != user_id or task.async_status is status_not:
            return 0
        self.tasks[task_id] = task.model_copy(update=values)
        return 1

    async def list_due_tasks(self, now: datetime, limit: int) -> list[Task]:
        if self.fail_list:
            raise StorageError("due query failed")
        due = [
            task
            for task in self.tasks.values()
            if task.trigger_type is not TriggerType.MANUAL
            and task.next_due_at is not None
            and task.next_due_at <= now
            and task.async_status in (AsyncStatus.SCHEDULED, AsyncStatus.IDLE)
        ]
        due.sort(key=lambda task: task.next_due_at)
        return due[:limit]

    async def create_run(self, run: Run) -> Run:
        if self.fail_create_run:
            raise StorageError("runs table unavailable")
        self.runs[run.id] = run
        return run

    async def count_failed_runs(self, task_id: str, since: datetime) -> int:
        if self.fail_count:
            raise StorageError("count failed")
        return sum(
            1
            for run in self.runs.values()
            if run.task_id == task_id and run.status is RunStatus.FAILED and run.created_at >= since
        )

    async def list_runs(self, user_id: str, task_id: str, limit: int = 20) -> list[Run]:
        runs = [run for run in self.runs.values() if run.task_id == task_id and run.user_id == user_id]
        runs.sort(key=lambda run: run.created_at, reverse=True)
        return runs[:limit]

    async def save_execution(self, run: Run, task: Task) -> None:
        self.save_calls += 1
        if self.fail_save:
            raise StorageError("disk full")
        self.runs[run.id] = run
        self.tasks[task.id] = task


def make_result(summary: str = "All good", confidence: float = 0.8) -> PipelineResult:
    return PipelineResult(
        summary=summary,
        final_answer="Done",
        confidence=confidence,
        next_actions=["ship it"],
        evidence=["build log"],
        steps=[AgentStep(agent="Planner", purpose="plan", output="the plan", duration_ms=5)],
    )


class FakeOrchestrator:
    """Scripted pipeline: pops ``outcomes`` in order, then succeeds."""

    def __init__(
        self,
        outcomes: list[PipelineResult | Exception] | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
        fail_names: tuple[str, ...] = (),
    ) -> None:
        self.outcomes = list(outcomes or [])
        self.error = error
        self.delay = delay
        self.fail_names = set(fail_names)
        self.calls: list[PipelineRequest] = []
        self.active = 0
        self.max_active = 0

    async def run(self, request: PipelineRequest) -> PipelineResult:
        self.calls.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if self.error is not None:
            raise self.error
        if request.task_name in self.fail_names:
            raise RuntimeError(f"{request.task_name} blew up")
        outcome = self.outcomes.pop(0) if self.outcomes else make_result()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def seed_task(storage: StubStorageRepository, task_id: str = "task-1", **overrides: Any) -> Task:
    now = datetime.now(UTC)
    values: dict[str, Any] = {
        "id": task_id,
        "user_id": "u1",
        "name": "Weekly report",
        "description": "Summarize the week",
        "trigger_type": TriggerType.MANUAL,
        "trigger_value": "",
        "async_status": AsyncStatus.IDLE,
        "config": '{"retryDelaySeconds": 0}',
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    task = Task(**values)
    storage.tasks[task.id] = task
    return task


@pytest.fixture
def storage() -> StubStorageRepository:
    return StubStorageRepository()


@pytest.fixture
def orchestrator() -> FakeOrchestrator:
    return FakeOrchestrator()


@pytest.fixture
def runner(storage: StubStorageRepository, orchestrator: FakeOrchestrator) -> Runner:
    return Runner(storage, orchestrator)


def _patch_inject_instance(
    monkeypatch: pytest.MonkeyPatch,
    storage_stub: StubStorageRepository,
    orchestrator_stub: FakeOrchestrator,
) -> Callable[[object], object]:
    """Patch `inject.instance` to hand out services built on the stubs."""
    import inject

    runner = Runner(storage_stub, orchestrator_stub)

    def fake_instance(interface: object) -> object:
        if interface is StorageRepository:
            return storage_stub
        if interface is Orchestrator:
            return orchestrator_stub
        if interface is Runner:
            return runner
        if interface is TaskService:
            return TaskService(storage_stub)
        if interface is BatchRunner:
            return BatchRunner(runner)
        raise RuntimeError(f"Unexpected dependency request: {interface}")

    monkeypatch.setattr(inject, "instance", fake_instance)
    return fake_instance


@pytest.fixture
def api_client(monkeypatch: pytest.MonkeyPatch):
    """FastAPI test client with routes wired to the in-memory stubs."""
    storage_stub = StubStorageRepository()
    orchestrator_stub = FakeOrchestrator()
    _patch_inject_instance(monkeypatch, storage_stub, orchestrator_stub)

    # Reload so module-level singletons pick up the patched injector.
    routes_module = importlib.reload(importlib.import_module("src.workspace.presentation.routes"))

    app = FastAPI()
    app.include_router(routes_module.router)
    client = TestClient(app)
    return client, storage_stub, orchestrator_stub


@pytest.fixture
def task_factory(storage: StubStorageRepository) -> Callable[..., Task]:
    """Seed tasks straight into the stub storage."""

    def _create(task_id: str = "task-1", **overrides: Any) -> Task:
        return seed_task(storage, task_id, **overrides)

    return _create
