from __future__ import annotations

from fastapi import APIRouter, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.workspace.application.batch import BatchRunner
from src.workspace.application.runner import Runner
from src.workspace.application.services import TaskService
from src.workspace.domain.exceptions import (
    BatchRequestError,
    ExecutionFailedError,
    ExecutionNotPersistedError,
    InvalidTriggerError,
    TaskAccessDeniedError,
    TaskBusyError,
    TaskNotFoundError,
)
from src.workspace.domain.models import (
    BatchRunReport,
    Run,
    Task,
    TaskDraft,
    TaskUpdate,
    TriggerSource,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])

# Instantiate services once (simple DI)
_task_service = TaskService()
_runner = Runner()
_batch_runner = BatchRunner()


class RunNowResponse(BaseModel):
    task: Task = Field(description="Task state after the run.")
    run: Run = Field(description="The finalized run.")


class BatchRunRequest(BaseModel):
    ids: list[str] = Field(default_factory=list, description="Task ids to run.")
    max_parallel: int | None = Field(default=None, description="Concurrent executions, 1 to 10.")


def _raise_for_lookup(exc: Exception) -> None:
    if isinstance(exc, TaskNotFoundError):
        raise HTTPException(status_code=404, detail="task not found") from exc
    if isinstance(exc, TaskAccessDeniedError):
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    raise exc


@router.post("", response_model=Task, status_code=201, summary="Create a task")
async def create_task(draft: TaskDraft, x_user_id: str = Header(default="anonymous")):
    try:
        return await _task_service.create_task(x_user_id, draft)
    except InvalidTriggerError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/batch-run", response_model=BatchRunReport, summary="Run several tasks now")
async def batch_run(body: BatchRunRequest, x_user_id: str = Header(default="anonymous")):
    try:
        return await _batch_runner.run(x_user_id, body.ids, body.max_parallel)
    except BatchRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/{task_id}", response_model=Task, summary="Fetch a task")
async def get_task(task_id: str, x_user_id: str = Header(default="anonymous")):
    try:
        return await _task_service.get_task(x_user_id, task_id)
    except (TaskNotFoundError, TaskAccessDeniedError) as exc:
        _raise_for_lookup(exc)


@router.patch("/{task_id}", response_model=Task, summary="Edit a task")
async def update_task(task_id: str, changes: TaskUpdate, x_user_id: str = Header(default="anonymous")):
    try:
        return await _task_service.update_task(x_user_id, task_id, changes)
    except (TaskNotFoundError, TaskAccessDeniedError) as exc:
        _raise_for_lookup(exc)
    except InvalidTriggerError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TaskBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/{task_id}/runs", response_model=list[Run], summary="List recent runs")
async def list_runs(
    task_id: str,
    limit: int = Query(20, ge=1, le=100),
    x_user_id: str = Header(default="anonymous"),
):
    try:
        return await _task_service.list_runs(x_user_id, task_id, limit)
    except (TaskNotFoundError, TaskAccessDeniedError) as exc:
        _raise_for_lookup(exc)


@router.post("/{task_id}/run", response_model=RunNowResponse, summary="Run a task now")
async def run_now(task_id: str, x_user_id: str = Header(default="anonymous")):
    """
    Claims the task and runs the agent pipeline in the request.
    A failed run is still persisted and returned with a 500 status.
    """
    try:
        task, claimed = await _runner.claim_work(task_id, x_user_id)
    except (TaskNotFoundError, TaskAccessDeniedError) as exc:
        _raise_for_lookup(exc)
    if not claimed:
        raise HTTPException(status_code=409, detail="task is running")

    try:
        run = await _runner.execute_claimed(task, TriggerSource.MANUAL)
    except ExecutionFailedError as exc:
        latest = await _task_service.get_task(x_user_id, task_id)
        return JSONResponse(
            status_code=500,
            content={
                "error": str(exc),
                "data": {
                    "task": latest.model_dump(mode="json"),
                    "run": exc.run.model_dump(mode="json"),
                },
            },
        )
    except ExecutionNotPersistedError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    latest = await _task_service.get_task(x_user_id, task_id)
    return RunNowResponse(task=latest, run=run)
