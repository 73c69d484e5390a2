from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.workspace.domain.models.run import Run
    from src.workspace.domain.models.task import Task


class TaskNotFoundError(Exception):
    """Raised when a task identifier does not exist in the task backend."""
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id '{task_id}' was not found.")
        self.task_id = task_id


class TaskAccessDeniedError(Exception):
    """Raised when a user attempts to access a task they do not own."""

    def __init__(self, task_id: str, user_id: str) -> None:
        super().__init__(f"User '{user_id}' has no access to task '{task_id}'.")
        self.task_id = task_id
        self.user_id = user_id


class InvalidTriggerError(ValueError):
    """Raised when a trigger type, trigger value or timezone cannot be scheduled."""


class PipelineError(Exception):
    """Raised when the agent pipeline cannot produce any output at all."""


class LLMClientError(Exception):
    """Raised when the chat completion backend cannot be reached or answers badly."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(Exception):
    """Raised when the persistence layer rejects a read or write."""


class TaskBusyError(Exception):
    """Raised when a task is mutated while an execution holds its claim."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' is running.")
        self.task_id = task_id


class ExecutionFailedError(Exception):
    """
    Raised when an execution finished with a failed run.
    The run and its task were persisted before this is raised.
    """

    def __init__(self, message: str, run: Run) -> None:
        super().__init__(message)
        self.run = run


class ExecutionNotPersistedError(Exception):
    """Raised when the finalized run and task could not be saved together."""

    def __init__(self, run: Run, task: Task, cause: Exception) -> None:
        super().__init__(f"Run '{run.id}' of task '{task.id}' was not persisted: {cause}")
        self.run = run
        self.task = task


class BatchRequestError(ValueError):
    """Raised when a batch run request is empty or too large."""


class ExecutionCancelledError(Exception):
    """Raised inside the attempt loop when the caller's cancel signal fires."""

    def __init__(self) -> None:
        super().__init__("execution cancelled")
