from enum import Enum


class AsyncStatus(str, Enum):
    """Scheduling state of a task as seen by the scheduler and runner."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkStatus(str, Enum):
    """User-facing progress of a task."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
