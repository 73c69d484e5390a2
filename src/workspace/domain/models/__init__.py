from src.workspace.domain.models.agent_step import (
    AgentStep,
    AttemptLog,
    PipelineRequest,
    PipelineResult,
)
from src.workspace.domain.models.batch import BatchItemStatus, BatchRunItem, BatchRunReport
from src.workspace.domain.models.chat import ChatChoice, ChatCompletion, ChatMessage
from src.workspace.domain.models.execution_policy import ExecutionMode, ExecutionPolicy
from src.workspace.domain.models.payloads import TaskDraft, TaskUpdate
from src.workspace.domain.models.run import Run, RunStatus, TriggerSource
from src.workspace.domain.models.task import Task
from src.workspace.domain.models.task_state import AsyncStatus, WorkStatus
from src.workspace.domain.models.task_type import TaskKind
from src.workspace.domain.models.trigger import (
    DailyTrigger,
    IntervalTrigger,
    ManualTrigger,
    OnceTrigger,
    Trigger,
    TriggerType,
)

__all__ = [
    "AgentStep",
    "AttemptLog",
    "PipelineRequest",
    "PipelineResult",
    "BatchItemStatus",
    "BatchRunItem",
    "BatchRunReport",
    "TaskDraft",
    "TaskUpdate",
    "ChatChoice",
    "ChatCompletion",
    "ChatMessage",
    "ExecutionMode",
    "ExecutionPolicy",
    "Run",
    "RunStatus",
    "TriggerSource",
    "Task",
    "AsyncStatus",
    "WorkStatus",
    "TaskKind",
    "Trigger",
    "TriggerType",
    "ManualTrigger",
    "OnceTrigger",
    "DailyTrigger",
    "IntervalTrigger",
]
