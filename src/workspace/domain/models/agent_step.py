from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AgentStep(BaseModel):
    """Output of one pipeline stage, embedded in a run trace."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    agent: str = Field(description="Stage name, e.g. Planner.")
    purpose: str = Field(default="", description="What the stage is for.")
    output: str = Field(default="", description="Text produced by the stage.")
    duration_ms: int = Field(default=0, description="Wall-clock cost of the stage call.")


class PipelineRequest(BaseModel):
    task_name: str = ""
    task_description: str = ""
    task_kind: str = ""
    input_source: str = ""
    report_rule: str = ""
    execution_mode: str = "serial"


class PipelineResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    summary: str = ""
    final_answer: str = ""
    confidence: float = 0.0
    next_actions: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    steps: list[AgentStep] = Field(default_factory=list)


class AttemptLog(BaseModel):
    """One attempt of the runner's retry loop as recorded in the trace."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    attempt: int
    duration_ms: int
    status: str
    error: str | None = None
    summary: str | None = None
