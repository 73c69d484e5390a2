"""
Four-stage agent pipeline: Planner, Researcher + Critic, Synthesizer.

Each stage is one system + user exchange with the chat backend. Model call
failures degrade into placeholder text so that a single outage does not fail
the whole pipeline; only a completion without choices is a hard error.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Any, NamedTuple

from src.workspace.application.text import clip, sanitize_list, sanitize_text
from src.workspace.domain.exceptions import LLMClientError, PipelineError
from src.workspace.domain.models.agent_step import AgentStep, PipelineRequest, PipelineResult
from src.workspace.domain.models.execution_policy import ExecutionMode
from src.workspace.domain.repositories import ChatCompletionRepository

logger = logging.getLogger(__name__)

PLANNER_PROMPT = (
    "You are the Planner agent. Break the task into an executable plan and "
    "state milestones, timing and acceptance criteria."
)
RESEARCHER_PROMPT = (
    "You are the Researcher agent. Add the key information, evidence and "
    "dependencies the plan relies on, and say how each can be verified."
)
CRITIC_PROMPT = (
    "You are the Critic agent. Find gaps, risks and conflicts, and propose "
    "concrete fixes."
)
SYNTHESIZER_PROMPT = (
    "You are the Synthesizer agent. Merge the other agents' views and reply "
    "with exactly one JSON object, without code fences."
)

FALLBACK_CONFIDENCE = 0.72
SUMMARY_LIMIT = 180
_SYNTHESIS_TEMPLATE = (
    '{"summary":"","finalAnswer":"","confidence":0.0,"nextActions":[],"evidence":[]}'
)


class StageOutput(NamedTuple):
    output: str
    duration_ms: int


class Orchestrator:
    def __init__(
        self,
        client: ChatCompletionRepository | None = None,
        *,
        temperature: float = 0.2,
        call_timeout_seconds: float = 90.0,
    ) -> None:
        self._client = client
        self._temperature = temperature
        self._call_timeout = call_timeout_seconds

    @property
    def degraded(self) -> bool:
        return self._client is None

    async def run(self, request: PipelineRequest) -> PipelineResult:
        """Drive one task description through all four stages."""
        planner_input = (
            f"Task name: {request.task_name}\n"
            f"Task kind: {request.task_kind}\n"
            f"Task description: {request.task_description}\n"
            f"Input source: {request.input_source}\n"
            f"Report rule: {request.report_rule}\n"
            "Produce an execution plan with milestones and acceptance criteria."
        )
        plan = await self._ask(PLANNER_PROMPT, planner_input)
        steps = [AgentStep(agent="Planner", purpose="Task breakdown and execution plan",
                           output=plan.output, duration_ms=plan.duration_ms)]

        if request.execution_mode.strip().lower() == ExecutionMode.PARALLEL.value:
            research, critique = await self._run_parallel(plan.output)
        else:
            research, critique = await self._run_serial(plan.output)
        steps.append(AgentStep(agent="Researcher", purpose="Supporting evidence and dependencies",
                               output=research.output, duration_ms=research.duration_ms))
        steps.append(AgentStep(agent="Critic", purpose="Quality review and counter-examples",
                               output=critique.output, duration_ms=critique.duration_ms))

        synthesis_input = (
            f"Task:\n{planner_input}\n\n"
            f"Planner:\n{plan.output}\n\n"
            f"Researcher:\n{research.output}\n\n"
            f"Critic:\n{critique.output}\n\n"
            f"Reply with JSON: {_SYNTHESIS_TEMPLATE}"
        )
        synthesis = await self._ask(SYNTHESIZER_PROMPT, synthesis_input)
        steps.append(AgentStep(agent="Synthesizer", purpose="Consolidated decision and result",
                               output=synthesis.output, duration_ms=synthesis.duration_ms))

        result = parse_synthesis(synthesis.output)
        if not result.final_answer:
            result.final_answer = synthesis.output
        if not result.summary:
            result.summary = clip(result.final_answer, SUMMARY_LIMIT)
        if result.confidence <= 0:
            result.confidence = FALLBACK_CONFIDENCE
        result.confidence = min(result.confidence, 1.0)
        result.steps = steps
        return result

    async def _run_serial(self, plan: str) -> tuple[StageOutput, StageOutput]:
        research = await self._ask(RESEARCHER_PROMPT, _researcher_input(plan))
        critic_input = (
            f"Plan:\n{plan}\n\nResearch:\n{research.output}\n\n"
            "Point out gaps, conflicts and omissions, and propose fixes."
        )
        critique = await self._ask(CRITIC_PROMPT, critic_input)
        return research, critique

    async def _run_parallel(self, plan: str) -> tuple[StageOutput, StageOutput]:
        # The critic only sees the plan here. Both calls finish before any error surfaces.
        critic_input = (
            f"Plan:\n{plan}\n\n"
            "Review it for counter-examples and risks: point out gaps, conflicts "
            "and omissions, and propose fixes."
        )
        outcomes = await asyncio.gather(
            self._ask(RESEARCHER_PROMPT, _researcher_input(plan)),
            self._ask(CRITIC_PROMPT, critic_input),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        research, critique = outcomes
        return research, critique

    async def _ask(self, system_prompt: str, user_prompt: str) -> StageOutput:
        started = time.perf_counter()
        if self._client is None:
            text = (
                "No language model is configured; returning degraded output.\n"
                f"System role: {system_prompt}\n"
                f"User input: {user_prompt}"
            )
            return StageOutput(sanitize_text(text), _elapsed_ms(started))

        try:
            completion = await asyncio.wait_for(
                self._client.complete(system_prompt, user_prompt, self._temperature),
                timeout=self._call_timeout,
            )
        except (LLMClientError, TimeoutError) as exc:
            logger.warning("Model call failed, degrading stage output: %s", exc)
            text = (
                "Model call failed; degraded to a local summary.\n"
                f"System role: {clip(system_prompt, 48)}\n"
                f"Task input: {clip(user_prompt, 220)}\n"
                "Suggestion: break the task down, gather evidence, review risks, "
                "then consolidate the output."
            )
            return StageOutput(sanitize_text(text), _elapsed_ms(started))

        if not completion.choices:
            raise PipelineError("empty llm response")
        content = completion.choices[0].message.content or ""
        return StageOutput(sanitize_text(content), _elapsed_ms(started))


def _researcher_input(plan: str) -> str:
    return (
        f"Task context:\n{plan}\n\n"
        "List the key information, external dependencies, verifiable evidence "
        "(link placeholders are fine) and risk notes."
    )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def parse_synthesis(raw: str) -> PipelineResult:
    """
    Read the synthesizer's JSON reply.

    The whole text is tried first, then the first well-formed JSON object
    embedded in surrounding prose. Unusable fields are left empty.
    """
    payload = _first_json_object(sanitize_text(raw)) or {}
    return PipelineResult(
        summary=sanitize_text(_as_str(payload.get("summary"))),
        final_answer=sanitize_text(_as_str(payload.get("finalAnswer"))),
        confidence=_as_float(payload.get("confidence")),
        next_actions=sanitize_list(_as_str_list(payload.get("nextActions"))),
        evidence=sanitize_list(_as_str_list(payload.get("evidence"))),
    )


def _first_json_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        value = None
    if isinstance(value, dict):
        return value

    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]
