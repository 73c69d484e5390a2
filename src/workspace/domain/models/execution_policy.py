from __future__ import annotations

import json
import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ExecutionMode(str, Enum):
    SERIAL = "serial"
    PARALLEL = "parallel"


class ExecutionPolicy(BaseModel):
    """
    Fully defaulted execution configuration of a task.

    Built fresh for every execution from the task's stored configuration.
    Each field falls back to its default on its own when the stored value is
    missing, malformed or out of range.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    execution_mode: ExecutionMode = ExecutionMode.SERIAL
    timeout_seconds: int = Field(default=180, ge=30, le=1800)
    max_retries: int = Field(default=1, ge=0, le=5)
    retry_delay_seconds: int = Field(default=3, ge=0, le=120)
    archive_to_company: bool = False
    queue_retry_on_failure: bool = True
    retry_window_minutes: int = Field(default=60, ge=5, le=1440)
    max_failure_cycles: int = Field(default=3, ge=1, le=20)

    @classmethod
    def from_config(cls, raw: str | dict[str, Any] | None, group_id: str | None = None) -> ExecutionPolicy:
        values: dict[str, Any] = {"archive_to_company": bool((group_id or "").strip())}
        payload = _load_payload(raw)

        mode = payload.get("executionMode")
        if isinstance(mode, str) and mode.strip().lower() in {m.value for m in ExecutionMode}:
            values["execution_mode"] = ExecutionMode(mode.strip().lower())

        for name, (low, high) in _INT_BOUNDS.items():
            number = _to_int(payload.get(to_camel(name)))
            if number is not None and low <= number <= high:
                values[name] = number

        for name in ("archive_to_company", "queue_retry_on_failure"):
            flag = _to_bool(payload.get(to_camel(name)))
            if flag is not None:
                values[name] = flag

        return cls(**values)


_INT_BOUNDS: dict[str, tuple[int, int]] = {
    "timeout_seconds": (30, 1800),
    "max_retries": (0, 5),
    "retry_delay_seconds": (0, 120),
    "retry_window_minutes": (5, 1440),
    "max_failure_cycles": (1, 20),
}


def _load_payload(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    text = (raw or "").strip()
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"1", "true", "yes"}:
            return True
        if text in {"0", "false", "no"}:
            return False
    return None
