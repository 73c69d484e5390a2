from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class TriggerType(str, Enum):
    MANUAL = "manual"
    ONCE = "once"
    DAILY = "daily"
    INTERVAL_HOURS = "interval_hours"


class ManualTrigger(BaseModel):
    """Never runs on its own."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[TriggerType.MANUAL] = TriggerType.MANUAL


class OnceTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[TriggerType.ONCE] = TriggerType.ONCE
    at: datetime = Field(description="Absolute, timezone-aware due time.")


class DailyTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[TriggerType.DAILY] = TriggerType.DAILY
    hour: int = Field(ge=0, le=23, description="Hour of day in the task timezone.")
    minute: int = Field(ge=0, le=59, description="Minute of hour.")


class IntervalTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[TriggerType.INTERVAL_HOURS] = TriggerType.INTERVAL_HOURS
    hours: int = Field(ge=1, le=720, description="Hours between runs.")


Trigger = Annotated[
    Union[ManualTrigger, OnceTrigger, DailyTrigger, IntervalTrigger],
    Field(discriminator="kind"),
]
