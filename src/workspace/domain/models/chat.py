from __future__ import annotations

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: str = Field(description="system, user or assistant.")
    content: str | None = Field(default="", description="Message text.")


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: str | None = None


class ChatCompletion(BaseModel):
    """Subset of an OpenAI-compatible chat completion response."""

    id: str | None = None
    model: str | None = None
    choices: list[ChatChoice] = Field(default_factory=list)
