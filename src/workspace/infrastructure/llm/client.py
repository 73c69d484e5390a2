from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from src.workspace.domain.exceptions import LLMClientError
from src.workspace.domain.models.chat import ChatCompletion
from src.workspace.domain.repositories import ChatCompletionRepository

logger = logging.getLogger(__name__)


class OpenRouterChatClient(ChatCompletionRepository):
    """OpenAI-compatible chat completions client (OpenRouter by default)."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> ChatCompletion:
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}/chat/completions"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise LLMClientError(f"failed to send request: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            logger.warning(
                "Chat completion rejected model=%s status=%s", self._model, response.status_code
            )
            raise LLMClientError(
                f"API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        try:
            return ChatCompletion.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise LLMClientError(f"failed to decode response: {exc}") from exc
