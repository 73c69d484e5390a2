from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from src.workspace.application.orchestrator import Orchestrator
from src.workspace.infrastructure.llm.client import OpenRouterChatClient


class LLMSettings(BaseSettings):
    """Chat completion backend. An empty key runs the pipeline in degraded mode."""
    OPENROUTER_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_KEY: str = ""
    OPENROUTER_MODEL: str = "google/gemini-3-flash-preview"
    LLM_CALL_TIMEOUT_SECONDS: float = 90.0
    LLM_TEMPERATURE: float = 0.2

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_llm_settings() -> LLMSettings:
    """Return a fresh LLM settings instance."""
    return LLMSettings()


def build_orchestrator(settings: LLMSettings | None = None) -> Orchestrator:
    if settings is None:
        settings = get_llm_settings()
    client = None
    if settings.OPENROUTER_KEY.strip():
        client = OpenRouterChatClient(
            api_key=settings.OPENROUTER_KEY.strip(),
            model=settings.OPENROUTER_MODEL.strip(),
            base_url=settings.OPENROUTER_URL.strip(),
            timeout=settings.LLM_CALL_TIMEOUT_SECONDS,
        )
    return Orchestrator(
        client,
        temperature=settings.LLM_TEMPERATURE,
        call_timeout_seconds=settings.LLM_CALL_TIMEOUT_SECONDS,
    )
