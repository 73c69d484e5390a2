from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class SchedulerSettings(BaseSettings):
    """Configuration for the periodic due-task scan."""
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: float = 30.0
    SCHEDULER_BATCH_SIZE: int = 20

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_scheduler_settings() -> SchedulerSettings:
    """Return a fresh scheduler settings instance."""
    return SchedulerSettings()
