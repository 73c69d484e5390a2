import inject

from src.setup.db_config import get_database_settings
from src.setup.llm_config import build_orchestrator
from src.setup.scheduler_config import get_scheduler_settings
from src.workspace.application.batch import BatchRunner
from src.workspace.application.orchestrator import Orchestrator
from src.workspace.application.runner import Runner
from src.workspace.application.scheduler import Scheduler
from src.workspace.application.services import TaskService
from src.workspace.domain.repositories import StorageRepository
from src.workspace.infrastructure.postgres.orm import PostgresOrm
from src.workspace.infrastructure.postgres.repositories import PostgresStorageRepository


def _build_scheduler() -> Scheduler:
    settings = get_scheduler_settings()
    return Scheduler(
        interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
        batch_size=settings.SCHEDULER_BATCH_SIZE,
    )


def _config(binder: inject.Binder) -> None:
    db_settings = get_database_settings()
    orm = PostgresOrm(db_settings.DATABASE_URL, echo=db_settings.DATABASE_ECHO)
    binder.bind(PostgresOrm, orm)
    binder.bind(StorageRepository, PostgresStorageRepository(orm))
    binder.bind_to_constructor(Orchestrator, build_orchestrator)
    binder.bind_to_constructor(Runner, Runner)
    binder.bind_to_constructor(Scheduler, _build_scheduler)
    binder.bind_to_constructor(BatchRunner, BatchRunner)
    binder.bind_to_constructor(TaskService, TaskService)


def configure_di() -> None:
    """Wire repositories and services once per process."""
    if not inject.is_configured():
        inject.configure(_config)
