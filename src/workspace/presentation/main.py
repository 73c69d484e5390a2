import logging
from contextlib import asynccontextmanager

import inject
from fastapi import FastAPI

from src.setup.api_config import get_api_settings
from src.setup.app_config import configure_di
from src.setup.scheduler_config import get_scheduler_settings
from src.workspace.application.scheduler import Scheduler
from src.workspace.infrastructure.postgres.orm import PostgresOrm

settings = get_api_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
configure_di()


@asynccontextmanager
async def lifespan(_: FastAPI):
    scheduler: Scheduler | None = None
    if get_scheduler_settings().SCHEDULER_ENABLED:
        scheduler = inject.instance(Scheduler)
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await inject.instance(PostgresOrm).dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Scheduled multi-agent task execution",
    lifespan=lifespan,
)

from src.workspace.presentation.routes import router as api_router  # noqa: E402

app.include_router(api_router, prefix="")
