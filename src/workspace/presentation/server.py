import uvicorn

from src.setup.api_config import get_api_settings

APP_PATH = "src.workspace.presentation.main:app"


def serve() -> None:
    """Run the API, and with it the scheduler, under uvicorn."""
    settings = get_api_settings()
    uvicorn.run(
        APP_PATH,
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    serve()
