import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cliptr.src.config import Settings
from cliptr.src.errors import CliptrError, ProcessFailed
from cliptr.src.services import build_services

from .jobs import JobManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    settings = app.state.settings or Settings()
    executor = ThreadPoolExecutor(max_workers=3)
    services = build_services(
        settings,
        runner=app.state.runner,
        executor=executor,
        engine_check=app.state.engine_check,
    )

    app.state.settings = settings
    app.state.services = services
    app.state.job_manager = JobManager()
    app.state.executor = executor

    reconciled = services.supervisor.reconcile_orphaned_sessions()
    if reconciled:
        logger.info(f"Marked {len(reconciled)} interrupted session(s) as finished")
    if app.state.check_streams:
        services.stream_status.start()

    yield

    # --- Shutdown ---
    services.stream_status.stop()
    services.supervisor.shutdown()
    executor.shutdown(wait=False)


async def cliptr_error_handler(request: Request, exc: CliptrError):
    body = {"error": str(exc)}
    if isinstance(exc, ProcessFailed) and exc.diagnostics:
        body["diagnostics"] = exc.diagnostics
    return JSONResponse(body, status_code=exc.status_code)


def create_app(settings: Settings = None, runner=None, engine_check=None, check_streams: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Components are created in ``lifespan`` and hung off ``app.state``;
    ``runner`` and ``engine_check`` replace the real FFmpeg/Whisper launchers.
    """
    app = FastAPI(title="cliptr", lifespan=lifespan)
    app.state.settings = settings
    app.state.runner = runner
    app.state.engine_check = engine_check
    app.state.check_streams = check_streams

    app.add_exception_handler(CliptrError, cliptr_error_handler)

    # Register routes
    from .routes.capture_routes import router as capture_router
    from .routes.media_routes import router as media_router
    from .routes.transcription_routes import router as transcription_router
    from .routes.search_routes import router as search_router
    from .routes.config_routes import router as config_router

    app.include_router(capture_router, prefix="/capture")
    app.include_router(media_router, prefix="/media")
    app.include_router(transcription_router, prefix="/transcription")
    app.include_router(search_router, prefix="/search")
    app.include_router(config_router, prefix="/config")

    return app


app = create_app()
