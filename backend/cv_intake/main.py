import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .config import Settings, get_settings
from .errors import ConfigurationError, CVIntakeError, NotFound, StatusStoreError, ValidationError
from .routers import system_router, upload_router
from .services.clients import build_clients, close_clients
from .services.jobs import JobRunner
from .services.pipeline import CVPipeline, PipelineClients

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _error_response(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error_response(404, "Not found", exc.message)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        return _error_response(503, "Service not configured", exc.message)

    @app.exception_handler(StatusStoreError)
    async def status_store_error_handler(request: Request, exc: StatusStoreError):
        logger.error(f"[API] Status store error on {request.url.path}: {exc.message}")
        return _error_response(503, "Status store unavailable", exc.message)

    @app.exception_handler(CVIntakeError)
    async def intake_error_handler(request: Request, exc: CVIntakeError):
        logger.error(f"[API] Unhandled {type(exc).__name__} on {request.url.path}: {exc.message}")
        return _error_response(500, "Internal server error", exc.message)


# Cache control middleware - status responses must never be served stale
class NoCacheMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/upload"):
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response


def create_app(settings: Optional[Settings] = None, clients: Optional[PipelineClients] = None) -> FastAPI:
    """
    Build the application.

    ``clients`` replaces the collaborators built from settings; tests pass
    fakes here. Without a status store the app still serves ``/health`` but
    intake and polling answer 503.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    clients = clients or build_clients(settings)

    runner = None
    if clients.store is not None:
        pipeline = CVPipeline(clients, retry_base_delay=settings.retry_base_delay)
        runner = JobRunner(
            pipeline,
            clients.store,
            retained_payloads=settings.retained_payloads,
            max_manual_retries=settings.max_manual_retries,
            stale_after_seconds=settings.stale_after_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[API] {settings.app_name} starting ({settings.environment})")
        yield
        if runner is not None:
            await runner.shutdown()
        await close_clients(clients)
        logger.info("[API] Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="CV intake API: upload a CV, poll its processing status",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,  # Disable docs in production
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.clients = clients
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(NoCacheMiddleware)

    register_exception_handlers(app)
    app.include_router(upload_router)
    app.include_router(system_router)

    @app.get("/")
    async def root():
        return {"message": settings.app_name, "status": "running", "version": "1.0.0"}

    return app


app = create_app()
