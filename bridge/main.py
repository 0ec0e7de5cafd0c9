"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from bridge.api.gitlab import router as gitlab_router
from bridge.api.health import router as health_router
from bridge.api.projects import router as projects_router
from bridge.api.status import router as status_router
from bridge.api.sync import router as sync_router
from bridge.api.temp_repos import router as temp_repos_router
from bridge.config import Settings
from bridge.context import create_context
from bridge.database import create_engine
from bridge.exceptions import BridgeError, ErrorKind
from bridge.models.base import Base
from bridge.services.temp_repo_service import TempRepoManager
from bridge.services.upload_service import UploadPipeline

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.CONFIGURATION: 409,
    ErrorKind.VALIDATION: 422,
    ErrorKind.TRANSPORT: 502,
    ErrorKind.RATE_LIMITED: 503,
    ErrorKind.REMOTE_INCONSISTENCY: 502,
    ErrorKind.TIMEOUT: 504,
}


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def error_status_code(exc: BridgeError) -> int:
    """HTTP status for a bridge error.

    Validation errors carry their own status (413 for oversized archives,
    404 for unknown source repositories); everything else maps by kind.
    """
    if exc.kind is ErrorKind.VALIDATION and exc.http_status in (404, 413):
        return exc.http_status
    return _STATUS_BY_KIND.get(exc.kind, 500)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting GitLab bridge (debug=%s)", settings.debug)

    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    context = create_context(settings, session_factory)
    app.state.context = context
    app.state.upload_pipeline = UploadPipeline(context)
    temp_repo_manager = TempRepoManager(context)
    app.state.temp_repo_manager = temp_repo_manager

    if context.gitlab is not None:
        await temp_repo_manager.start()

    yield

    try:
        await temp_repo_manager.stop()
    except Exception as exc:
        logger.error("Error stopping staging repository sweep: %s", exc, exc_info=True)

    try:
        await context.aclose()
    except Exception as exc:
        logger.error("Error closing GitLab client: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("GitLab bridge stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="GitLab Bridge",
        description="Archive synchronization and staging repositories for GitLab",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:5173", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(sync_router)
    app.include_router(status_router)
    app.include_router(temp_repos_router)
    app.include_router(projects_router)
    app.include_router(gitlab_router)

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        status_code = error_status_code(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "%s in %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.user_message, "kind": str(exc.kind)},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "bridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
