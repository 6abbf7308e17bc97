"""
Patient Image Backend - FastAPI Application Factory
=====================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers;
       lifespan() sets up logging and storage on startup and closes the
       database engine on shutdown.
Who:   uvicorn app.main:app

Exception Handlers:
    ValidationError   → 400    NotFoundError     → 404
    FileStorageError  → 500    DatabaseError     → 500 (RecordLookupError,
    Exception         → 500                             RecordPersistError)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.config import settings
from app.database import dispose_engine
from app.exceptions import (
    DatabaseError,
    FileStorageError,
    NotFoundError,
    PatientImageError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.request_id import RequestIdLogFilter, RequestIDMiddleware, request_id_of
from app.routes import health, images

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """
    Configure logging for the whole process.

    Format: 2024-01-15T12:00:00 [INFO] [1a2b3c4d] app.services.blob_store: File stored: ...
    Called once at startup, before anything else logs.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdLogFilter())
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] [%(request_id)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:  logging, storage directory.
    Shutdown: dispose the database engine (close pooled connections).

    The schema is managed by Alembic (`alembic upgrade head`), not here.
    """
    setup_logging()
    logger.info("Patient Image Backend starting up...")

    storage = settings.storage_path
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s (served at /%s)", storage, settings.uploads_url_prefix)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)

    yield

    logger.info("Patient Image Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: dict | None = None,
) -> JSONResponse:
    """Error body shared by every handler; carries the request's correlation id."""
    body = {"error": error, "message": message, "request_id": request_id_of(request)}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP responses.

    Internal details (paths, SQL, stack traces) are logged, never returned.
    Log records carry the request id through RequestIdLogFilter.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("Validation error: %s", exc.message)
        details = {"field": exc.field} if exc.field else None
        return _error_response(request, 400, "validation_error", exc.message, details)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(request, 404, "not_found", exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("%s: %s | Context: %s", type(exc).__name__, exc.message, exc.context)
        return _error_response(request, 500, "server_error", exc.message)

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("File storage error: %s | Context: %s", exc.message, exc.context)
        return _error_response(request, 500, "server_error", exc.message)

    @app.exception_handler(PatientImageError)
    async def handle_app_error(request: Request, exc: PatientImageError):
        logger.error("%s: %s", type(exc).__name__, exc.message)
        return _error_response(request, 500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        # Runs outside the middleware stack: the id comes from request.state
        logger.error(
            "[%s] Unexpected error: %s", request_id_of(request), str(exc), exc_info=True
        )
        return _error_response(
            request,
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Middleware executes in REVERSE order of addition:
    RequestID → Logging → GZip → CORS.
    """
    app = FastAPI(
        title="Patient Image API",
        description=(
            "Associates uploaded image files with patient identifiers. "
            "Upload, list (as URLs) and delete a patient's images."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(images.router)
    app.include_router(health.router)

    return app


app = create_app()
