"""
FastAPI application for the update publisher.

Mounts the admin release routes under /api/admin and the public update
check and manifest routes under /api, plus /health. Service-level errors
are mapped inside the routes; the handlers here turn anything that
escapes into a JSON body of the form ``{"error": ..., "message": ...}``.

Environment Variables:
    PUBLISHER_DB_URL: Database URL (see config.settings)
    PUBLISHER_API_KEY: Admin API key (empty disables the check)
    PUBLISHER_ENV: production or development (default: development)
    PUBLISHER_LOG_LEVEL: DEBUG/INFO/WARNING/ERROR/CRITICAL (default: INFO)
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from publisher import __version__
from publisher.src.config.settings import get_settings
from publisher.src.db.database import dispose_engine
from publisher.src.services.exceptions import StorageError
from publisher.src.utils.logging_config import get_logger, init_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the effective storage and auth configuration; release the engine on shutdown."""
    logger = get_logger("api")
    settings = get_settings()
    logger.info(
        "Starting update publisher API",
        extra={"event": "app.startup", "storage_backend": settings.storage_backend},
    )
    if not settings.api_key_configured:
        logger.warning(
            "PUBLISHER_API_KEY is not set; admin endpoints are unauthenticated",
            extra={"event": "app.auth_disabled"},
        )

    yield

    logger.info("Shutting down update publisher API", extra={"event": "app.shutdown"})
    dispose_engine()


init_logging()

app = FastAPI(
    title="Update Publisher API",
    description="Release management for application auto-updates: versions, builds, "
                "staged rollout policies, manifests and update checks.",
    version=__version__,
    lifespan=lifespan,
)


def _error_response(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


def _request_fields(request: Request) -> Dict[str, Any]:
    return {"path": request.url.path, "method": request.method}


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Pydantic errors raised while building a response model."""
    get_logger("api").warning(
        "Validation error",
        extra={**_request_fields(request), "event": "api.validation_error", "errors": exc.errors()},
    )
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error",
        "Request validation failed",
        details=exc.errors(include_url=False, include_context=False),
    )


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError) -> JSONResponse:
    get_logger("storage").error(
        "Storage error",
        extra={**_request_fields(request), "event": "api.storage_error", "blob_path": exc.path, "error": exc.message},
    )
    return _error_response(status.HTTP_502_BAD_GATEWAY, "Storage Error", exc.message)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    get_logger("db").error(
        "Database error",
        extra={**_request_fields(request), "event": "api.database_error", "error": str(exc)},
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Database Error",
        "An error occurred while accessing the database. Please try again later.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger("api").error(
        "Unhandled exception",
        extra={**_request_fields(request), "event": "api.unhandled", "error_type": type(exc).__name__},
        exc_info=True,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "An unexpected error occurred. Please try again later.",
    )


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    return {"status": "healthy", "service": "update-publisher", "version": __version__}


from publisher.src.api import manifests, updates  # noqa: E402
from publisher.src.api.admin import versions_router  # noqa: E402

app.include_router(versions_router, prefix="/api/admin")
app.include_router(updates.router, prefix="/api")
app.include_router(manifests.router, prefix="/api")
