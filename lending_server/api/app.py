"""
FastAPI application factory for the Lending Server.

This module creates the FastAPI app with:
- CORS configuration
- Store and LendingService wiring on app.state
- Exception handlers that turn LendingError kinds into HTTP statuses
- A /health endpoint backed by a database ping

Status mapping:
    NotFoundError        -> 404
    RuleViolationError   -> 400
    StorageConflictError -> 409 (DuplicateError included)
    request validation   -> 400, "Validation failed: <first message>"
    anything else        -> 500, logged with traceback
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import ServerConfig
from ..errors import LendingError, NotFoundError, RuleViolationError, StorageConflictError
from ..lending import LendingService
from ..store import CatalogStore, IdentityStore, LibraryDatabase
from .routes import router

logger = logging.getLogger(__name__)


def _error_body(status: int, error_code: str, message: str, details: dict) -> dict:
    return {
        "status": status,
        "error_code": error_code,
        "message": message,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _lending_error_response(status: int, exc: LendingError) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=_error_body(status, exc.code, exc.message, exc.details),
    )


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    # loc starts with "body", "query" or "path"
    return [
        {
            "field": ".".join(str(part) for part in error["loc"][1:]) or str(error["loc"][0]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Log startup and shutdown of the HTTP surface."""
    database: LibraryDatabase = app.state.database
    logger.info(
        "Lending server ready",
        extra={"db_path": str(database.db_path), **database.get_stats()},
    )

    yield

    logger.info("Lending server stopped")


def create_app(
    config: ServerConfig | None = None,
    database: LibraryDatabase | None = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (loaded from environment if not provided)
        database: Prebuilt database (built from config.storage if not provided)
        today: Clock used for lend and return dates

    Returns:
        Configured FastAPI app with an initialized schema
    """
    config = config or ServerConfig.from_env()

    if database is None:
        database = LibraryDatabase(
            config.storage.db_path,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            cache_size_pages=config.storage.cache_size_pages,
        )
    database.initialize()

    identity = IdentityStore(database)
    catalog = CatalogStore(database, identity)
    lending = LendingService(
        database,
        identity=identity,
        catalog=catalog,
        max_active_loans=config.lending.max_active_loans,
        today=today,
    )

    app = FastAPI(
        title="Lending Server",
        description="Library lending service: authors, books, members and loans.",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.database = database
    app.state.identity_store = identity
    app.state.catalog_store = catalog
    app.state.lending_service = lending

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.http.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def handle_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = _validation_errors(exc)
        message = f"Validation failed: {errors[0]['message']}" if errors else "Validation failed"
        return JSONResponse(
            status_code=400,
            content=_error_body(400, "VALIDATION_FAILED", message, {"errors": errors}),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _lending_error_response(404, exc)

    @app.exception_handler(RuleViolationError)
    async def handle_rule_violation(request: Request, exc: RuleViolationError) -> JSONResponse:
        return _lending_error_response(400, exc)

    @app.exception_handler(StorageConflictError)
    async def handle_storage_conflict(request: Request, exc: StorageConflictError) -> JSONResponse:
        logger.info(
            "Storage conflict",
            extra={"path": request.url.path, "kind": exc.kind.value},
        )
        return _lending_error_response(409, exc)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error",
            extra={"path": request.url.path, "method": request.method},
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(500, "INTERNAL_ERROR", "An unexpected error occurred", {}),
        )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    def health():
        if not database.ping():
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": "lending-server"},
            )
        return {"status": "healthy", "service": "lending-server", "version": __version__}

    return app
