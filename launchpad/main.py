import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from launchpad.config import Settings, settings as default_settings
from launchpad.container import Container, build_container
from launchpad.db.base import init_db
from launchpad.routers import public_sites, sites
from launchpad.services.errors import ConflictError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, *, container: Optional[Container] = None) -> FastAPI:
    """Build the API. Run with `uvicorn --factory launchpad.main:create_app`."""

    if container is None:
        container = build_container(settings or default_settings)
    settings = container.settings
    logging.getLogger("launchpad").setLevel(settings.LOG_LEVEL.upper())
    logging.getLogger("auth").setLevel(settings.LOG_LEVEL.upper())

    @asynccontextmanager
    async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
        init_db(container.engine)
        try:
            yield
        finally:
            container.engine.dispose()

    app = FastAPI(
        title="Launchpad Sites API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(set(settings.BACKEND_CORS_ORIGINS)),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_request: Request, exc: ValidationError) -> ORJSONResponse:
        return ORJSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(_request: Request, exc: NotFoundError) -> ORJSONResponse:
        return ORJSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_error_handler(_request: Request, exc: ConflictError) -> ORJSONResponse:
        return ORJSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(_request: Request, exc: StorageError) -> ORJSONResponse:
        logger.error("Storage operation failed", extra={"error": str(exc)})
        return ORJSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(_request: Request, exc: SQLAlchemyError) -> ORJSONResponse:
        logger.exception("Database error", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Database query failed."})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with container.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except SQLAlchemyError as exc:
            return {"db": f"error: {exc}"}

    app.include_router(sites.router)
    app.include_router(public_sites.router)

    return app
