"""
FastAPI application entrypoint for the Identity Authority sync service.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.api.routes import sync_router
from app.core.config import get_settings
from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    StorageError,
    SyncError,
    TransientNetworkError,
)
from app.core.logging import configure_logging

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ConfigurationError, HTTPStatus.FORBIDDEN),
    (AuthenticationError, HTTPStatus.UNAUTHORIZED),
    (NotFoundError, HTTPStatus.NOT_FOUND),
    (TransientNetworkError, HTTPStatus.SERVICE_UNAVAILABLE),
    (StorageError, HTTPStatus.INTERNAL_SERVER_ERROR),
)


def status_for(exc: SyncError) -> HTTPStatus:
    """Map a sync error to the HTTP status returned to callers."""
    if isinstance(exc, AuthenticationError) and exc.code == "forbidden":
        return HTTPStatus.FORBIDDEN
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return HTTPStatus.INTERNAL_SERVER_ERROR


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    status = status_for(exc)
    if status >= HTTPStatus.INTERNAL_SERVER_ERROR:
        logger.error("Sync request failed: %s", exc.message, extra={"path": request.url.path})
    return JSONResponse(status_code=status, content=exc.to_response())


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Identity Sync Authority",
        version="0.1.0",
        description=(
            "Issues and validates sync tokens and serves session snapshots so an "
            "edge application can learn who is logged in."
        ),
    )
    app.add_exception_handler(SyncError, sync_error_handler)
    app.include_router(api_router, prefix="/api")
    app.include_router(sync_router, prefix="/sync")
    return app


app = create_app()

__all__ = ["app", "create_app", "status_for", "sync_error_handler"]
