"""
FastAPI application for the edge side of the identity sync bridge.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import get_settings
from app.core.errors import AuthenticationError, SyncError, TransientNetworkError
from app.core.logging import configure_logging
from app.main import sync_error_handler
from app.models.identity import to_storage, utcnow
from edge.dependencies import (
    get_broadcaster,
    get_edge_settings,
    get_link_store,
    get_reconciler,
    get_session_encoder,
)
from edge.worker import SnapshotPoller

router = APIRouter()
logger = logging.getLogger(__name__)


class SyncRequest(BaseModel):
    """Body posted by the client-resident sync loop."""

    model_config = ConfigDict(populate_by_name=True)

    sync_token: str = Field(..., alias="syncToken", min_length=1)
    known_user_id: Optional[str] = Field(None, alias="knownUserId")
    known_updated_at: Optional[str] = Field(None, alias="knownUpdatedAt")


def _failure(status: HTTPStatus, code: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"valid": False, "error": code})


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    return {"status": "ok"}


@router.get("/verify-token")
async def verify_token(
    request: Request,
    reconciler: Annotated[Any, Depends(get_reconciler)],
    encoder: Annotated[Any, Depends(get_session_encoder)],
    settings: Annotated[Any, Depends(get_edge_settings)],
    token: str = Query(..., min_length=1),
) -> Any:
    """Landing point of the authority's issue-token redirect."""
    try:
        link = await reconciler.accept_exchange_token(token)
    except AuthenticationError:
        return _failure(HTTPStatus.UNAUTHORIZED, "invalid_token")
    except TransientNetworkError:
        return _failure(HTTPStatus.SERVICE_UNAVAILABLE, "authority_unreachable")

    session_value = encoder.encode(
        {
            "userId": link.external_identity_id,
            "ownerId": link.local_user_id,
            "issuedAt": to_storage(utcnow()),
        }
    )
    response: Any
    if _wants_html(request):
        response = RedirectResponse(url="/", status_code=HTTPStatus.SEE_OTHER)
    else:
        response = JSONResponse(content={"valid": True, "user": link.to_user()})
    response.set_cookie(
        settings.session_cookie_name,
        session_value,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )
    return response


@router.post("/api/auth/sync")
async def sync_identity(
    payload: SyncRequest,
    reconciler: Annotated[Any, Depends(get_reconciler)],
) -> Any:
    """Reconcile the caller's persistent sync token into an edge identity."""
    try:
        outcome = await reconciler.reconcile(
            payload.sync_token,
            known_user_id=payload.known_user_id,
            known_updated_at=payload.known_updated_at,
        )
    except AuthenticationError:
        logger.info("Sync token refused by authority")
        return _failure(HTTPStatus.UNAUTHORIZED, "invalid_token")
    except TransientNetworkError:
        logger.warning("Authority unreachable during sync")
        return _failure(HTTPStatus.SERVICE_UNAVAILABLE, "authority_unreachable")

    return {"valid": True, "changed": outcome.changed, "user": outcome.user}


@router.get("/api/auth/me")
def current_identity(
    request: Request,
    encoder: Annotated[Any, Depends(get_session_encoder)],
    links: Annotated[Any, Depends(get_link_store)],
    settings: Annotated[Any, Depends(get_edge_settings)],
) -> dict:
    """Resolve the signed edge session cookie to the linked identity."""
    raw = request.cookies.get(settings.session_cookie_name)
    if not raw:
        return {"authenticated": False, "user": None}
    try:
        session = encoder.decode(raw)
    except (AuthenticationError, ValueError):
        logger.info("Discarding unreadable edge session cookie")
        return {"authenticated": False, "user": None}

    link = links.get_by_external_identity(str(session.get("userId", "")))
    if link is None:
        return {"authenticated": False, "user": None}
    return {"authenticated": True, "user": link.to_user()}


@router.get("/api/auth/sync-stream")
async def sync_stream(
    broadcaster: Annotated[Any, Depends(get_broadcaster)],
    user_id: str = Query(..., alias="userId", min_length=1),
) -> StreamingResponse:
    """Server-sent change notices for a single edge identity."""
    return StreamingResponse(
        broadcaster.stream(user_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the snapshot poller alongside the app when polling is enabled."""
    interval = get_settings().edge.snapshot_poll_seconds
    task: Optional[asyncio.Task] = None
    if interval > 0:
        poller = SnapshotPoller(get_reconciler(), poll_interval_seconds=interval)
        task = asyncio.create_task(poller.run_forever())
        logger.info("Snapshot poller started", extra={"interval_seconds": interval})
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


def create_edge_app() -> FastAPI:
    """Factory for the edge FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Identity Sync Edge",
        version="0.1.0",
        description=(
            "Receives identities from the Identity Authority and pushes change "
            "notices to connected clients."
        ),
        lifespan=lifespan,
    )
    app.add_exception_handler(SyncError, sync_error_handler)
    app.include_router(router)
    return app


app = create_edge_app()

__all__ = ["SyncRequest", "app", "create_edge_app", "lifespan"]
