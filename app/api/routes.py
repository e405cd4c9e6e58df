"""
FastAPI routes for the Identity Authority side of the sync bridge.

Storage-backed handlers are plain functions so FastAPI runs them in its
threadpool; each opens its own SQLite connection.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from app.core.errors import AuthenticationError, NotFoundError, StorageError
from app.dependencies import (
    SyncSecretDependency,
    get_account_directory,
    get_app_settings,
    get_event_bus,
    get_optional_account,
    get_session_key,
    get_session_snapshot_provider,
    get_token_hasher,
    get_token_issuer,
    get_token_store,
    get_token_validator,
    require_account,
)
from app.models.identity import Account
from app.schemas import ActiveSessionsRequest, IdentityRecord, LoginPayload, TokenPayload
from app.services import UserAuthenticated, UserLoggedOut

router = APIRouter()
sync_router = APIRouter()
logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


def _append_query(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _edge_base_url(settings: Any) -> str:
    return str(settings.edge.app_base_url).rstrip("/")


def _origin(url: str) -> Optional[tuple]:
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    try:
        port = parts.port or _DEFAULT_PORTS.get(scheme)
    except ValueError:
        return None
    if not scheme or not parts.hostname:
        return None
    return scheme, parts.hostname.lower(), port


def _login_redirect_target(requested: Optional[str], settings: Any) -> str:
    """Only the edge app's own origin may receive the persistent sync token."""
    edge_base = _edge_base_url(settings)
    if not requested:
        return edge_base
    if _origin(requested) != _origin(edge_base):
        logger.warning("Ignoring off-site login redirect", extra={"redirect_to": requested})
        return edge_base
    return requested


def _identity(account: Account) -> dict:
    return IdentityRecord.model_validate(account.to_identity_record()).model_dump(
        by_alias=True
    )


def _owner_identity(directory: Any, owner_id: str) -> Optional[dict]:
    account = directory.get_account(owner_id)
    return _identity(account) if account is not None else None


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.post("/auth/login", status_code=HTTPStatus.OK)
def login(
    payload: LoginPayload,
    request: Request,
    directory: Annotated[Any, Depends(get_account_directory)],
    hasher: Annotated[Any, Depends(get_token_hasher)],
    bus: Annotated[Any, Depends(get_event_bus)],
    store: Annotated[Any, Depends(get_token_store)],
    settings: Annotated[Any, Depends(get_app_settings)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect instead of JSON.",
    ),
) -> Any:
    """Open an authority session and hand the edge app a persistent sync token."""
    account = directory.find_by_username(payload.username)
    if (
        account is None
        or not account.password_hash
        or not hasher.verify(payload.password, account.password_hash)
    ):
        logger.info("Login refused", extra={"username": payload.username})
        raise AuthenticationError("Bad credentials.", code="invalid_credentials")

    session_key = directory.open_session(
        account.id, ttl_seconds=settings.session.ttl_seconds
    )

    try:
        bus.publish(UserAuthenticated(owner_id=account.id))
    except StorageError:
        logger.error(
            "Persistent sync token could not be issued at login",
            extra={"owner_id": account.id},
            exc_info=True,
        )

    redirect_target = _login_redirect_target(payload.redirect_to, settings)
    sync_token = store.get_sync_token_for_owner(account.id)
    if sync_token is not None and not sync_token.is_expired(datetime.now(timezone.utc)):
        redirect_target = _append_query(redirect_target, sync_token=sync_token.token)

    response: Any
    if redirect or _wants_html(request):
        response = RedirectResponse(url=redirect_target, status_code=HTTPStatus.SEE_OTHER)
    else:
        response = JSONResponse(
            content={"status": "authenticated", "redirectTo": redirect_target}
        )
    response.set_cookie(
        settings.session.cookie_name,
        session_key,
        max_age=settings.session.ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.session.cookie_secure,
    )
    return response


@router.post("/auth/logout", status_code=HTTPStatus.OK)
def logout(
    session_key: Annotated[Optional[str], Depends(get_session_key)],
    directory: Annotated[Any, Depends(get_account_directory)],
    bus: Annotated[Any, Depends(get_event_bus)],
    settings: Annotated[Any, Depends(get_app_settings)],
) -> JSONResponse:
    """Close the caller's session; the listener revokes their sync token."""
    owner_id = directory.close_session(session_key) if session_key else None
    if owner_id:
        bus.publish(UserLoggedOut(owner_id=owner_id))

    response = JSONResponse(content={"status": "logged_out"})
    response.delete_cookie(settings.session.cookie_name)
    return response


@sync_router.post(
    "/active-sessions",
    status_code=HTTPStatus.OK,
    dependencies=[SyncSecretDependency],
)
def get_active_sessions(
    payload: ActiveSessionsRequest,
    provider: Annotated[Any, Depends(get_session_snapshot_provider)],
) -> dict:
    """Return live, role-eligible identities for bulk reconciliation."""
    logger.info(
        "Active sessions requested",
        extra={"request_source": payload.request_source, "timestamp": payload.timestamp},
    )
    try:
        records = provider.snapshot()
    except NotFoundError as exc:
        return {"success": False, "error": exc.code}

    return {
        "success": True,
        "activeSessions": [
            IdentityRecord.model_validate(record).model_dump(by_alias=True)
            for record in records
        ],
        "timestamp": int(time.time()),
    }


@sync_router.post(
    "/validate-session",
    status_code=HTTPStatus.OK,
    dependencies=[SyncSecretDependency],
)
def validate_session(
    account: Annotated[Optional[Account], Depends(get_optional_account)],
) -> dict:
    """Resolve the session cookie forwarded by the edge application."""
    if account is None:
        return {"success": False, "error": "session_invalid"}
    return {"success": True, "user": _identity(account)}


@sync_router.get("/issue-token", status_code=HTTPStatus.TEMPORARY_REDIRECT)
def issue_token(
    account: Annotated[Account, Depends(require_account)],
    issuer: Annotated[Any, Depends(get_token_issuer)],
    settings: Annotated[Any, Depends(get_app_settings)],
) -> RedirectResponse:
    """Mint a single-use exchange token and send the browser to the edge app."""
    issued = issuer.issue_exchange_token(account.id)
    target = _append_query(
        f"{_edge_base_url(settings)}/verify-token", token=issued.token
    )
    return RedirectResponse(url=target, status_code=HTTPStatus.TEMPORARY_REDIRECT)


@sync_router.post(
    "/validate-token",
    status_code=HTTPStatus.OK,
    dependencies=[SyncSecretDependency],
)
def validate_token(
    payload: TokenPayload,
    validator: Annotated[Any, Depends(get_token_validator)],
    directory: Annotated[Any, Depends(get_account_directory)],
) -> dict:
    """Consume an exchange token; a second attempt with the same value fails."""
    result = validator.validate_exchange_token(payload.token)
    if not result.valid:
        raise AuthenticationError("Exchange token refused.")
    return {
        "success": True,
        "ownerId": result.owner_id,
        "user": _owner_identity(directory, result.owner_id),
    }


@sync_router.get("/token-exists", status_code=HTTPStatus.OK)
def token_exists(
    account: Annotated[Account, Depends(require_account)],
    store: Annotated[Any, Depends(get_token_store)],
) -> dict:
    """Report whether the caller currently holds a live persistent token."""
    record = store.get_sync_token_for_owner(account.id)
    exists = record is not None and not record.is_expired(datetime.now(timezone.utc))
    return {"tokenExists": exists}


@sync_router.post(
    "/validate-persistent-token",
    status_code=HTTPStatus.OK,
    dependencies=[SyncSecretDependency],
)
def validate_persistent_token(
    payload: TokenPayload,
    validator: Annotated[Any, Depends(get_token_validator)],
    directory: Annotated[Any, Depends(get_account_directory)],
) -> Any:
    """Check a persistent token without consuming it."""
    result = validator.validate_persistent_token(payload.token)
    if not result.valid:
        return JSONResponse(
            status_code=HTTPStatus.UNAUTHORIZED,
            content={"valid": False, "error": "invalid_token"},
        )
    return {
        "valid": True,
        "ownerId": result.owner_id,
        "user": _owner_identity(directory, result.owner_id),
    }


__all__ = ["router", "sync_router"]
