"""
FastAPI dependencies that authenticate callers of the sync endpoints.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, Header, Request

from app.clients import SQLiteAccountDirectory
from app.core.config import AppSettings
from app.core.errors import AuthenticationError
from app.dependencies.clients import (
    get_account_directory,
    get_shared_secret_validator,
)
from app.dependencies.config import get_app_settings
from app.models.identity import Account
from app.services import SharedSecretValidator


def require_sync_secret(
    validator: Annotated[SharedSecretValidator, Depends(get_shared_secret_validator)],
    x_sync_secret: Annotated[Optional[str], Header(alias="X-Sync-Secret")] = None,
    x_request_source: Annotated[Optional[str], Header(alias="X-Request-Source")] = None,
) -> None:
    """Reject the request unless it carries the configured shared secret."""
    validator.validate(x_sync_secret, source=x_request_source or "unknown")


def get_session_key(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> Optional[str]:
    return request.cookies.get(settings.session.cookie_name)


def get_optional_account(
    session_key: Annotated[Optional[str], Depends(get_session_key)],
    directory: Annotated[SQLiteAccountDirectory, Depends(get_account_directory)],
) -> Optional[Account]:
    """Resolve the caller's own authority session, if any."""
    if not session_key:
        return None
    return directory.resolve_session(session_key)


def require_account(
    account: Annotated[Optional[Account], Depends(get_optional_account)],
) -> Account:
    if account is None:
        raise AuthenticationError("No live authority session.", code="not_authenticated")
    return account


SyncSecretDependency = Depends(require_sync_secret)

__all__ = [
    "SyncSecretDependency",
    "get_optional_account",
    "get_session_key",
    "require_account",
    "require_sync_secret",
]
