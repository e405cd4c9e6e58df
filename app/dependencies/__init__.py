"""Expose dependency helpers for FastAPI routers."""

from .auth import (
    SyncSecretDependency,
    get_optional_account,
    get_session_key,
    require_account,
    require_sync_secret,
)
from .clients import (
    get_account_directory,
    get_event_bus,
    get_session_snapshot_provider,
    get_shared_secret_validator,
    get_token_hasher,
    get_token_issuer,
    get_token_store,
    get_token_validator,
)
from .config import get_app_settings

__all__ = [
    "SyncSecretDependency",
    "get_account_directory",
    "get_app_settings",
    "get_event_bus",
    "get_optional_account",
    "get_session_key",
    "get_session_snapshot_provider",
    "get_shared_secret_validator",
    "get_token_hasher",
    "get_token_issuer",
    "get_token_store",
    "get_token_validator",
    "require_account",
    "require_sync_secret",
]
