"""
Error taxonomy for the identity sync protocol.

Every error carries a short ``code`` that is safe to return to callers. The
message and ``details`` are for logs only and may name the internal reason a
request was refused.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base exception for the sync bridge."""

    code = "sync_error"

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if code is not None:
            self.code = code
        self.message = message or self.code
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        """Public body for this error; never includes the message or details."""
        return {"success": False, "error": self.code}


class ConfigurationError(SyncError):
    """A required setting (such as the shared secret) is missing."""

    code = "forbidden"


class AuthenticationError(SyncError):
    """Invalid, expired or consumed token, or a missing/mismatched secret."""

    code = "invalid_token"


class NotFoundError(SyncError):
    """A lookup produced nothing usable."""

    code = "not_found"


class NoActiveSessionsError(NotFoundError):
    code = "no_active_sessions"


class NoEligibleSessionsError(NotFoundError):
    code = "no_eligible_sessions"


class TransientNetworkError(SyncError):
    """Fetch or stream failure that is worth retrying."""

    code = "authority_unreachable"


class StorageError(SyncError):
    """A SQLite-backed store could not complete an operation."""

    code = "storage_unavailable"


class DuplicateAccountError(StorageError):
    """An account with the same username already exists."""

    code = "account_exists"


__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DuplicateAccountError",
    "NoActiveSessionsError",
    "NoEligibleSessionsError",
    "NotFoundError",
    "StorageError",
    "SyncError",
    "TransientNetworkError",
]
