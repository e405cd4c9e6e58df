"""Service layer exports."""

from .lifecycle import (
    EventBus,
    SyncTokenLifecycleListener,
    UserAuthenticated,
    UserLoggedOut,
)
from .session_snapshot import SessionSnapshotProvider
from .shared_secret import SYNC_SECRET_HEADER, SharedSecretValidator
from .token_hasher import TokenHasherService
from .token_issuer import TokenIssuer
from .token_validator import InvalidReason, TokenValidator, ValidationResult

__all__ = [
    "EventBus",
    "InvalidReason",
    "SYNC_SECRET_HEADER",
    "SessionSnapshotProvider",
    "SharedSecretValidator",
    "SyncTokenLifecycleListener",
    "TokenHasherService",
    "TokenIssuer",
    "TokenValidator",
    "UserAuthenticated",
    "UserLoggedOut",
    "ValidationResult",
]
