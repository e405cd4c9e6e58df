"""Public schema exports."""

from .auth import LoginPayload
from .sync import ActiveSessionsRequest, IdentityRecord, TokenPayload

__all__ = [
    "ActiveSessionsRequest",
    "IdentityRecord",
    "LoginPayload",
    "TokenPayload",
]
