"""
Domain models for sync tokens, accounts and identity records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_storage(value: datetime) -> str:
    """Serialize a timestamp so lexical and chronological order agree."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_storage(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class ExchangeToken:
    """Single-use token row. Only the salted hash of the plaintext is kept."""

    id: int
    owner_id: str
    lookup_prefix: str
    token_hash: str
    created_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(slots=True)
class SyncToken:
    """Persistent sync token; at most one live row per owner."""

    id: int
    owner_id: str
    token: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(slots=True)
class IssuedToken:
    """Plaintext handed to the caller exactly once at issue time."""

    owner_id: str
    token: str
    expires_at: datetime


@dataclass(slots=True)
class SessionRecord:
    owner_id: str
    expires_at: datetime


@dataclass(slots=True)
class Account:
    """Identity Authority account as seen by the sync core."""

    id: str
    username: str
    email: str
    display_name: str = ""
    roles: List[str] = field(default_factory=list)
    avatar_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    password_hash: Optional[str] = None
    registered_at: datetime = field(default_factory=utcnow)

    def to_identity_record(self) -> Dict[str, Any]:
        """Minimal identity shared with the edge application."""
        return {
            "externalId": self.id,
            "username": self.username,
            "email": self.email,
            "displayName": self.display_name or self.username,
            "roles": list(self.roles),
            "avatarUrl": self.avatar_url,
            "metadata": {
                "registered": to_storage(self.registered_at),
                **self.metadata,
            },
        }


__all__ = [
    "Account",
    "ExchangeToken",
    "IssuedToken",
    "SessionRecord",
    "SyncToken",
    "from_storage",
    "to_storage",
    "utcnow",
]
