"""
Login/logout domain events and the listener that drives sync token lifecycle.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, DefaultDict, List, Type

from app.core.errors import StorageError
from app.models.identity import utcnow
from app.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UserAuthenticated:
    owner_id: str
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class UserLoggedOut:
    owner_id: str
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[object], None]


class EventBus:
    """Synchronous in-process publish/subscribe keyed by event type."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[object], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: object) -> None:
        for handler in self._handlers.get(type(event), []):
            handler(event)


class SyncTokenLifecycleListener:
    """Issue a persistent token on login and revoke it on logout."""

    def __init__(self, issuer: TokenIssuer) -> None:
        self._issuer = issuer

    def register(self, bus: EventBus) -> None:
        bus.subscribe(UserAuthenticated, self.on_authenticated)
        bus.subscribe(UserLoggedOut, self.on_logged_out)

    def on_authenticated(self, event: UserAuthenticated) -> None:
        self._issuer.issue_persistent_token(event.owner_id)

    def on_logged_out(self, event: UserLoggedOut) -> None:
        try:
            self._issuer.revoke_persistent_token(event.owner_id)
        except StorageError:
            logger.error(
                "Persistent sync token could not be revoked on logout",
                extra={"owner_id": event.owner_id},
                exc_info=True,
            )


__all__ = [
    "EventBus",
    "SyncTokenLifecycleListener",
    "UserAuthenticated",
    "UserLoggedOut",
]
