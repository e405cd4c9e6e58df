"""
Issue exchange tokens and persistent sync tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from app.clients.token_store import SQLiteTokenStore
from app.core.config import SyncSettings
from app.core.errors import StorageError
from app.models.identity import IssuedToken, utcnow
from app.services.token_hasher import TokenHasherService

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Creates the two token variants used to hand identity to the edge app.

    Exchange tokens are single use and stored only as a salted hash.
    Persistent tokens are stored by value and replaced on every login.
    """

    def __init__(
        self,
        store: SQLiteTokenStore,
        hasher: TokenHasherService,
        settings: SyncSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._exchange_ttl = timedelta(seconds=settings.exchange_token_ttl_seconds)
        self._persistent_ttl = timedelta(seconds=settings.persistent_token_ttl_seconds)
        self._clock = clock

    def issue_exchange_token(self, owner_id: str) -> IssuedToken:
        now = self._clock()
        self._purge(now)
        token = self._hasher.generate()
        expires_at = now + self._exchange_ttl
        self._store.create_exchange_token(
            owner_id=owner_id,
            lookup_prefix=self._hasher.lookup_prefix(token),
            token_hash=self._hasher.hash(token),
            created_at=now,
            expires_at=expires_at,
        )
        logger.info("Issued exchange token", extra={"owner_id": owner_id})
        return IssuedToken(owner_id=owner_id, token=token, expires_at=expires_at)

    def issue_persistent_token(self, owner_id: str) -> IssuedToken:
        """Replace any persistent token for ``owner_id`` with a fresh one."""
        now = self._clock()
        token = self._hasher.generate()
        expires_at = now + self._persistent_ttl
        self._store.upsert_sync_token(
            owner_id=owner_id, token=token, created_at=now, expires_at=expires_at
        )
        logger.info("Issued persistent sync token", extra={"owner_id": owner_id})
        return IssuedToken(owner_id=owner_id, token=token, expires_at=expires_at)

    def revoke_persistent_token(self, owner_id: str) -> bool:
        removed = self._store.delete_sync_token_for_owner(owner_id)
        if removed:
            logger.info("Revoked persistent sync token", extra={"owner_id": owner_id})
        else:
            logger.info("No persistent sync token to revoke", extra={"owner_id": owner_id})
        return bool(removed)

    def _purge(self, now: datetime) -> None:
        try:
            self._store.purge_expired(now)
        except StorageError:
            logger.warning("Expired token purge failed", exc_info=True)


__all__ = ["TokenIssuer"]
