"""
Validate presented sync tokens and resolve the owning identity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from app.clients.token_store import SQLiteTokenStore
from app.core.errors import StorageError
from app.models.identity import utcnow
from app.services.token_hasher import LOOKUP_PREFIX_LENGTH, TokenHasherService

logger = logging.getLogger(__name__)


class InvalidReason(str, Enum):
    """Why a token was refused. Logged only, never returned to callers."""

    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    HASH_MISMATCH = "hash_mismatch"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"


@dataclass(frozen=True, slots=True)
class ValidationResult:
    owner_id: Optional[str] = None
    reason: Optional[InvalidReason] = None

    @property
    def valid(self) -> bool:
        return self.owner_id is not None

    @classmethod
    def invalid(cls, reason: InvalidReason) -> "ValidationResult":
        return cls(reason=reason)


class TokenValidator:
    """Checks both token variants and enforces their consumption rules."""

    def __init__(
        self,
        store: SQLiteTokenStore,
        hasher: TokenHasherService,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._clock = clock

    def validate_exchange_token(self, token: str) -> ValidationResult:
        """Consume a single-use token. At most one call per token succeeds."""
        if not token or len(token) <= LOOKUP_PREFIX_LENGTH:
            return self._reject("exchange", InvalidReason.MALFORMED)

        candidates = self._store.exchange_candidates(self._hasher.lookup_prefix(token))
        if not candidates:
            return self._reject("exchange", InvalidReason.NOT_FOUND)

        match = next(
            (row for row in candidates if self._hasher.verify(token, row.token_hash)),
            None,
        )
        if match is None:
            return self._reject("exchange", InvalidReason.HASH_MISMATCH)

        now = self._clock()
        if match.is_expired(now):
            self._discard(match.id)
            return self._reject("exchange", InvalidReason.EXPIRED, owner_id=match.owner_id)

        if not self._store.claim_exchange_token(match.id, consumed_at=now):
            return self._reject(
                "exchange", InvalidReason.ALREADY_CONSUMED, owner_id=match.owner_id
            )

        # The claim already decided the outcome; the row is gone for replay
        # purposes whether or not the physical delete lands.
        try:
            self._store.delete_exchange_token(match.id)
        except StorageError:
            logger.error(
                "Consumed exchange token could not be deleted",
                extra={"owner_id": match.owner_id, "token_id": match.id},
                exc_info=True,
            )

        logger.info("Exchange token validated", extra={"owner_id": match.owner_id})
        return ValidationResult(owner_id=match.owner_id)

    def validate_persistent_token(self, token: str) -> ValidationResult:
        """Look up a persistent token by value. Valid tokens are not deleted."""
        if not token:
            return self._reject("persistent", InvalidReason.MALFORMED)

        record = self._store.get_sync_token(token)
        if record is None:
            return self._reject("persistent", InvalidReason.NOT_FOUND)
        if record.is_expired(self._clock()):
            return self._reject(
                "persistent", InvalidReason.EXPIRED, owner_id=record.owner_id
            )

        logger.info("Persistent sync token validated", extra={"owner_id": record.owner_id})
        return ValidationResult(owner_id=record.owner_id)

    def _discard(self, token_id: int) -> None:
        try:
            self._store.delete_exchange_token(token_id)
        except StorageError:
            logger.warning("Expired exchange token cleanup failed", exc_info=True)

    @staticmethod
    def _reject(
        variant: str, reason: InvalidReason, *, owner_id: Optional[str] = None
    ) -> ValidationResult:
        logger.warning(
            "Sync token rejected",
            extra={"variant": variant, "reason": reason.value, "owner_id": owner_id},
        )
        return ValidationResult.invalid(reason)


__all__ = ["InvalidReason", "TokenValidator", "ValidationResult"]
