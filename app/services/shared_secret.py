"""Shared-secret gate for server-to-server calls."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from app.core.errors import AuthenticationError, ConfigurationError

SYNC_SECRET_HEADER = "X-Sync-Secret"

logger = logging.getLogger(__name__)


class SharedSecretValidator:
    """Compare a presented header value with the configured secret.

    An unset secret is a misconfiguration and rejects every request.
    """

    def __init__(self, secret: Optional[str]) -> None:
        self._secret = secret.encode("utf-8") if secret else None

    @property
    def configured(self) -> bool:
        return self._secret is not None

    def validate(self, presented: Optional[str], *, source: str = "unknown") -> None:
        if self._secret is None:
            logger.critical(
                "SYNC_SHARED_SECRET is not configured; refusing server-to-server call",
                extra={"source": source},
            )
            raise ConfigurationError("Shared secret is not configured.")
        if not presented:
            logger.warning("Missing %s header", SYNC_SECRET_HEADER, extra={"source": source})
            raise AuthenticationError("Missing shared secret.", code="forbidden")
        if not hmac.compare_digest(presented.encode("utf-8"), self._secret):
            logger.warning("Mismatched %s header", SYNC_SECRET_HEADER, extra={"source": source})
            raise AuthenticationError("Shared secret mismatch.", code="forbidden")


__all__ = ["SYNC_SECRET_HEADER", "SharedSecretValidator"]
