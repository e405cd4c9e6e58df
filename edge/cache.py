"""On-disk cache of the last identity the sync loop saw.

The cache is display data for degraded mode only. It never holds a token and
is never sent anywhere as proof of who the user is.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from app.models.identity import from_storage, to_storage, utcnow

logger = logging.getLogger(__name__)

CACHE_KEY = "last_known_identity"
_TOKEN_FIELDS = frozenset(
    {"syncToken", "sync_token", "token", "exchangeToken", "sessionKey", "session_key"}
)


@dataclass(slots=True)
class CachedIdentity:
    snapshot: Dict[str, Any]
    fetched_at: datetime


def _strip_tokens(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: _strip_tokens(item)
            for key, item in value.items()
            if key not in _TOKEN_FIELDS
        }
    if isinstance(value, list):
        return [_strip_tokens(item) for item in value]
    return value


class IdentityCache:
    def __init__(self, path: str) -> None:
        self._path = Path(path)

    def load(self) -> Optional[CachedIdentity]:
        if not self._path.exists():
            return None
        try:
            entries = json.loads(self._path.read_text(encoding="utf-8"))
            entry = entries.get(CACHE_KEY)
            if not entry:
                return None
            return CachedIdentity(
                snapshot=entry["snapshot"],
                fetched_at=from_storage(entry["fetchedAt"]),
            )
        except (OSError, ValueError, KeyError, AttributeError, TypeError):
            logger.warning("Identity cache unreadable; ignoring", exc_info=True)
            return None

    def store(self, snapshot: Dict[str, Any], *, now: Optional[datetime] = None) -> CachedIdentity:
        cached = CachedIdentity(snapshot=_strip_tokens(snapshot), fetched_at=now or utcnow())
        self._write(
            {
                CACHE_KEY: {
                    "snapshot": cached.snapshot,
                    "fetchedAt": to_storage(cached.fetched_at),
                }
            }
        )
        return cached

    def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return

    def _write(self, entries: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)


__all__ = ["CACHE_KEY", "CachedIdentity", "IdentityCache"]
