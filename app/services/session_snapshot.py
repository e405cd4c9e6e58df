"""
Point-in-time snapshot of live Identity Authority sessions.

The snapshot is a poll, not a subscription: it races with concurrent logins
and logouts and callers must invoke it periodically.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List

from app.clients.accounts import SQLiteAccountDirectory
from app.core.config import SyncSettings
from app.core.errors import NoActiveSessionsError, NoEligibleSessionsError
from app.models.identity import utcnow

logger = logging.getLogger(__name__)


class SessionSnapshotProvider:
    """Return identity records for live, role-eligible accounts."""

    def __init__(
        self,
        directory: SQLiteAccountDirectory,
        settings: SyncSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._directory = directory
        self._allowed_roles = frozenset(settings.auto_sync_roles)
        self._limit = settings.snapshot_limit
        self._clock = clock

    def snapshot(self) -> List[Dict[str, Any]]:
        owner_ids = self._directory.recent_session_owners(self._limit)
        if not owner_ids:
            logger.info("No session rows found for snapshot")
            raise NoActiveSessionsError("No accounts have session records.")

        now = self._clock()
        live = 0
        records: List[Dict[str, Any]] = []
        for owner_id in owner_ids:
            account = self._directory.get_account(owner_id)
            if account is None:
                logger.debug("Session owner has no account", extra={"owner_id": owner_id})
                continue
            if not self._has_live_session(self._directory.sessions_for(owner_id), now):
                logger.debug("Only expired sessions", extra={"owner_id": owner_id})
                continue
            live += 1
            matching = self._allowed_roles.intersection(account.roles)
            if not matching:
                logger.debug(
                    "Roles not in auto-sync allow-list",
                    extra={"owner_id": owner_id, "roles": account.roles},
                )
                continue
            records.append(account.to_identity_record())

        if not live:
            raise NoActiveSessionsError("All session records are expired.")
        if not records:
            raise NoEligibleSessionsError("No live account has an auto-sync role.")

        logger.info("Session snapshot built", extra={"count": len(records)})
        return records

    @staticmethod
    def _has_live_session(sessions: Iterable[Any], now: datetime) -> bool:
        return any(session.expires_at > now for session in sessions)


__all__ = ["SessionSnapshotProvider"]
