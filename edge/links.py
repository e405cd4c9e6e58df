"""SQLite store linking authority owner ids to edge-side identities."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from app.core.errors import StorageError
from app.models.identity import from_storage, to_storage, utcnow
from app.schemas import IdentityRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IdentityLink:
    local_user_id: str
    external_identity_id: str
    username: Optional[str]
    email: Optional[str]
    display_name: Optional[str]
    roles: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    def to_user(self) -> Dict[str, Any]:
        """Identity shape handed to edge clients."""
        return {
            "id": self.external_identity_id,
            "ownerId": self.local_user_id,
            "username": self.username,
            "email": self.email,
            "displayName": self.display_name,
            "roles": list(self.roles),
            "updatedAt": to_storage(self.updated_at) if self.updated_at else None,
        }


class SQLiteIdentityLinkStore:
    """One row per authority owner; the edge identity id never changes once minted."""

    def __init__(self, db_path: str, *, timeout_seconds: float = 10.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout_seconds
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode so ``link`` can hold an explicit IMMEDIATE transaction.
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        try:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS identity_links (
                        local_user_id TEXT PRIMARY KEY,
                        external_identity_id TEXT NOT NULL UNIQUE,
                        username TEXT,
                        email TEXT,
                        display_name TEXT,
                        roles TEXT NOT NULL DEFAULT '[]',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        last_synced_at TEXT NOT NULL
                    )
                    """
                )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"ensure_schema: {exc}") from exc

    def link(
        self,
        local_user_id: str,
        *,
        profile: Optional[IdentityRecord] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[IdentityLink, bool, bool]:
        """Create or refresh the link for ``local_user_id``.

        Returns ``(link, created, profile_changed)``. Concurrent callers for the
        same owner serialize on the write lock, so exactly one of them creates
        the row and every caller sees the same ``external_identity_id``.
        """
        timestamp = to_storage(now or utcnow())
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"link: {exc}") from exc

        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM identity_links WHERE local_user_id = ?",
                (local_user_id,),
            ).fetchone()

            created = row is None
            profile_changed = False
            if created:
                conn.execute(
                    """
                    INSERT INTO identity_links (
                        local_user_id, external_identity_id, username, email,
                        display_name, roles, created_at, updated_at, last_synced_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        local_user_id,
                        str(uuid.uuid4()),
                        profile.username if profile else None,
                        profile.email if profile else None,
                        profile.display_name if profile else None,
                        json.dumps(profile.roles if profile else []),
                        timestamp,
                        timestamp,
                        timestamp,
                    ),
                )
            elif profile is not None:
                current = self._row_to_link(row)
                profile_changed = (
                    current.username != profile.username
                    or current.email != profile.email
                    or current.display_name != profile.display_name
                    or current.roles != list(profile.roles)
                )
                conn.execute(
                    """
                    UPDATE identity_links
                    SET username = ?, email = ?, display_name = ?, roles = ?,
                        updated_at = CASE WHEN ? THEN ? ELSE updated_at END,
                        last_synced_at = ?
                    WHERE local_user_id = ?
                    """,
                    (
                        profile.username,
                        profile.email,
                        profile.display_name,
                        json.dumps(list(profile.roles)),
                        int(profile_changed),
                        timestamp,
                        timestamp,
                        local_user_id,
                    ),
                )
            else:
                conn.execute(
                    "UPDATE identity_links SET last_synced_at = ? WHERE local_user_id = ?",
                    (timestamp, local_user_id),
                )

            row = conn.execute(
                "SELECT * FROM identity_links WHERE local_user_id = ?",
                (local_user_id,),
            ).fetchone()
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StorageError(f"link: {exc}") from exc
        finally:
            conn.close()

        if created:
            logger.info(
                "Linked authority owner to edge identity",
                extra={"owner_id": local_user_id},
            )
        return self._row_to_link(row), created, profile_changed

    def get_by_local_user(self, local_user_id: str) -> Optional[IdentityLink]:
        return self._fetch_one(
            "SELECT * FROM identity_links WHERE local_user_id = ?", (local_user_id,)
        )

    def get_by_external_identity(self, external_identity_id: str) -> Optional[IdentityLink]:
        return self._fetch_one(
            "SELECT * FROM identity_links WHERE external_identity_id = ?",
            (external_identity_id,),
        )

    def count(self) -> int:
        try:
            conn = self._connect()
            try:
                row = conn.execute("SELECT COUNT(*) FROM identity_links").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"count: {exc}") from exc
        return int(row[0])

    def _fetch_one(self, query: str, params: tuple) -> Optional[IdentityLink]:
        try:
            conn = self._connect()
            try:
                row = conn.execute(query, params).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"lookup: {exc}") from exc
        return self._row_to_link(row) if row else None

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> IdentityLink:
        return IdentityLink(
            local_user_id=row["local_user_id"],
            external_identity_id=row["external_identity_id"],
            username=row["username"],
            email=row["email"],
            display_name=row["display_name"],
            roles=json.loads(row["roles"] or "[]"),
            created_at=from_storage(row["created_at"]),
            updated_at=from_storage(row["updated_at"]),
            last_synced_at=from_storage(row["last_synced_at"]),
        )


__all__ = ["IdentityLink", "SQLiteIdentityLinkStore"]
