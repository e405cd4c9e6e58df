"""SQLite-backed account directory and browser session storage."""

from __future__ import annotations

import hashlib
import json
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from app.core.errors import DuplicateAccountError, StorageError
from app.models.identity import (
    Account,
    SessionRecord,
    from_storage,
    to_storage,
    utcnow,
)


def _session_digest(session_key: str) -> str:
    return hashlib.sha256(session_key.encode("utf-8")).hexdigest()


class SQLiteAccountDirectory:
    """Accounts and live sessions owned by the Identity Authority.

    The browser cookie carries an opaque session key; only its SHA-256 digest
    is stored.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"{operation}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"{operation}: {exc}") from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._transaction("ensure_schema") as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL,
                    display_name TEXT NOT NULL DEFAULT '',
                    roles TEXT NOT NULL DEFAULT '[]',
                    avatar_url TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    password_hash TEXT,
                    registered_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_sessions_owner ON sessions (owner_id)"
            )

    # Accounts --------------------------------------------------------------

    def create_account(
        self,
        *,
        username: str,
        email: str,
        display_name: str = "",
        roles: Optional[List[str]] = None,
        avatar_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        password_hash: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> Account:
        account = Account(
            id=account_id or uuid4().hex,
            username=username,
            email=email,
            display_name=display_name,
            roles=list(roles or []),
            avatar_url=avatar_url,
            metadata=dict(metadata or {}),
            password_hash=password_hash,
        )
        with self._transaction("create_account") as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO accounts (
                        id, username, email, display_name, roles, avatar_url,
                        metadata, password_hash, registered_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        account.id,
                        account.username,
                        account.email,
                        account.display_name,
                        json.dumps(account.roles),
                        account.avatar_url,
                        json.dumps(account.metadata),
                        account.password_hash,
                        to_storage(account.registered_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateAccountError(f"create_account: {exc}") from exc
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._transaction("get_account") as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def find_by_username(self, username: str) -> Optional[Account]:
        with self._transaction("find_by_username") as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE username = ?", (username,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    # Sessions --------------------------------------------------------------

    def open_session(
        self, owner_id: str, *, ttl_seconds: int, now: Optional[datetime] = None
    ) -> str:
        """Create a session and return the opaque key for the browser cookie."""
        now = now or utcnow()
        session_key = secrets.token_urlsafe(32)
        with self._transaction("open_session") as conn:
            conn.execute(
                """
                INSERT INTO sessions (session_id, owner_id, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    _session_digest(session_key),
                    owner_id,
                    to_storage(now),
                    to_storage(now + timedelta(seconds=ttl_seconds)),
                ),
            )
        return session_key

    def resolve_session(
        self, session_key: str, *, now: Optional[datetime] = None
    ) -> Optional[Account]:
        """Return the account behind a live session key."""
        now = now or utcnow()
        with self._transaction("resolve_session") as conn:
            row = conn.execute(
                """
                SELECT owner_id FROM sessions
                WHERE session_id = ? AND expires_at > ?
                """,
                (_session_digest(session_key), to_storage(now)),
            ).fetchone()
        if not row:
            return None
        return self.get_account(row["owner_id"])

    def close_session(self, session_key: str) -> Optional[str]:
        """Delete a session and return its owner, if it existed."""
        digest = _session_digest(session_key)
        with self._transaction("close_session") as conn:
            row = conn.execute(
                "SELECT owner_id FROM sessions WHERE session_id = ?", (digest,)
            ).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM sessions WHERE session_id = ?", (digest,))
        return row["owner_id"]

    def recent_session_owners(self, limit: int) -> List[str]:
        """Owners with any session rows, most recently created first."""
        with self._transaction("recent_session_owners") as conn:
            rows = conn.execute(
                """
                SELECT owner_id, MAX(created_at) AS last_created FROM sessions
                GROUP BY owner_id
                ORDER BY last_created DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [row["owner_id"] for row in rows]

    def sessions_for(self, owner_id: str) -> List[SessionRecord]:
        with self._transaction("sessions_for") as conn:
            rows = conn.execute(
                "SELECT owner_id, expires_at FROM sessions WHERE owner_id = ?",
                (owner_id,),
            ).fetchall()
        return [
            SessionRecord(
                owner_id=row["owner_id"], expires_at=from_storage(row["expires_at"])
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            display_name=row["display_name"],
            roles=json.loads(row["roles"]),
            avatar_url=row["avatar_url"],
            metadata=json.loads(row["metadata"]),
            password_hash=row["password_hash"],
            registered_at=from_storage(row["registered_at"]),
        )


__all__ = ["SQLiteAccountDirectory"]
