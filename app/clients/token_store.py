"""SQLite-backed store for exchange and persistent sync tokens."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from app.core.errors import StorageError
from app.models.identity import ExchangeToken, SyncToken, from_storage, to_storage

logger = logging.getLogger(__name__)


class SQLiteTokenStore:
    """Dedicated token tables with explicit create/get/delete/upsert operations.

    Every public method opens its own connection so concurrent request
    handlers never share a cursor; SQLite's write lock serialises the
    conditional updates that decide token ownership.
    """

    def __init__(self, db_path: str, *, timeout_seconds: float = 10.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout_seconds
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path, timeout=self._timeout, check_same_thread=False
        )
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
                CREATE TABLE IF NOT EXISTS exchange_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    lookup_prefix TEXT NOT NULL,
                    token_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    consumed_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS ix_exchange_tokens_prefix
                ON exchange_tokens (lookup_prefix)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL UNIQUE,
                    token TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
                """
            )

    # Exchange tokens -----------------------------------------------------

    def create_exchange_token(
        self,
        *,
        owner_id: str,
        lookup_prefix: str,
        token_hash: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> int:
        with self._transaction("create_exchange_token") as conn:
            cursor = conn.execute(
                """
                INSERT INTO exchange_tokens (
                    owner_id, lookup_prefix, token_hash, created_at, expires_at
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    owner_id,
                    lookup_prefix,
                    token_hash,
                    to_storage(created_at),
                    to_storage(expires_at),
                ),
            )
            return int(cursor.lastrowid)

    def exchange_candidates(self, lookup_prefix: str) -> list[ExchangeToken]:
        """Return unconsumed rows sharing ``lookup_prefix``, expired ones included."""
        with self._transaction("exchange_candidates") as conn:
            rows = conn.execute(
                """
                SELECT * FROM exchange_tokens
                WHERE lookup_prefix = ? AND consumed_at IS NULL
                ORDER BY id
                """,
                (lookup_prefix,),
            ).fetchall()
        return [self._row_to_exchange(row) for row in rows]

    def claim_exchange_token(self, token_id: int, *, consumed_at: datetime) -> bool:
        """Mark a row consumed; only one caller ever receives ``True``."""
        with self._transaction("claim_exchange_token") as conn:
            cursor = conn.execute(
                """
                UPDATE exchange_tokens SET consumed_at = ?
                WHERE id = ? AND consumed_at IS NULL
                """,
                (to_storage(consumed_at), token_id),
            )
            return cursor.rowcount == 1

    def delete_exchange_token(self, token_id: int) -> None:
        with self._transaction("delete_exchange_token") as conn:
            conn.execute("DELETE FROM exchange_tokens WHERE id = ?", (token_id,))

    def count_exchange_tokens(self, owner_id: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM exchange_tokens"
        params: tuple = ()
        if owner_id is not None:
            query += " WHERE owner_id = ?"
            params = (owner_id,)
        with self._transaction("count_exchange_tokens") as conn:
            return int(conn.execute(query, params).fetchone()[0])

    # Persistent sync tokens ---------------------------------------------

    def upsert_sync_token(
        self,
        *,
        owner_id: str,
        token: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> None:
        with self._transaction("upsert_sync_token") as conn:
            conn.execute(
                """
                INSERT INTO sync_tokens (owner_id, token, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    token = excluded.token,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at
                """,
                (owner_id, token, to_storage(created_at), to_storage(expires_at)),
            )

    def get_sync_token(self, token: str) -> Optional[SyncToken]:
        with self._transaction("get_sync_token") as conn:
            row = conn.execute(
                "SELECT * FROM sync_tokens WHERE token = ?", (token,)
            ).fetchone()
        if not row:
            return None
        return self._row_to_sync(row)

    def get_sync_token_for_owner(self, owner_id: str) -> Optional[SyncToken]:
        with self._transaction("get_sync_token_for_owner") as conn:
            row = conn.execute(
                "SELECT * FROM sync_tokens WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        if not row:
            return None
        return self._row_to_sync(row)

    def delete_sync_token_for_owner(self, owner_id: str) -> int:
        with self._transaction("delete_sync_token_for_owner") as conn:
            cursor = conn.execute(
                "DELETE FROM sync_tokens WHERE owner_id = ?", (owner_id,)
            )
            return cursor.rowcount

    # Hygiene ---------------------------------------------------------------

    def purge_expired(self, now: datetime) -> int:
        """Drop rows past expiry plus consumed exchange rows left behind."""
        threshold = to_storage(now)
        with self._transaction("purge_expired") as conn:
            removed = conn.execute(
                """
                DELETE FROM exchange_tokens
                WHERE expires_at <= ? OR consumed_at IS NOT NULL
                """,
                (threshold,),
            ).rowcount
            removed += conn.execute(
                "DELETE FROM sync_tokens WHERE expires_at <= ?", (threshold,)
            ).rowcount
        if removed:
            logger.debug("Purged expired sync tokens", extra={"removed": removed})
        return removed

    @staticmethod
    def _row_to_exchange(row: sqlite3.Row) -> ExchangeToken:
        return ExchangeToken(
            id=row["id"],
            owner_id=row["owner_id"],
            lookup_prefix=row["lookup_prefix"],
            token_hash=row["token_hash"],
            created_at=from_storage(row["created_at"]),
            expires_at=from_storage(row["expires_at"]),
            consumed_at=(
                from_storage(row["consumed_at"]) if row["consumed_at"] else None
            ),
        )

    @staticmethod
    def _row_to_sync(row: sqlite3.Row) -> SyncToken:
        return SyncToken(
            id=row["id"],
            owner_id=row["owner_id"],
            token=row["token"],
            created_at=from_storage(row["created_at"]),
            expires_at=from_storage(row["expires_at"]),
        )


__all__ = ["SQLiteTokenStore"]
