"""Expose storage client wrappers."""

from .accounts import SQLiteAccountDirectory
from .token_store import SQLiteTokenStore

__all__ = [
    "SQLiteAccountDirectory",
    "SQLiteTokenStore",
]
