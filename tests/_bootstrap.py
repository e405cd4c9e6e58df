"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

_DATA_DIR = Path(tempfile.mkdtemp(prefix="identity-sync-tests-"))

_DEFAULT_ENV_VARS: dict[str, str] = {
    "SYNC_SHARED_SECRET": "test-shared-secret",
    "SYNC_TOKEN_HASH_ROUNDS": "4",
    "AUTHORITY_DB_PATH": str(_DATA_DIR / "authority.sqlite3"),
    "EDGE_DB_PATH": str(_DATA_DIR / "edge.sqlite3"),
    "EDGE_CACHE_PATH": str(_DATA_DIR / "identity-cache.json"),
    "EDGE_APP_BASE_URL": "http://edge.test",
    "AUTHORITY_BASE_URL": "http://authority.test",
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
