"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from app.clients import SQLiteAccountDirectory, SQLiteTokenStore
from app.core.config import get_settings
from app.services import (
    EventBus,
    SessionSnapshotProvider,
    SharedSecretValidator,
    SyncTokenLifecycleListener,
    TokenHasherService,
    TokenIssuer,
    TokenValidator,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_store() -> SQLiteTokenStore:
    """Provide the shared token store."""
    return SQLiteTokenStore(_settings().storage.authority_db_path)


@lru_cache()
def get_account_directory() -> SQLiteAccountDirectory:
    """Provide the Identity Authority account and session directory."""
    return SQLiteAccountDirectory(_settings().storage.authority_db_path)


@lru_cache()
def get_token_hasher() -> TokenHasherService:
    """Provide the bcrypt-backed token hasher."""
    return TokenHasherService(rounds=_settings().sync.token_hash_rounds)


@lru_cache()
def get_token_issuer() -> TokenIssuer:
    return TokenIssuer(
        store=get_token_store(),
        hasher=get_token_hasher(),
        settings=_settings().sync,
    )


@lru_cache()
def get_token_validator() -> TokenValidator:
    return TokenValidator(store=get_token_store(), hasher=get_token_hasher())


@lru_cache()
def get_shared_secret_validator() -> SharedSecretValidator:
    return SharedSecretValidator(_settings().sync.shared_secret)


@lru_cache()
def get_session_snapshot_provider() -> SessionSnapshotProvider:
    return SessionSnapshotProvider(
        directory=get_account_directory(),
        settings=_settings().sync,
    )


@lru_cache()
def get_event_bus() -> EventBus:
    """Provide the event bus with the sync token lifecycle listener attached."""
    bus = EventBus()
    SyncTokenLifecycleListener(get_token_issuer()).register(bus)
    return bus


__all__ = [
    "get_account_directory",
    "get_event_bus",
    "get_session_snapshot_provider",
    "get_shared_secret_validator",
    "get_token_hasher",
    "get_token_issuer",
    "get_token_store",
    "get_token_validator",
]
