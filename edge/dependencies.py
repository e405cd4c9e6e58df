"""
Factory functions providing the edge application's shared collaborators.
"""

from functools import lru_cache

from app.core.config import get_settings
from edge.authority import IdentityAuthorityClient
from edge.broadcaster import SyncBroadcaster
from edge.links import SQLiteIdentityLinkStore
from edge.reconciler import EdgeReconciler
from edge.signing import SignedPayloadEncoder


@lru_cache()
def _settings():
    return get_settings()


def get_edge_settings():
    return _settings().edge


@lru_cache()
def get_authority_client() -> IdentityAuthorityClient:
    """Provide the secret-bearing authority client."""
    settings = _settings()
    return IdentityAuthorityClient(settings.edge, settings.sync.shared_secret)


@lru_cache()
def get_link_store() -> SQLiteIdentityLinkStore:
    return SQLiteIdentityLinkStore(_settings().storage.edge_db_path)


@lru_cache()
def get_broadcaster() -> SyncBroadcaster:
    return SyncBroadcaster(keepalive_seconds=_settings().edge.stream_keepalive_seconds)


@lru_cache()
def get_reconciler() -> EdgeReconciler:
    return EdgeReconciler(
        authority=get_authority_client(),
        links=get_link_store(),
        broadcaster=get_broadcaster(),
    )


@lru_cache()
def get_session_encoder() -> SignedPayloadEncoder:
    """Sign edge session cookies, falling back to the shared secret."""
    settings = _settings()
    return SignedPayloadEncoder(settings.edge.session_secret or settings.sync.shared_secret)


__all__ = [
    "get_authority_client",
    "get_broadcaster",
    "get_edge_settings",
    "get_link_store",
    "get_reconciler",
    "get_session_encoder",
]
