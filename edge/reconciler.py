"""
Edge-side reconciliation against the Identity Authority.

The authority is the source of truth; the link store only remembers which
edge identity belongs to which authority owner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.errors import NotFoundError
from app.models.identity import from_storage
from edge.authority import IdentityAuthorityClient
from edge.broadcaster import SyncBroadcaster
from edge.links import IdentityLink, SQLiteIdentityLinkStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileOutcome:
    user: Dict[str, Any]
    changed: bool
    link: IdentityLink


class EdgeReconciler:
    """Turn authority answers into edge identity links."""

    def __init__(
        self,
        authority: IdentityAuthorityClient,
        links: SQLiteIdentityLinkStore,
        broadcaster: Optional[SyncBroadcaster] = None,
    ) -> None:
        self._authority = authority
        self._links = links
        self._broadcaster = broadcaster

    async def reconcile(
        self,
        sync_token: str,
        *,
        known_user_id: Optional[str] = None,
        known_updated_at: Optional[str] = None,
    ) -> ReconcileOutcome:
        """Resolve ``sync_token`` to an edge identity.

        ``AuthenticationError`` and ``TransientNetworkError`` from the authority
        propagate unchanged so the route can map them.
        """
        owner = await self._authority.validate_persistent_token(sync_token)
        link, created, profile_changed = self._links.link(
            owner.owner_id, profile=owner.profile
        )
        if created or profile_changed:
            self._notify(link)
        changed = (
            created
            or known_user_id != link.external_identity_id
            or _is_newer(link.updated_at, known_updated_at)
        )
        return ReconcileOutcome(user=link.to_user(), changed=changed, link=link)

    async def accept_exchange_token(self, token: str) -> IdentityLink:
        """Consume a one-time exchange token and link its owner."""
        owner = await self._authority.validate_exchange_token(token)
        link, _, _ = self._links.link(owner.owner_id, profile=owner.profile)
        self._notify(link)
        return link

    async def reconcile_snapshot(self) -> int:
        """Pull the authority's session snapshot and refresh matching links.

        Returns how many links were created or had their profile changed.
        """
        try:
            records = await self._authority.active_sessions()
        except NotFoundError as exc:
            logger.info("No sessions to reconcile", extra={"reason": exc.code})
            return 0

        changed: List[IdentityLink] = []
        for record in records:
            link, created, profile_changed = self._links.link(record.external_id, profile=record)
            if created or profile_changed:
                changed.append(link)
                self._notify(link)
        logger.info(
            "Snapshot reconciled",
            extra={"records": len(records), "changed": len(changed)},
        )
        return len(changed)

    def _notify(self, link: IdentityLink) -> None:
        if self._broadcaster is not None:
            self._broadcaster.publish_update(link.external_identity_id, link.updated_at)


def _is_newer(updated_at: Optional[datetime], known_updated_at: Optional[str]) -> bool:
    if updated_at is None or not known_updated_at:
        return False
    try:
        return updated_at > from_storage(known_updated_at)
    except ValueError:
        return True


__all__ = ["EdgeReconciler", "ReconcileOutcome"]
