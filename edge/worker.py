"""Background poller that keeps edge identity links in step with the authority."""

from __future__ import annotations

import asyncio
import logging

from app.core.config import get_settings
from app.core.errors import SyncError
from app.core.logging import configure_logging
from edge.authority import IdentityAuthorityClient
from edge.links import SQLiteIdentityLinkStore
from edge.reconciler import EdgeReconciler

logger = logging.getLogger(__name__)


class SnapshotPoller:
    """Call ``reconcile_snapshot`` on a fixed interval until cancelled."""

    def __init__(self, reconciler: EdgeReconciler, poll_interval_seconds: float) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        self._reconciler = reconciler
        self._poll_interval = poll_interval_seconds

    async def run_forever(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> int:
        try:
            return await self._reconciler.reconcile_snapshot()
        except SyncError as exc:
            logger.warning(
                "Snapshot poll failed",
                extra={"error": exc.code, "detail": exc.message},
            )
            return 0


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    reconciler = EdgeReconciler(
        authority=IdentityAuthorityClient(
            settings.edge, settings.sync.shared_secret, request_source="edge-poller"
        ),
        links=SQLiteIdentityLinkStore(settings.storage.edge_db_path),
    )
    poller = SnapshotPoller(
        reconciler,
        poll_interval_seconds=settings.edge.snapshot_poll_seconds or 30.0,
    )
    await poller.run_forever()


if __name__ == "__main__":  # pragma: no cover - manual execution path
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Snapshot poller stopped")
