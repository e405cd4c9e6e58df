"""
Client-resident identity sync loop.

Reconciles on start, re-reconciles whenever the push stream reports an update
(and optionally on a timer), and falls back to the cached identity when the
edge app cannot be reached. All triggers share one non-overlapping reconcile.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from app.core.errors import AuthenticationError, SyncError, TransientNetworkError
from edge.cache import IdentityCache
from edge.client import EdgeApiClient

logger = logging.getLogger(__name__)

RECONNECT_NOTICE = "Reconnecting…"
UPDATED_NOTICE = "Your account details were updated."
OFFLINE_NOTICE = "Offline: showing your last known account."


class SyncState(str, enum.Enum):
    IDLE = "idle"
    RECONCILING = "reconciling"
    SYNCED = "synced"
    DEGRADED = "degraded"


class ViewNotifier(Protocol):
    def invalidate(self) -> None: ...

    def notice(self, message: str) -> None: ...


class LoggingNotifier:
    """Default notifier for headless use; remembers what it was told."""

    def __init__(self) -> None:
        self.notices: List[str] = []
        self.invalidations = 0

    def invalidate(self) -> None:
        self.invalidations += 1
        logger.info("Identity view invalidated")

    def notice(self, message: str) -> None:
        self.notices.append(message)
        logger.info("Sync notice: %s", message)


class EdgeSyncLoop:
    def __init__(
        self,
        client: EdgeApiClient,
        cache: IdentityCache,
        *,
        sync_token: Optional[str] = None,
        notifier: Optional[ViewNotifier] = None,
        reconnect_seconds: float = 5.0,
        poll_interval_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._sync_token = sync_token
        self._notifier = notifier or LoggingNotifier()
        self._reconnect_seconds = reconnect_seconds
        self._poll_interval = poll_interval_seconds
        self._sleep = sleep

        self.state = SyncState.IDLE
        self.identity: Optional[Dict[str, Any]] = None
        # Only identities confirmed by the edge app in this process; never the cache.
        self._verified: Optional[Dict[str, Any]] = None
        self._verified_event = asyncio.Event()

        self._inflight: Optional[asyncio.Future] = None
        self._rerun = False
        self._tasks: List[asyncio.Task] = []

    @property
    def signed_in(self) -> bool:
        return self.identity is not None

    def set_sync_token(self, sync_token: Optional[str]) -> None:
        self._sync_token = sync_token

    async def start(self) -> SyncState:
        """Reconcile once, then keep the push stream (and poller) running."""
        state = await self.reconcile()
        self._tasks.append(asyncio.create_task(self._subscribe_loop()))
        if self._poll_interval:
            self._tasks.append(asyncio.create_task(self._poll_loop()))
        return state

    async def stop(self) -> None:
        tasks = list(self._tasks)
        if self._inflight is not None and not self._inflight.done():
            tasks.append(self._inflight)
        self._tasks = []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def reconcile(self) -> SyncState:
        """Run a reconcile, or join the one in flight and ask it to run again."""
        if self._inflight is not None and not self._inflight.done():
            self._rerun = True
            return await asyncio.shield(self._inflight)
        self._inflight = asyncio.ensure_future(self._run_coalesced())
        return await asyncio.shield(self._inflight)

    async def _run_coalesced(self) -> SyncState:
        while True:
            self._rerun = False
            state = await self._reconcile_once()
            if not self._rerun:
                return state

    async def _reconcile_once(self) -> SyncState:
        if not self._sync_token:
            self._sign_out()
            return self.state

        self.state = SyncState.RECONCILING
        known = self._verified or {}
        try:
            result = await self._client.reconcile(
                self._sync_token,
                known_user_id=known.get("id"),
                known_updated_at=known.get("updatedAt"),
            )
        except AuthenticationError:
            logger.info("Sync token rejected; signing out")
            self._sign_out()
            return self.state
        except SyncError as exc:
            self._degrade(exc)
            return self.state

        user = result.get("user")
        if not result.get("valid") or not user:
            self._sign_out()
            return self.state

        self._verified = user
        self._verified_event.set()
        self.identity = user
        self._cache.store(user)
        self.state = SyncState.SYNCED
        if result.get("changed"):
            self._notifier.invalidate()
            self._notifier.notice(UPDATED_NOTICE)
        return self.state

    def _sign_out(self) -> None:
        had_identity = self.identity is not None
        self._sync_token = None
        self._verified = None
        self._verified_event.clear()
        self.identity = None
        self._cache.clear()
        self.state = SyncState.IDLE
        if had_identity:
            self._notifier.invalidate()

    def _degrade(self, exc: SyncError) -> None:
        logger.warning("Reconcile failed", extra={"error": exc.code})
        self.state = SyncState.DEGRADED
        if self._verified is not None:
            self.identity = self._verified
            self._notifier.notice(OFFLINE_NOTICE)
            return
        cached = self._cache.load()
        if cached is not None:
            self.identity = cached.snapshot
            self._notifier.invalidate()
            self._notifier.notice(OFFLINE_NOTICE)

    async def _subscribe_loop(self) -> None:
        while True:
            if self._verified is None:
                if self.state is SyncState.DEGRADED:
                    # Nothing confirmed yet, so there is no stream to open; keep retrying.
                    self._notifier.notice(RECONNECT_NOTICE)
                    await self._sleep(self._reconnect_seconds)
                    await self.reconcile()
                    continue
                await self._verified_event.wait()
                continue

            user_id = self._verified["id"]
            try:
                async with contextlib.aclosing(self._client.stream_events(user_id)) as events:
                    async for event in events:
                        await self._handle_event(event)
                        if self._verified is None or self._verified["id"] != user_id:
                            break
            except TransientNetworkError as exc:
                logger.info("Sync stream dropped", extra={"error": exc.message})

            if self._verified is None or self._verified["id"] != user_id:
                continue
            self._notifier.notice(RECONNECT_NOTICE)
            await self._sleep(self._reconnect_seconds)
            # Updates may have been missed while disconnected.
            await self.reconcile()

    async def _handle_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "user-update":
            await self.reconcile()
        elif event_type != "connection-ready":
            logger.debug("Ignoring sync event", extra={"event_type": event_type})

    async def _poll_loop(self) -> None:
        while True:
            await self._sleep(self._poll_interval)
            await self.reconcile()


__all__ = [
    "EdgeSyncLoop",
    "LoggingNotifier",
    "OFFLINE_NOTICE",
    "RECONNECT_NOTICE",
    "SyncState",
    "UPDATED_NOTICE",
    "ViewNotifier",
]
