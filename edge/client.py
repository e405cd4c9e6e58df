"""HTTP client used by the client-resident sync loop to talk to the edge app."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import parse_qs, urlsplit

import httpx

from app.core.errors import AuthenticationError, SyncError, TransientNetworkError
from app.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

SYNC_TOKEN_PARAM = "sync_token"


def extract_sync_token(url: str) -> Optional[str]:
    """Pull the persistent sync token off a post-login redirect URL."""
    values = parse_qs(urlsplit(url).query).get(SYNC_TOKEN_PARAM)
    return values[0] if values else None


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[Dict[str, Any]]:
    """Decode ``data:`` frames from a server-sent event line stream.

    Comment lines (keepalives) are skipped; frames that are not JSON are
    logged and dropped.
    """
    buffer: list[str] = []
    async for line in lines:
        if not line:
            if buffer:
                raw = "\n".join(buffer)
                buffer = []
                try:
                    yield json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed sync event")
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            buffer.append(line[5:].lstrip())


class EdgeApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._retry = retry_config or RetryConfig()
        self._timeout = timeout_seconds

    async def reconcile(
        self,
        sync_token: str,
        *,
        known_user_id: Optional[str] = None,
        known_updated_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST ``/api/auth/sync``; returns ``{valid, changed, user}``."""
        body: Dict[str, Any] = {"syncToken": sync_token}
        if known_user_id:
            body["knownUserId"] = known_user_id
        if known_updated_at:
            body["knownUpdatedAt"] = known_updated_at

        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await request_with_retry(
                client.post, "/api/auth/sync", json=body, retry_config=self._retry
            )

        if response.status_code == 401:
            raise AuthenticationError("Sync token rejected.")
        if not response.is_success:
            raise SyncError(
                f"Edge sync answered {response.status_code}.", code="sync_failed"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SyncError(
                "Edge sync answered with a non-JSON body.", code="sync_failed"
            ) from exc

    async def stream_events(self, user_id: str) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded events from ``/api/auth/sync-stream`` until it closes."""
        timeout = httpx.Timeout(self._timeout, read=None)
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=timeout, transport=self._transport
            ) as client:
                async with client.stream(
                    "GET", "/api/auth/sync-stream", params={"userId": user_id}
                ) as response:
                    if response.status_code != 200:
                        raise TransientNetworkError(
                            f"Sync stream answered {response.status_code}."
                        )
                    async for event in iter_sse_events(response.aiter_lines()):
                        yield event
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Sync stream dropped: {exc}") from exc


__all__ = ["EdgeApiClient", "SYNC_TOKEN_PARAM", "extract_sync_token", "iter_sse_events"]
