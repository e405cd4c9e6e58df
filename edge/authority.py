"""
HTTP client the edge application uses to reach the Identity Authority.

Every call carries the shared secret; none relies on a browser cookie except
``validate_session``, which forwards the caller's own authority cookie.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import EdgeSettings
from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    NoActiveSessionsError,
    NoEligibleSessionsError,
    SyncError,
)
from app.schemas import IdentityRecord
from app.services.shared_secret import SYNC_SECRET_HEADER
from app.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

_NOT_FOUND_ERRORS = {
    NoActiveSessionsError.code: NoActiveSessionsError,
    NoEligibleSessionsError.code: NoEligibleSessionsError,
}


@dataclass(frozen=True, slots=True)
class TokenOwner:
    """Owner behind a validated token, with the profile the authority shared."""

    owner_id: str
    profile: Optional[IdentityRecord] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "TokenOwner":
        user = data.get("user")
        return cls(
            owner_id=str(data["ownerId"]),
            profile=IdentityRecord.model_validate(user) if user else None,
        )


class IdentityAuthorityClient:
    """Secret-gated calls to the authority's ``/sync`` endpoints."""

    def __init__(
        self,
        settings: EdgeSettings,
        shared_secret: Optional[str],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
        request_source: str = "edge",
    ) -> None:
        self._base_url = str(settings.authority_base_url).rstrip("/")
        self._secret = shared_secret
        self._transport = transport
        self._retry = retry_config or RetryConfig(
            attempts=settings.request_attempts,
            backoff_seconds=settings.request_backoff_seconds,
        )
        self._request_source = request_source

    def _headers(self) -> Dict[str, str]:
        if not self._secret:
            raise ConfigurationError("SYNC_SHARED_SECRET is not configured on the edge.")
        return {SYNC_SECRET_HEADER: self._secret, "X-Request-Source": self._request_source}

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        *,
        cookie_header: Optional[str] = None,
        idempotent: bool = True,
    ) -> Dict[str, Any]:
        headers = self._headers()
        if cookie_header:
            headers["Cookie"] = cookie_header
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=10.0, transport=self._transport
        ) as client:
            response = await request_with_retry(
                client.post,
                path,
                json=payload,
                headers=headers,
                retry_config=self._retry,
                idempotent=idempotent,
            )

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Authority refused {path} with {response.status_code}.",
                code="invalid_token" if response.status_code == 401 else "forbidden",
            )
        if not response.is_success:
            raise SyncError(
                f"Authority answered {path} with {response.status_code}.",
                code="authority_error",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SyncError(
                f"Authority answered {path} with a non-JSON body.", code="authority_error"
            ) from exc

    async def active_sessions(self) -> List[IdentityRecord]:
        """Fetch the authority's current session snapshot."""
        data = await self._post(
            "/sync/active-sessions",
            {"requestSource": self._request_source, "timestamp": int(time.time() * 1000)},
        )
        if not data.get("success"):
            logger.info("Authority snapshot empty", extra={"error": data.get("error")})
            error_type = _NOT_FOUND_ERRORS.get(data.get("error"), NoActiveSessionsError)
            raise error_type(f"Snapshot empty: {data.get('error')}")
        return [IdentityRecord.model_validate(item) for item in data.get("activeSessions", [])]

    async def validate_exchange_token(self, token: str) -> TokenOwner:
        """Consume a one-time exchange token and return its owner.

        The authority deletes the token on first sight, so a lost response is
        not retried.
        """
        data = await self._post("/sync/validate-token", {"token": token}, idempotent=False)
        return TokenOwner.from_response(data)

    async def validate_persistent_token(self, token: str) -> TokenOwner:
        data = await self._post("/sync/validate-persistent-token", {"token": token})
        if not data.get("valid"):
            raise AuthenticationError("Persistent token refused.")
        return TokenOwner.from_response(data)

    async def validate_session(self, cookie_header: str) -> Optional[IdentityRecord]:
        """Resolve a forwarded authority session cookie, if it is still live."""
        data = await self._post("/sync/validate-session", {}, cookie_header=cookie_header)
        if not data.get("success"):
            return None
        return IdentityRecord.model_validate(data["user"])


__all__ = ["IdentityAuthorityClient", "TokenOwner"]
