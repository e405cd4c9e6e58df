"""HTTP utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from app.core.errors import TransientNetworkError

logger = logging.getLogger(__name__)

_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class RetryConfig:
    """Fixed-interval retry policy for idempotent calls."""

    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 1.0) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    idempotent: bool = True,
    **kwargs,
) -> httpx.Response:
    """Call ``func`` until it yields a non-5xx response.

    4xx responses are returned to the caller untouched. Transport errors and
    5xx responses are retried after a fixed pause and, once attempts run out,
    surface as ``TransientNetworkError``.

    With ``idempotent=False`` only failures to connect are retried, since the
    request never reached the server. Anything later fails on the first attempt.
    """
    config = retry_config or RetryConfig()
    last_error = ""

    for attempt in range(1, config.attempts + 1):
        try:
            response = await func(*args, **kwargs)
        except httpx.TransportError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            if not idempotent and not isinstance(exc, _NOT_SENT_ERRORS):
                raise TransientNetworkError(
                    f"Request outcome unknown after {last_error}"
                ) from exc
        else:
            if response.status_code < 500:
                return response
            last_error = f"HTTP {response.status_code}"
            if not idempotent:
                raise TransientNetworkError(f"Request failed: {last_error}")

        logger.warning(
            "Request attempt failed",
            extra={"attempt": attempt, "attempts": config.attempts, "error": last_error},
        )
        if attempt < config.attempts:
            await asyncio.sleep(config.backoff_seconds)

    raise TransientNetworkError(f"Request failed after {config.attempts} attempts: {last_error}")


__all__ = ["RetryConfig", "request_with_retry"]
