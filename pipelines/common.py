"""Shared utilities for retrieving raw payloads from external APIs."""

from __future__ import annotations

from typing import Any, Mapping

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_ATTEMPTS = 1
_DEFAULT_WAIT = wait_exponential(min=1, max=16)


Headers = Mapping[str, str] | None
Params = Mapping[str, Any] | None


async def fetch_text(
    url: str,
    *,
    headers: Headers = None,
    params: Params = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    attempts: int = DEFAULT_ATTEMPTS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Execute a GET request and return the undecoded response body.

    The body is returned as text so callers can sanitize payloads that are not
    strict JSON before decoding them. ``attempts`` bounds the retry policy; the
    default of a single attempt means any transport or status error propagates
    immediately. ``transport`` is forwarded to ``httpx.AsyncClient`` and is
    mainly useful for injecting ``httpx.MockTransport`` in tests.
    """

    retrying = AsyncRetrying(
        wait=_DEFAULT_WAIT,
        stop=stop_after_attempt(max(1, attempts)),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                response = await client.get(url, headers=headers, params=params)
            response.raise_for_status()
            return response.text

    raise RuntimeError("retry loop exited without a result")  # pragma: no cover


__all__ = ["fetch_text", "DEFAULT_TIMEOUT_SECONDS", "DEFAULT_ATTEMPTS"]
