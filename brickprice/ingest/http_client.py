"""HTTP fetching for retailer pages with an explicit retry policy."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from brickprice.config import settings

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)


class InputError(ValueError):
    """Raised when a source URL is missing or unsupported. Nothing is fetched."""
    pass


class FetchError(RuntimeError):
    """Raised on network failure, timeout, or a non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def exponential_backoff(attempt: int) -> float:
    """Seconds to wait after failed ``attempt`` (1-based)."""
    return settings.fetch_backoff_base_seconds * (2 ** (attempt - 1)) + random.random()


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a fetch is attempted and how long to wait in between."""

    max_attempts: int = 1
    backoff: Callable[[int], float] = field(default=exponential_backoff)
    retry_statuses: frozenset[int] = frozenset({429, 500, 502, 503, 504})

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(max_attempts=max(1, settings.fetch_max_attempts))


def default_headers() -> dict[str, str]:
    """Browser-like request headers."""
    return {
        "User-Agent": settings.http_user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.fetch_timeout_seconds)


async def fetch_page(
    client: httpx.AsyncClient,
    url: str,
    policy: Optional[RetryPolicy] = None,
    timeout: Optional[httpx.Timeout] = None,
    headers: Optional[dict[str, str]] = None,
    label: str = "fetch",
) -> str:
    """
    Fetch a page and return its body text.

    Redirects are followed. Statuses listed in ``policy.retry_statuses`` and
    transport errors are retried while attempts remain; any other non-2xx
    status fails immediately.

    Raises:
        FetchError: If the page could not be fetched
    """
    policy = policy or RetryPolicy()
    hdrs = default_headers()
    if headers:
        hdrs.update(headers)

    last_error: FetchError | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = await client.get(
                url,
                headers=hdrs,
                timeout=timeout or default_timeout(),
                follow_redirects=True,
            )
        except RETRYABLE_EXC as e:
            last_error = FetchError(f"{label} failed: {type(e).__name__}")
            last_error.__cause__ = e
        except httpx.HTTPError as e:
            raise FetchError(f"{label} failed: {e}") from e
        else:
            sc = resp.status_code
            if 200 <= sc < 300:
                return resp.text

            last_error = FetchError(f"{label} failed: {sc}", status_code=sc)
            if sc not in policy.retry_statuses:
                raise last_error

        if attempt < policy.max_attempts:
            sleep_s = policy.backoff(attempt)
            logger.warning(
                f"{label}: {last_error}, retrying in {sleep_s:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(sleep_s)

    raise last_error
