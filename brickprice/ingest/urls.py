"""Source URL validation and normalization."""

import logging
from typing import Optional
from urllib.parse import parse_qs, urlparse

from brickprice.ingest.http_client import InputError

logger = logging.getLogger(__name__)

LINKSHARE_HOST = "linksynergy.com"


def normalize_source_url(raw: Optional[str]) -> str:
    """
    Validate a product URL before fetching.

    Raises:
        InputError: If the URL is missing, malformed, or not http/https
    """
    trimmed = str(raw or "").strip()
    if not trimmed:
        raise InputError("Missing source URL")

    try:
        parsed = urlparse(trimmed)
    except ValueError as e:
        raise InputError("Invalid source URL") from e

    scheme = parsed.scheme.lower()
    if scheme and scheme not in ("http", "https"):
        raise InputError("Unsupported URL protocol")
    if not scheme or not parsed.netloc:
        raise InputError("Invalid source URL")

    return parsed._replace(scheme=scheme, netloc=parsed.netloc.lower()).geturl()


def unwrap_linkshare_url(raw: Optional[str]) -> Optional[str]:
    """
    Return the destination of a Rakuten LinkShare click URL.

    Non-LinkShare URLs are returned unchanged.
    """
    if not raw:
        return None

    try:
        parsed = urlparse(raw)
    except ValueError:
        return raw

    if LINKSHARE_HOST in (parsed.hostname or ""):
        murl = parse_qs(parsed.query).get("murl")
        if murl and murl[0]:
            logger.debug(f"Unwrapped LinkShare URL to {murl[0]}")
            return murl[0]

    return raw


def normalize_lego_url(raw: Optional[str]) -> str:
    """Unwrap affiliate click URLs, then validate like any other source URL."""
    return normalize_source_url(unwrap_linkshare_url(raw))
