"""Bulk import of Amazon product links as tracked products."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

from brickprice.db.store import PriceStore
from brickprice.ingest.identity import is_likely_set_id
from brickprice.ingest.retailers import AMAZON_RETAILER

logger = logging.getLogger(__name__)

_AMAZON_HOST = re.compile(r"(^|\.)amazon\.[a-z.]+$", re.IGNORECASE)
_SLUG_TOKEN = re.compile(r"\b\d{4,6}\b")
_ASIN = re.compile(r"/dp/([A-Z0-9]{10})", re.IGNORECASE)
_SEPARATORS = re.compile(r"[-_]+")
_WHITESPACE = re.compile(r"\s+")
_LEADING_LEGO = re.compile(r"^lego\s+", re.IGNORECASE)


@dataclass
class ParsedLink:
    url: str
    product_id: str
    name: str


@dataclass
class SkippedLink:
    url: str
    reason: str


@dataclass
class ImportSummary:
    received: int = 0
    imported: int = 0
    created: int = 0
    updated: int = 0
    skipped: list[SkippedLink] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.imported > 0,
            "received": self.received,
            "imported": self.imported,
            "created": self.created,
            "updated": self.updated,
            "skipped": [{"url": s.url, "reason": s.reason} for s in self.skipped],
        }


def split_links(raw: str) -> list[str]:
    return [part for part in _WHITESPACE.split(raw or "") if part.strip()]


def synthetic_amazon_id(asin: str) -> str:
    return f"amzn-{asin.lower()}"


def set_id_from_slug(slug: str) -> Optional[str]:
    """First 5-digit token of a URL slug, else the first 4-digit, else 6-digit."""
    tokens = [t for t in _SLUG_TOKEN.findall(slug) if is_likely_set_id(t)]
    for length in (5, 4, 6):
        for token in tokens:
            if len(token) == length:
                return token
    return None


def title_from_slug(slug: str) -> str:
    clean = _WHITESPACE.sub(" ", _SEPARATORS.sub(" ", slug)).strip()
    if not clean:
        return "LEGO Set"
    return _LEADING_LEGO.sub("LEGO ", clean)


def parse_amazon_link(raw: str) -> Optional[ParsedLink]:
    """
    Parse an Amazon product URL into a product id and display name.

    ``https://www.amazon.com/LEGO-Star-Wars-75394/dp/B0D1234567`` becomes
    product ``75394``; without a set number in the slug the ASIN gives
    ``amzn-b0d1234567``.

    Returns:
        ParsedLink, or None when the URL is not a usable Amazon product link
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return None

    try:
        parsed = urlparse(trimmed)
    except ValueError:
        return None

    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        return None
    if not _AMAZON_HOST.search(parsed.hostname):
        return None

    path = parsed.path or ""
    slug_path = path.split("/dp/")[0] if "/dp/" in path else path
    segments = [s for s in slug_path.split("/") if s]
    slug = unquote(segments[-1]) if segments else ""

    product_id = set_id_from_slug(slug)
    if product_id is None:
        asin = _ASIN.search(path)
        if asin is None:
            return None
        product_id = synthetic_amazon_id(asin.group(1))

    return ParsedLink(url=parsed.geturl(), product_id=product_id, name=title_from_slug(slug))


async def import_amazon_links(store: PriceStore, links: Iterable[str]) -> ImportSummary:
    """
    Create placeholder products for Amazon links and upsert their offer URLs.

    Price and stock are left for the next refresh. The caller commits.
    """
    raw_links = list(links)
    summary = ImportSummary(received=len(raw_links))
    parsed: list[ParsedLink] = []
    seen: set[str] = set()

    for raw in raw_links:
        item = parse_amazon_link(raw)
        if item is None:
            summary.skipped.append(SkippedLink(url=raw, reason="invalid or missing setId"))
            continue
        if item.product_id in seen:
            summary.skipped.append(SkippedLink(url=raw, reason="duplicate setId in batch"))
            continue
        seen.add(item.product_id)
        parsed.append(item)

    for item in parsed:
        if await store.find_product(item.product_id) is None:
            await store.upsert_product(item.product_id, display_name=item.name)
            summary.created += 1

        await store.upsert_offer(item.product_id, AMAZON_RETAILER, url=item.url)
        summary.updated += 1

    summary.imported = len(parsed)
    logger.info(
        f"Imported {summary.imported} Amazon links "
        f"(created={summary.created}, skipped={len(summary.skipped)})"
    )
    return summary
