"""Seed the product catalog with known sets and their MSRP."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from brickprice.db.store import PriceStore
from brickprice.ingest.catalog import CatalogLookup
from brickprice.ingest.http_client import InputError
from brickprice.ingest.identity import is_likely_set_id
from brickprice.ingest.urls import normalize_lego_url
from brickprice.normalize.money import dollars_to_cents

logger = logging.getLogger(__name__)


@dataclass
class SeedSet:
    set_id: str
    name: Optional[str] = None
    image_url: Optional[str] = None
    msrp: Any = None
    lego_url: Optional[str] = None


@dataclass
class SkippedSet:
    set_id: str
    reason: str


@dataclass
class SeedSummary:
    received: int = 0
    seeded: int = 0
    created: int = 0
    with_msrp: int = 0
    with_lego_url: int = 0
    skipped: list[SkippedSet] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.seeded > 0,
            "received": self.received,
            "seeded": self.seeded,
            "created": self.created,
            "with_msrp": self.with_msrp,
            "with_lego_url": self.with_lego_url,
            "skipped": [{"setId": s.set_id, "reason": s.reason} for s in self.skipped],
        }


async def _lego_url_for(
    set_id: str, lego_url: Optional[str], catalog: Optional[CatalogLookup]
) -> Optional[str]:
    if lego_url and lego_url.strip():
        return normalize_lego_url(lego_url)
    if catalog is None:
        return None
    return await catalog.resolve_product_url(set_id)


async def seed_products(
    store: PriceStore,
    sets: Iterable[SeedSet],
    catalog: Optional[CatalogLookup] = None,
) -> SeedSummary:
    """
    Upsert products with their MSRP, image and LEGO.com product URL.

    The MSRP becomes the reference price later refreshes check candidates
    against. Only the fields given are written; a set without ``legoUrl`` has
    its product page looked up through the catalog when one is supplied.
    Offers are left for the next refresh. The caller commits.
    """
    items = list(sets)
    summary = SeedSummary(received=len(items))
    seen: set[str] = set()

    for item in items:
        set_id = (item.set_id or "").strip()
        if not is_likely_set_id(set_id):
            summary.skipped.append(SkippedSet(set_id=set_id, reason="invalid setId"))
            continue
        if set_id in seen:
            summary.skipped.append(SkippedSet(set_id=set_id, reason="duplicate setId in batch"))
            continue

        try:
            lego_url = await _lego_url_for(set_id, item.lego_url, catalog)
        except InputError as e:
            summary.skipped.append(SkippedSet(set_id=set_id, reason=f"invalid legoUrl: {e}"))
            continue
        seen.add(set_id)

        fields: dict[str, Any] = {}
        if item.name and item.name.strip():
            fields["display_name"] = item.name.strip()
        if item.image_url and item.image_url.strip():
            fields["image_url"] = item.image_url.strip()
        msrp_cents = dollars_to_cents(item.msrp)
        if msrp_cents is not None:
            fields["reference_price_cents"] = msrp_cents
            summary.with_msrp += 1
        if lego_url:
            fields["lego_url"] = lego_url
            summary.with_lego_url += 1

        if await store.find_product(set_id) is None:
            summary.created += 1
        await store.upsert_product(set_id, **fields)
        summary.seeded += 1

    logger.info(
        f"Seeded {summary.seeded} products "
        f"(created={summary.created}, msrp={summary.with_msrp}, skipped={len(summary.skipped)})"
    )
    return summary
