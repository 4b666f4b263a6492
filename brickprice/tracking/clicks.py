"""Click counting and outbound click tracking."""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Optional

from brickprice.db.models import OutboundClick
from brickprice.db.store import PriceStore
from brickprice.metrics import record_outbound_click as count_outbound_click

logger = logging.getLogger(__name__)


class ClickCounter(ABC):
    """Per product and retailer click counts."""

    @abstractmethod
    async def increment(self, product_id: str, retailer: str) -> int:
        """Add one click and return the new count."""

    @abstractmethod
    async def counts(self, product_id: str) -> dict[str, int]:
        """Counts for a product keyed by retailer."""


class StoreClickCounter(ClickCounter):
    """Counter backed by the ``clicks`` table. The caller commits."""

    def __init__(self, store: PriceStore):
        self.store = store

    async def increment(self, product_id: str, retailer: str) -> int:
        return await self.store.increment_click(product_id, retailer)

    async def counts(self, product_id: str) -> dict[str, int]:
        return await self.store.click_counts(product_id)


class InMemoryClickCounter(ClickCounter):
    """Dictionary-backed counter for tests."""

    def __init__(self):
        self._counts: dict[tuple[str, str], int] = defaultdict(int)

    async def increment(self, product_id: str, retailer: str) -> int:
        self._counts[(product_id, retailer)] += 1
        return self._counts[(product_id, retailer)]

    async def counts(self, product_id: str) -> dict[str, int]:
        return {
            retailer: count
            for (pid, retailer), count in self._counts.items()
            if pid == product_id
        }


def click_key(product_id: str, retailer: str) -> str:
    return f"{product_id}::{retailer}"


async def record_click(
    store: PriceStore, counter: ClickCounter, product_id: str, retailer: str
) -> Optional[int]:
    """Count a click for an existing product. Unknown products are not counted."""
    if await store.find_product(product_id) is None:
        return None
    return await counter.increment(product_id, retailer)


async def record_outbound_click(
    store: PriceStore,
    counter: ClickCounter,
    url: str,
    product_id: Optional[str] = None,
    retailer: Optional[str] = None,
) -> OutboundClick:
    """
    Log an outbound click under a new ``cid``.

    The per-product counter only moves when the product exists.
    """
    cid = uuid.uuid4().hex
    tracked_product = None
    if product_id and retailer:
        count = await record_click(store, counter, product_id, retailer)
        if count is not None:
            tracked_product = product_id
        else:
            logger.debug(f"Outbound click for unknown product {product_id} not counted")

    click = await store.add_outbound_click(cid, url, tracked_product, retailer)
    count_outbound_click(retailer or "Unknown")
    return click
