"""LEGO.com catalog lookups used to resolve set numbers and product URLs."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlencode

import httpx

from brickprice.config import settings
from brickprice.ingest.http_client import FetchError, RetryPolicy, fetch_page
from brickprice.ingest.identity import is_likely_set_id

logger = logging.getLogger(__name__)

LEGO_ORIGIN = "https://www.lego.com"
_PRODUCT_PATH = re.compile(r"/en-us/product/[^\"'\s?#<>]*-(\d{4,6})\b", re.IGNORECASE)


class CatalogLookup(ABC):
    """Finds catalog set numbers and product pages."""

    @abstractmethod
    async def find_catalog_id_by_name(self, name: str) -> Optional[str]:
        """Return a set number, or None when nothing matched."""

    async def resolve_product_url(self, set_id: str) -> Optional[str]:
        return None


class LegoCatalogClient(CatalogLookup):
    """Scrapes LEGO.com search results."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        search_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.search_url = search_url or settings.lego_search_url
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _search(self, query: str) -> Optional[str]:
        url = f"{self.search_url}?{urlencode({'q': query})}"
        try:
            return await fetch_page(
                self._get_client(),
                url,
                policy=self.retry_policy,
                label="LEGO search",
            )
        except FetchError as e:
            logger.warning(f"LEGO search for {query!r} failed: {e}")
            return None

    async def find_catalog_id_by_name(self, name: str) -> Optional[str]:
        query = (name or "").strip()
        if not query:
            return None

        html = await self._search(query)
        if not html:
            return None

        for match in _PRODUCT_PATH.finditer(html):
            if is_likely_set_id(match.group(1)):
                return match.group(1)
        return None

    async def resolve_product_url(self, set_id: str) -> Optional[str]:
        """Product page URL for a set number, from LEGO.com search results."""
        if not is_likely_set_id(set_id):
            return None

        html = await self._search(set_id)
        if not html:
            return None

        pattern = re.compile(rf"/en-us/product/[^\"'\s?#<>]*-{re.escape(set_id)}\b", re.IGNORECASE)
        match = pattern.search(html)
        if not match:
            return None
        return f"{LEGO_ORIGIN}{match.group(0)}"
