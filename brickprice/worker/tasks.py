"""Background refresh tasks."""

import logging
from typing import Optional

import httpx

from brickprice.config import settings
from brickprice.db.session import AsyncSessionLocal
from brickprice.ingest.base import BatchRefreshResult, RefreshResult
from brickprice.ingest.catalog import LegoCatalogClient
from brickprice.ingest.http_client import default_headers, default_timeout
from brickprice.ingest.refresh import PriceRefresher
from brickprice.ingest.retailers import LEGO, AMAZON, RetailerProfile, get_profile

logger = logging.getLogger(__name__)

# Channels refreshed by the daily job, in order
DAILY_PROFILES = (LEGO, AMAZON)


class TaskRunner:
    """
    Runner for refresh jobs.

    Owns the shared HTTP client and catalog lookup used by every refresher.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.http_client: Optional[httpx.AsyncClient] = None
        self.catalog: Optional[LegoCatalogClient] = None

    async def initialize(self):
        """Create the shared HTTP client."""
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                headers=default_headers(),
                timeout=default_timeout(),
                follow_redirects=True,
            )
        if settings.catalog_lookup_enabled and self.catalog is None:
            self.catalog = LegoCatalogClient(client=self.http_client)
        logger.info("Task runner initialized")

    async def close(self):
        """Clean up resources."""
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
        self.catalog = None

    def refresher_for(self, profile: RetailerProfile) -> PriceRefresher:
        return PriceRefresher(
            profile,
            self.session_factory,
            http_client=self.http_client,
            catalog=self.catalog,
        )

    async def refresh_product(self, retailer: str, product_id: str) -> RefreshResult:
        """Refresh one product at one retailer."""
        refresher = self.refresher_for(get_profile(retailer))
        try:
            return await refresher.refresh_product(product_id)
        finally:
            await refresher.close()

    async def refresh_retailer(
        self,
        retailer: str,
        concurrency: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> BatchRefreshResult:
        """Refresh every product at one retailer."""
        refresher = self.refresher_for(get_profile(retailer))
        try:
            return await refresher.refresh_all(concurrency=concurrency, limit=limit)
        finally:
            await refresher.close()

    async def refresh_all_retailers(
        self,
        concurrency: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> dict[str, BatchRefreshResult]:
        """Refresh LEGO then Amazon, one channel after the other."""
        logger.info("Starting refresh of all retailers")
        results: dict[str, BatchRefreshResult] = {}
        for profile in DAILY_PROFILES:
            results[profile.name] = await self.refresh_retailer(
                profile.name, concurrency=concurrency, limit=limit
            )
            summary = results[profile.name]
            logger.info(
                f"{profile.name} refresh: refreshed={summary.refreshed} "
                f"failed={summary.failed} total={summary.total}"
            )
        return results


# Global task runner
task_runner = TaskRunner()
