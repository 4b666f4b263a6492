"""Refresh retailer offers: fetch, extract, reconcile, remap and persist.

One ``PriceRefresher`` serves one retailer channel. Each product is refreshed
in its own session and transaction, so a failing item never affects the
writes of another.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brickprice.config import settings
from brickprice.db.store import PersistenceError, PriceStore
from brickprice.ingest.base import (
    BatchRefreshResult,
    Identity,
    PriceOutcome,
    RefreshResult,
    RefreshState,
)
from brickprice.ingest.candidates import PageSignals, collect_signals
from brickprice.ingest.catalog import CatalogLookup
from brickprice.ingest.http_client import (
    FetchError,
    InputError,
    RetryPolicy,
    default_headers,
    default_timeout,
    fetch_page,
)
from brickprice.ingest.identity import extract_image_url, is_likely_set_id, resolve_identity
from brickprice.ingest.json_extractor import extract_json_ld, flatten_nodes
from brickprice.ingest.reconciler import reconcile_page
from brickprice.ingest.retailers import RetailerProfile
from brickprice.logging_config import get_logger
from brickprice.metrics import (
    record_fetch_duration,
    record_history_entry,
    record_refresh,
    record_remap,
)
from brickprice.normalize.money import format_cents_usd

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def clamp_concurrency(value: Optional[int]) -> int:
    """Clamp a requested worker count to ``[1, refresh_max_concurrency]``."""
    if value is None:
        value = settings.refresh_default_concurrency
    return max(1, min(settings.refresh_max_concurrency, int(value)))


class PriceRefresher:
    """Refreshes offers for one retailer channel."""

    def __init__(
        self,
        profile: RetailerProfile,
        session_factory: SessionFactory,
        http_client: Optional[httpx.AsyncClient] = None,
        catalog: Optional[CatalogLookup] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the refresher.

        Args:
            profile: Retailer profile (patterns, identity and URL rules)
            session_factory: Creates one AsyncSession per refreshed item
            http_client: Shared client; one is created (and closed) when omitted
            catalog: Name lookup used when a page has no set number
            retry_policy: Fetch retry policy (defaults to settings, one attempt)
        """
        self.profile = profile
        self.session_factory = session_factory
        self.catalog = catalog
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=default_headers(),
                timeout=default_timeout(),
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        """Close the HTTP client if this refresher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PriceRefresher":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    def _fail(self, result: RefreshResult, error: str) -> RefreshResult:
        result.ok = False
        result.error = error
        result.state = RefreshState.FAILED
        record_refresh(self.profile.name, ok=False)
        return result

    async def refresh_one(self, product_id: str, source_url: Optional[str]) -> RefreshResult:
        """
        Refresh one product from a source URL.

        Bad URLs and fetch failures produce a failed result. Store failures
        raise.

        Raises:
            PersistenceError: If writing the offer or history fails
        """
        log = get_logger(__name__, retailer=self.profile.name, product_id=product_id)
        result = RefreshResult(id=product_id, ok=False, source_url=source_url)

        try:
            fetch_url = self.profile.normalize_url(source_url)
        except InputError as e:
            log.warning(f"Skipping {self.profile.name} refresh for {product_id}: {e}")
            return self._fail(result, str(e))

        result.source_url = fetch_url
        result.state = RefreshState.FETCHING
        started = time.monotonic()
        try:
            html = await fetch_page(
                self._get_client(),
                fetch_url,
                policy=self.retry_policy,
                label=f"{self.profile.name} fetch",
            )
        except FetchError as e:
            log.warning(f"{self.profile.name} fetch failed for {product_id}: {e}")
            return self._fail(result, str(e))
        finally:
            record_fetch_duration(self.profile.name, time.monotonic() - started)

        result.state = RefreshState.PARSING
        nodes = flatten_nodes(extract_json_ld(html))
        identity = Identity()
        if self.profile.resolve_identity:
            identity = await resolve_identity(html, nodes, self.profile, self.catalog)
        image_url = extract_image_url(html, nodes, fetch_url)
        signals = collect_signals(html, nodes, self.profile)

        try:
            async with self.session_factory() as session:
                store = PriceStore(session)
                effective_id, outcome = await self._persist(
                    store, product_id, fetch_url, identity, image_url, signals, result, log
                )
                await session.commit()
        except SQLAlchemyError as e:
            result.state = RefreshState.FAILED
            record_refresh(self.profile.name, ok=False)
            log.error(f"Failed to persist {self.profile.name} offer for {product_id}: {e}")
            raise PersistenceError(
                f"Failed to persist {self.profile.name} offer for {product_id}: {e}"
            ) from e

        result.id = effective_id
        result.ok = True
        result.price_cents = outcome.price_cents
        result.in_stock = outcome.in_stock
        result.state = RefreshState.DONE
        record_refresh(self.profile.name, ok=True)
        log.info(
            f"Refreshed {self.profile.name} {effective_id}: "
            f"price={format_cents_usd(outcome.price_cents)} in_stock={outcome.in_stock} "
            f"source={outcome.source}"
        )
        return result

    def _remap_target(self, product_id: str, identity: Identity) -> Optional[str]:
        """New id when the current one is synthetic and a set number was found."""
        if is_likely_set_id(product_id):
            return None
        if identity.set_id and identity.set_id != product_id and is_likely_set_id(identity.set_id):
            return identity.set_id
        return None

    async def _persist(
        self,
        store: PriceStore,
        product_id: str,
        fetch_url: str,
        identity: Identity,
        image_url: Optional[str],
        signals: PageSignals,
        result: RefreshResult,
        log,
    ) -> tuple[str, PriceOutcome]:
        retailer = self.profile.name
        remap_to = self._remap_target(product_id, identity)
        effective_id = remap_to or product_id

        result.state = RefreshState.RECONCILING
        product = await store.find_product(effective_id)
        reference_cents = product.reference_price_cents if product else None
        outcome = reconcile_page(signals, reference_cents)

        if remap_to:
            result.state = RefreshState.REMAPPING
            await store.ensure_product(remap_to, identity.name)
            await store.delete_offer(product_id, retailer)
            moved = await store.reassign_history(product_id, remap_to, retailer)
            record_remap(retailer)
            log.info(f"Remapped {product_id} -> {remap_to} ({moved} history rows moved)")
        else:
            await store.ensure_product(effective_id, identity.name)

        result.state = RefreshState.PERSISTING
        await store.update_image_if_placeholder(effective_id, image_url)

        await store.upsert_offer(
            effective_id,
            retailer,
            url=fetch_url,
            price_cents=outcome.price_cents,
            in_stock=outcome.in_stock,
        )

        last = await store.find_latest_history(effective_id, retailer)
        changed = (
            last is None
            or last.price_cents != outcome.price_cents
            or last.in_stock != outcome.in_stock
        )
        if changed:
            await store.append_history(effective_id, retailer, outcome.price_cents, outcome.in_stock)
            record_history_entry(retailer)

        if self.profile.persist_source_url:
            product = await store.find_product(effective_id)
            if product is not None and product.lego_url != fetch_url:
                await store.upsert_product(effective_id, lego_url=fetch_url)

        return effective_id, outcome

    async def _source_url_for(self, store: PriceStore, product_id: str) -> Optional[str]:
        offer = await store.find_offer(product_id, self.profile.name)
        if offer is not None and offer.url:
            return offer.url
        if self.profile.persist_source_url:
            product = await store.find_product(product_id)
            if product is not None and product.lego_url:
                return product.lego_url
        return None

    async def refresh_product(self, product_id: str) -> RefreshResult:
        """Refresh a product from its stored source URL."""
        try:
            async with self.session_factory() as session:
                source_url = await self._source_url_for(PriceStore(session), product_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load source URL for {product_id}: {e}") from e

        if not source_url:
            return self._fail(
                RefreshResult(id=product_id, ok=False, source_url=None),
                f"No {self.profile.name} URL stored for {product_id}",
            )
        return await self.refresh_one(product_id, source_url)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def _batch_inputs(self, limit: Optional[int]) -> list[tuple[str, str]]:
        async with self.session_factory() as session:
            store = PriceStore(session)
            products = await store.list_products(take=limit)
            offers = await store.list_offers(self.profile.name)

        url_by_id: dict[str, str] = {}
        for offer in offers:
            if offer.url and offer.product_id not in url_by_id:
                url_by_id[offer.product_id] = offer.url

        inputs = []
        for product in products:
            url = url_by_id.get(product.id)
            if not url and self.profile.persist_source_url:
                url = product.lego_url
            if url:
                inputs.append((product.id, url))
        return inputs

    async def refresh_all(
        self,
        concurrency: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> BatchRefreshResult:
        """
        Refresh every product with a stored source URL.

        Args:
            concurrency: Worker count, clamped to ``[1, refresh_max_concurrency]``
            limit: Only consider the first ``limit`` products by id

        Returns:
            Batch summary; failed items are reported individually
        """
        workers = clamp_concurrency(concurrency)

        try:
            items = await self._batch_inputs(limit)
        except SQLAlchemyError as e:
            logger.error(f"{self.profile.name} bulk refresh could not list products: {e}")
            return BatchRefreshResult(ok=False, error=str(e))

        logger.info(
            f"{self.profile.name} bulk refresh start: total={len(items)} "
            f"concurrency={workers} limit={limit}"
        )

        results: list[Optional[RefreshResult]] = [None] * len(items)
        cursor = 0

        async def worker():
            nonlocal cursor
            while True:
                idx = cursor
                cursor += 1
                if idx >= len(items):
                    return
                product_id, url = items[idx]
                try:
                    results[idx] = await self.refresh_one(product_id, url)
                except PersistenceError as e:
                    results[idx] = RefreshResult(
                        id=product_id,
                        ok=False,
                        source_url=url,
                        error=str(e),
                        state=RefreshState.FAILED,
                    )
                except Exception as e:
                    logger.exception(f"Unexpected error refreshing {product_id}: {e}")
                    results[idx] = self._fail(
                        RefreshResult(id=product_id, ok=False, source_url=url), str(e)
                    )

        await asyncio.gather(*(worker() for _ in range(workers)))

        done = [r for r in results if r is not None]
        refreshed = sum(1 for r in done if r.ok)
        failed = len(done) - refreshed
        logger.info(
            f"{self.profile.name} bulk refresh done: refreshed={refreshed} "
            f"failed={failed} total={len(done)}"
        )
        return BatchRefreshResult(
            ok=True,
            total=len(done),
            refreshed=refreshed,
            failed=failed,
            results=done,
        )
