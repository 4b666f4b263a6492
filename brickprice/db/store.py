"""Persistent store used by the refresh pipeline and tracking.

Every write is keyed by ``(product_id, retailer)`` and written as an
insert-or-update, so repeating an identical call leaves the same rows behind.
The store never commits; callers own the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from brickprice.db.models import (
    PLACEHOLDER_IMAGE,
    AffiliateConversion,
    Click,
    Offer,
    OutboundClick,
    PriceHistory,
    Product,
    utcnow,
)

logger = logging.getLogger(__name__)

_UNSET = object()


class PersistenceError(RuntimeError):
    """Raised when a store operation fails."""
    pass


def is_placeholder_image(image_url: Optional[str]) -> bool:
    """True when the image is empty or still the placeholder sentinel."""
    current = (image_url or "").strip()
    return not current or current == PLACEHOLDER_IMAGE


class PriceStore:
    """Async data access for products, offers, history and click tracking."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def find_product(self, product_id: str) -> Optional[Product]:
        return await self.session.get(Product, product_id)

    async def upsert_product(
        self,
        product_id: str,
        *,
        display_name=_UNSET,
        image_url=_UNSET,
        reference_price_cents=_UNSET,
        lego_url=_UNSET,
    ) -> Product:
        """
        Create the product if missing, otherwise update only the given fields.

        New products get the placeholder image unless one is supplied.
        """
        product = await self.find_product(product_id)
        if product is None:
            product = Product(
                id=product_id,
                display_name=None if display_name is _UNSET else display_name,
                image_url=PLACEHOLDER_IMAGE if image_url in (_UNSET, None) else image_url,
                reference_price_cents=(
                    None if reference_price_cents is _UNSET else reference_price_cents
                ),
                lego_url=None if lego_url is _UNSET else lego_url,
            )
            self.session.add(product)
        else:
            if display_name is not _UNSET:
                product.display_name = display_name
            if image_url is not _UNSET and image_url:
                product.image_url = image_url
            if reference_price_cents is not _UNSET:
                product.reference_price_cents = reference_price_cents
            if lego_url is not _UNSET:
                product.lego_url = lego_url

        await self.session.flush()
        return product

    async def ensure_product(self, product_id: str, name: Optional[str] = None) -> Product:
        """Return the product, creating a placeholder record when it does not exist."""
        product = await self.find_product(product_id)
        if product is not None:
            return product
        return await self.upsert_product(
            product_id,
            display_name=name or f"LEGO Set {product_id}",
        )

    async def update_image_if_placeholder(self, product_id: str, image_url: Optional[str]) -> bool:
        """Upgrade the product image only while it is still the placeholder."""
        candidate = (image_url or "").strip()
        if not candidate:
            return False

        product = await self.find_product(product_id)
        if product is None or not is_placeholder_image(product.image_url):
            return False

        product.image_url = candidate
        await self.session.flush()
        return True

    async def list_products(self, take: Optional[int] = None) -> list[Product]:
        query = select(Product).order_by(Product.id.asc())
        if take:
            query = query.limit(take)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    async def find_offer(self, product_id: str, retailer: str) -> Optional[Offer]:
        result = await self.session.execute(
            select(Offer).where(Offer.product_id == product_id, Offer.retailer == retailer)
        )
        return result.scalar_one_or_none()

    async def list_offers(self, retailer: str) -> list[Offer]:
        result = await self.session.execute(
            select(Offer).where(Offer.retailer == retailer).order_by(Offer.product_id.asc())
        )
        return list(result.scalars().all())

    async def upsert_offer(
        self,
        product_id: str,
        retailer: str,
        *,
        url: Optional[str],
        price_cents=_UNSET,
        in_stock=_UNSET,
    ) -> Offer:
        """
        Insert or update the offer for ``(product_id, retailer)``.

        ``updated_at`` is refreshed on every call, including no-op refreshes.
        Omitted price/stock fields keep their stored values.
        """
        now = utcnow()
        offer = await self.find_offer(product_id, retailer)
        if offer is None:
            offer = Offer(
                product_id=product_id,
                retailer=retailer,
                url=url,
                price_cents=None if price_cents is _UNSET else price_cents,
                in_stock=None if in_stock is _UNSET else in_stock,
                updated_at=now,
            )
            self.session.add(offer)
        else:
            if url:
                offer.url = url
            if price_cents is not _UNSET:
                offer.price_cents = price_cents
            if in_stock is not _UNSET:
                offer.in_stock = in_stock
            offer.updated_at = now

        await self.session.flush()
        return offer

    async def delete_offer(self, product_id: str, retailer: str) -> int:
        """Delete the offer if present. Returns the number of rows removed."""
        result = await self.session.execute(
            delete(Offer).where(Offer.product_id == product_id, Offer.retailer == retailer)
        )
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def find_latest_history(self, product_id: str, retailer: str) -> Optional[PriceHistory]:
        result = await self.session.execute(
            select(PriceHistory)
            .where(PriceHistory.product_id == product_id, PriceHistory.retailer == retailer)
            .order_by(PriceHistory.recorded_at.desc(), PriceHistory.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def append_history(
        self,
        product_id: str,
        retailer: str,
        price_cents: Optional[int],
        in_stock: Optional[bool],
    ) -> PriceHistory:
        entry = PriceHistory(
            product_id=product_id,
            retailer=retailer,
            price_cents=price_cents,
            in_stock=in_stock,
            recorded_at=utcnow(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def reassign_history(self, old_id: str, new_id: str, retailer: str) -> int:
        """Move history rows of one retailer from ``old_id`` to ``new_id``."""
        result = await self.session.execute(
            update(PriceHistory)
            .where(PriceHistory.product_id == old_id, PriceHistory.retailer == retailer)
            .values(product_id=new_id)
        )
        return result.rowcount or 0

    async def list_history(
        self, product_id: str, retailer: Optional[str] = None
    ) -> list[PriceHistory]:
        """History for a product, oldest first."""
        query = select(PriceHistory).where(PriceHistory.product_id == product_id)
        if retailer:
            query = query.where(PriceHistory.retailer == retailer)
        query = query.order_by(PriceHistory.recorded_at.asc(), PriceHistory.id.asc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Click tracking
    # ------------------------------------------------------------------

    async def increment_click(self, product_id: str, retailer: str) -> int:
        result = await self.session.execute(
            select(Click).where(Click.product_id == product_id, Click.retailer == retailer)
        )
        click = result.scalar_one_or_none()
        if click is None:
            click = Click(product_id=product_id, retailer=retailer, count=1)
            self.session.add(click)
        else:
            click.count += 1
        await self.session.flush()
        return click.count

    async def click_counts(self, product_id: str) -> dict[str, int]:
        result = await self.session.execute(
            select(Click.retailer, Click.count).where(Click.product_id == product_id)
        )
        return {retailer: count for retailer, count in result.all()}

    async def add_outbound_click(
        self,
        cid: str,
        url: str,
        product_id: Optional[str],
        retailer: Optional[str],
    ) -> OutboundClick:
        click = OutboundClick(cid=cid, url=url, product_id=product_id, retailer=retailer)
        self.session.add(click)
        await self.session.flush()
        return click

    async def find_outbound_click(self, cid: str) -> Optional[OutboundClick]:
        return await self.session.get(OutboundClick, cid)

    async def count_outbound_clicks(self, since: datetime) -> dict[Optional[str], int]:
        """Outbound clicks since ``since`` grouped by retailer."""
        result = await self.session.execute(
            select(OutboundClick.retailer, func.count())
            .where(OutboundClick.created_at >= since)
            .group_by(OutboundClick.retailer)
        )
        return {retailer: count for retailer, count in result.all()}

    async def upsert_conversion(
        self,
        cid: str,
        *,
        commission_cents: int,
        sale_amount_cents: Optional[int],
        occurred_at: datetime,
        network: str = "rakuten",
    ) -> AffiliateConversion:
        conversion = await self.session.get(AffiliateConversion, cid)
        if conversion is None:
            conversion = AffiliateConversion(cid=cid)
            self.session.add(conversion)
        conversion.commission_cents = commission_cents
        conversion.sale_amount_cents = sale_amount_cents
        conversion.occurred_at = occurred_at
        conversion.network = network
        await self.session.flush()
        return conversion

    async def list_conversions(self, since: datetime) -> list[tuple[AffiliateConversion, Optional[str]]]:
        """Conversions since ``since`` with the retailer of their click."""
        result = await self.session.execute(
            select(AffiliateConversion, OutboundClick.retailer)
            .join(OutboundClick, OutboundClick.cid == AffiliateConversion.cid, isouter=True)
            .where(AffiliateConversion.occurred_at >= since)
        )
        return [(conversion, retailer) for conversion, retailer in result.all()]
