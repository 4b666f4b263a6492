"""Product routes."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from brickprice.api.deps import get_database
from brickprice.db.store import PriceStore
from brickprice.ingest.retailers import format_retailer_label

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


class PriceHistoryResponse(BaseModel):
    retailer: str
    retailer_label: str
    price_cents: int | None
    in_stock: bool | None
    recorded_at: datetime


@router.get("/{product_id}/price-history", response_model=List[PriceHistoryResponse])
async def get_price_history(
    product_id: str,
    retailer: Optional[str] = Query(None, description="Only this retailer channel"),
    db: AsyncSession = Depends(get_database),
):
    """Price history for a product, oldest first."""
    store = PriceStore(db)
    if await store.find_product(product_id) is None:
        raise HTTPException(status_code=404, detail="Product not found")

    entries = await store.list_history(product_id, retailer)
    return [
        PriceHistoryResponse(
            retailer=entry.retailer,
            retailer_label=format_retailer_label(entry.retailer),
            price_cents=entry.price_cents,
            in_stock=entry.in_stock,
            recorded_at=entry.recorded_at,
        )
        for entry in entries
    ]
