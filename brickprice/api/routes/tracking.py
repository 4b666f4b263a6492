"""Click tracking and outbound redirect routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brickprice.api.deps import get_click_counter, get_database
from brickprice.db.store import PriceStore
from brickprice.ingest.http_client import InputError
from brickprice.ingest.urls import normalize_source_url
from brickprice.tracking.clicks import (
    ClickCounter,
    click_key,
    record_click,
    record_outbound_click,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tracking"])


class ClickCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[str] = Field(None, alias="setId")
    retailer: Optional[str] = None


@router.post("/api/clicks")
async def create_click(
    data: ClickCreate,
    db: AsyncSession = Depends(get_database),
    counter: ClickCounter = Depends(get_click_counter),
):
    """Count a click on a product's retailer link."""
    if not data.product_id or not data.retailer:
        raise HTTPException(status_code=400, detail="Missing setId or retailer")

    count = await record_click(PriceStore(db), counter, data.product_id, data.retailer)
    if count is None:
        raise HTTPException(status_code=404, detail="Set not found")

    await db.commit()
    return {"ok": True, "count": count}


@router.get("/api/clicks")
async def get_clicks(
    product_id: Optional[str] = Query(None, alias="setId"),
    db: AsyncSession = Depends(get_database),
    counter: ClickCounter = Depends(get_click_counter),
):
    """Click counts for a product, keyed ``<product_id>::<retailer>``."""
    if not product_id:
        return {}
    if await PriceStore(db).find_product(product_id) is None:
        return {}
    counts = await counter.counts(product_id)
    return {click_key(product_id, retailer): count for retailer, count in counts.items()}


@router.get("/out")
async def outbound_redirect(
    u: Optional[str] = Query(None, description="Destination URL"),
    product_id: Optional[str] = Query(None, alias="setId"),
    retailer: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_database),
    counter: ClickCounter = Depends(get_click_counter),
):
    """Track an outbound click and redirect to the retailer."""
    try:
        destination = normalize_source_url(u)
    except InputError:
        return RedirectResponse(url="/", status_code=302)

    try:
        await record_outbound_click(PriceStore(db), counter, destination, product_id, retailer)
        await db.commit()
    except SQLAlchemyError as e:
        # Tracking must never block the redirect
        logger.error(f"Failed to record outbound click to {destination}: {e}")
        await db.rollback()

    return RedirectResponse(url=destination, status_code=302)
