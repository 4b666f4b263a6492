"""Admin routes: bulk refresh, catalog seeding, link import and EPC reporting."""

import logging
from datetime import datetime
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from brickprice.api.deps import get_database, get_task_runner, require_admin_api_key
from brickprice.db.store import PriceStore
from brickprice.ingest.link_import import import_amazon_links, split_links
from brickprice.ingest.seed import SeedSet, seed_products
from brickprice.tracking.epc import ConversionError, build_epc_report, record_conversion
from brickprice.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


class ConversionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cid: Optional[str] = None
    commission_cents: Optional[Any] = Field(None, alias="commissionCents")
    sale_amount_cents: Optional[Any] = Field(None, alias="saleAmountCents")
    occurred_at: Optional[datetime] = Field(None, alias="occurredAt")


class LinkImport(BaseModel):
    links: Union[str, list[str]] = ""


class SeedSetIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    set_id: Union[str, int] = Field(..., alias="setId")
    name: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    msrp: Optional[Union[float, str]] = None
    lego_url: Optional[str] = Field(None, alias="legoUrl")


class SeedRequest(BaseModel):
    sets: list[SeedSetIn] = []


@router.post("/refresh-prices")
async def refresh_prices(
    limit: int = Query(2, description="Concurrent workers per retailer (1-10)"),
    take: int = Query(0, description="Only the first N products by id (0 = all)"),
    runner: TaskRunner = Depends(get_task_runner),
):
    """Refresh LEGO and Amazon offers for every product."""
    results = await runner.refresh_all_retailers(concurrency=limit, limit=max(0, take) or None)
    return {
        "ok": all(summary.ok for summary in results.values()),
        "results": {name: summary.to_dict() for name, summary in results.items()},
    }


@router.get("/epc")
async def epc_report(
    days: Optional[str] = Query(None, description="Report window in days (1-365)"),
    db: AsyncSession = Depends(get_database),
):
    """Per-retailer clicks, conversions, commission and EPC."""
    report = await build_epc_report(PriceStore(db), days)
    return report.to_dict()


@router.post("/epc")
async def create_conversion(
    data: ConversionCreate,
    db: AsyncSession = Depends(get_database),
):
    """Record the commission for an outbound click."""
    try:
        conversion = await record_conversion(
            PriceStore(db),
            data.cid,
            commission_cents=data.commission_cents,
            sale_amount_cents=data.sale_amount_cents,
            occurred_at=data.occurred_at,
        )
    except ConversionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    await db.commit()
    return {
        "ok": True,
        "row": {
            "cid": conversion.cid,
            "network": conversion.network,
            "commission_cents": conversion.commission_cents,
            "sale_amount_cents": conversion.sale_amount_cents,
            "occurred_at": conversion.occurred_at.isoformat(),
        },
    }


@router.post("/import-amazon-links")
async def import_links(
    data: LinkImport,
    db: AsyncSession = Depends(get_database),
):
    """Import whitespace-separated Amazon product links."""
    raw = "\n".join(data.links) if isinstance(data.links, list) else data.links
    summary = await import_amazon_links(PriceStore(db), split_links(raw))

    if not summary.imported:
        return JSONResponse(
            status_code=400,
            content={"error": "No valid links", **summary.to_dict()},
        )

    await db.commit()
    return summary.to_dict()


@router.post("/seed")
async def seed_catalog(
    data: SeedRequest,
    db: AsyncSession = Depends(get_database),
    runner: TaskRunner = Depends(get_task_runner),
):
    """Create or update products with their MSRP and LEGO.com product URL."""
    sets = [
        SeedSet(
            set_id=str(item.set_id),
            name=item.name,
            image_url=item.image_url,
            msrp=item.msrp,
            lego_url=item.lego_url,
        )
        for item in data.sets
    ]
    summary = await seed_products(PriceStore(db), sets, catalog=runner.catalog)

    if not summary.seeded:
        return JSONResponse(
            status_code=400,
            content={"error": "No valid sets", **summary.to_dict()},
        )

    await db.commit()
    return summary.to_dict()
