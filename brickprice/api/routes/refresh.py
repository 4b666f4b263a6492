"""Manual price refresh routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from brickprice.api.deps import get_task_runner, require_admin_api_key
from brickprice.db.store import PersistenceError
from brickprice.ingest.retailers import get_profile
from brickprice.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/refresh",
    tags=["refresh"],
    dependencies=[Depends(require_admin_api_key)],
)

TRUTHY = {"1", "true", "yes"}


@router.post("/{retailer}")
async def refresh_retailer(
    retailer: str,
    product_id: Optional[str] = Query(None, description="Refresh a single product"),
    refresh_all: Optional[str] = Query(None, alias="all", description="1/true/yes for every product"),
    limit: int = Query(2, description="Concurrent workers (1-10)"),
    take: int = Query(0, description="Only the first N products by id (0 = all)"),
    runner: TaskRunner = Depends(get_task_runner),
):
    """
    Refresh offers at one retailer.

    Single refreshes that fail return 502 with the failure reason.
    """
    try:
        profile = get_profile(retailer)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown retailer: {retailer}")

    product_id = (product_id or "").strip()
    if product_id:
        try:
            result = await runner.refresh_product(profile.name, product_id)
        except PersistenceError as e:
            logger.error(f"Refresh of {product_id} at {profile.name} failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        if not result.ok:
            return JSONResponse(
                status_code=502,
                content={
                    "ok": False,
                    "error": result.error or "Refresh failed",
                    "id": result.id,
                    "source_url": result.source_url,
                },
            )
        return {"ok": True, **result.to_dict()}

    if (refresh_all or "").lower() not in TRUTHY:
        raise HTTPException(
            status_code=400,
            detail="Missing product_id (for single refresh) or all=1 (for full refresh)",
        )

    bulk = await runner.refresh_retailer(
        profile.name,
        concurrency=limit,
        limit=max(0, take) or None,
    )
    return JSONResponse(status_code=200 if bulk.ok else 502, content=bulk.to_dict())
