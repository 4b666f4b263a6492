"""Affiliate conversions and earnings-per-click reporting."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from brickprice.config import settings
from brickprice.db.models import AffiliateConversion, utcnow
from brickprice.db.store import PriceStore
from brickprice.normalize.money import MAX_PRICE_CENTS

logger = logging.getLogger(__name__)

UNKNOWN_RETAILER = "Unknown"
MAX_REPORT_DAYS = 365


class ConversionError(ValueError):
    """Raised when a conversion cannot be recorded."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class EpcRow:
    retailer: str
    clicks: int = 0
    conversions: int = 0
    commission_cents: int = 0
    epc_cents: int = 0


@dataclass
class EpcReport:
    days: int
    since: datetime
    rows: list[EpcRow]

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "days": self.days,
            "since": self.since.isoformat(),
            "rows": [asdict(row) for row in self.rows],
        }


def clamp_days(raw: Any) -> int:
    """Report window in days, clamped to ``[1, 365]``."""
    try:
        days = float(raw)
    except (TypeError, ValueError):
        return settings.epc_default_days
    if math.isnan(days) or math.isinf(days):
        return settings.epc_default_days
    return max(1, min(MAX_REPORT_DAYS, math.floor(days)))


def _non_negative_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return min(MAX_PRICE_CENTS, max(0, raw))
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return min(MAX_PRICE_CENTS, max(0, math.trunc(value)))


async def record_conversion(
    store: PriceStore,
    cid: Optional[str],
    commission_cents: Any = None,
    sale_amount_cents: Any = None,
    occurred_at: Optional[datetime] = None,
) -> AffiliateConversion:
    """
    Upsert the conversion for an outbound click.

    Amounts are truncated to non-negative integers no larger than
    ``MAX_PRICE_CENTS``. The caller commits.

    Raises:
        ConversionError: If ``cid`` is missing (400) or unknown (404)
    """
    cid = (cid or "").strip()
    if not cid:
        raise ConversionError("Missing cid", status_code=400)

    if await store.find_outbound_click(cid) is None:
        raise ConversionError("cid not found in outbound clicks", status_code=404)

    # Stored timestamps are naive UTC
    if occurred_at is not None and occurred_at.tzinfo is not None:
        occurred_at = occurred_at.astimezone(timezone.utc).replace(tzinfo=None)

    conversion = await store.upsert_conversion(
        cid,
        commission_cents=_non_negative_int(commission_cents) or 0,
        sale_amount_cents=_non_negative_int(sale_amount_cents),
        occurred_at=occurred_at or utcnow(),
        network="rakuten",
    )
    logger.info(f"Recorded conversion for {cid}: {conversion.commission_cents} cents")
    return conversion


async def build_epc_report(
    store: PriceStore, days: Any = None, now: Optional[datetime] = None
) -> EpcReport:
    """Clicks, conversions, commission and EPC per retailer, best EPC first."""
    days = clamp_days(settings.epc_default_days if days is None else days)
    since = (now or utcnow()) - timedelta(days=days)

    rows: dict[str, EpcRow] = {}

    def row_for(retailer: Optional[str]) -> EpcRow:
        key = retailer or UNKNOWN_RETAILER
        if key not in rows:
            rows[key] = EpcRow(retailer=key)
        return rows[key]

    for retailer, count in (await store.count_outbound_clicks(since)).items():
        row_for(retailer).clicks += count

    for conversion, retailer in await store.list_conversions(since):
        row = row_for(retailer)
        row.conversions += 1
        row.commission_cents += conversion.commission_cents or 0

    for row in rows.values():
        epc = row.commission_cents / row.clicks if row.clicks > 0 else 0
        row.epc_cents = math.floor(epc + 0.5)

    ordered = sorted(rows.values(), key=lambda r: r.epc_cents, reverse=True)
    return EpcReport(days=days, since=since, rows=ordered)
