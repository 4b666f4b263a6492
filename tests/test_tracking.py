"""Tests for click counting, outbound clicks and EPC reporting."""

from datetime import datetime, timedelta, timezone

import pytest

from brickprice.db.models import utcnow
from brickprice.db.store import PriceStore
from brickprice.normalize.money import MAX_PRICE_CENTS
from brickprice.tracking.clicks import (
    InMemoryClickCounter,
    StoreClickCounter,
    click_key,
    record_click,
    record_outbound_click,
)
from brickprice.tracking.epc import (
    ConversionError,
    build_epc_report,
    clamp_days,
    record_conversion,
)


@pytest.mark.asyncio
async def test_store_counter_counts_per_retailer(db_session):
    store = PriceStore(db_session)
    await store.ensure_product("75394")
    counter = StoreClickCounter(store)

    assert await record_click(store, counter, "75394", "Amazon") == 1
    assert await record_click(store, counter, "75394", "Amazon") == 2
    assert await record_click(store, counter, "75394", "LEGO") == 1
    assert await record_click(store, counter, "99999", "Amazon") is None

    assert await counter.counts("75394") == {"Amazon": 2, "LEGO": 1}
    assert await counter.counts("99999") == {}


@pytest.mark.asyncio
async def test_in_memory_counter():
    counter = InMemoryClickCounter()

    await counter.increment("75394", "Amazon")
    await counter.increment("75394", "Amazon")
    await counter.increment("10497", "LEGO")

    assert await counter.counts("75394") == {"Amazon": 2}
    assert click_key("75394", "Amazon") == "75394::Amazon"


@pytest.mark.asyncio
async def test_outbound_click_for_known_and_unknown_products(db_session):
    store = PriceStore(db_session)
    await store.ensure_product("75394")
    counter = InMemoryClickCounter()

    known = await record_outbound_click(store, counter, "https://www.amazon.com/dp/B0A", "75394", "Amazon")
    unknown = await record_outbound_click(store, counter, "https://www.amazon.com/dp/B0B", "00000", "Amazon")
    anonymous = await record_outbound_click(store, counter, "https://www.lego.com/x")

    assert known.product_id == "75394"
    assert unknown.product_id is None
    assert unknown.retailer == "Amazon"
    assert anonymous.retailer is None
    assert len({known.cid, unknown.cid, anonymous.cid}) == 3
    assert await counter.counts("75394") == {"Amazon": 1}
    assert await store.find_outbound_click(known.cid) is not None


@pytest.mark.asyncio
async def test_conversion_requires_known_cid(db_session):
    store = PriceStore(db_session)

    with pytest.raises(ConversionError) as missing:
        await record_conversion(store, "  ", commission_cents=100)
    assert missing.value.status_code == 400

    with pytest.raises(ConversionError) as unknown:
        await record_conversion(store, "nope", commission_cents=100)
    assert unknown.value.status_code == 404


@pytest.mark.asyncio
async def test_conversion_upsert_normalizes_values(db_session):
    store = PriceStore(db_session)
    click = await record_outbound_click(store, InMemoryClickCounter(), "https://www.lego.com/x", retailer="LEGO")

    aware = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    first = await record_conversion(store, click.cid, "12.9", -5, aware)

    assert first.commission_cents == 12
    assert first.sale_amount_cents == 0
    assert first.occurred_at == datetime(2026, 3, 1, 10, 0)
    assert first.network == "rakuten"

    second = await record_conversion(store, click.cid, 250, None)
    assert second.cid == first.cid
    assert second.commission_cents == 250
    assert second.sale_amount_cents is None


@pytest.mark.asyncio
async def test_epc_report(db_session):
    store = PriceStore(db_session)
    counter = InMemoryClickCounter()

    amazon_1 = await record_outbound_click(store, counter, "https://www.amazon.com/dp/B0A", retailer="Amazon")
    await record_outbound_click(store, counter, "https://www.amazon.com/dp/B0B", retailer="Amazon")
    await record_outbound_click(store, counter, "https://www.lego.com/a", retailer="LEGO")
    await record_outbound_click(store, counter, "https://www.lego.com/b")
    await record_conversion(store, amazon_1.cid, 125, 4999)

    now = utcnow() + timedelta(minutes=1)
    report = await build_epc_report(store, days=7, now=now)
    rows = {row.retailer: row for row in report.rows}

    assert report.days == 7
    assert report.rows[0].retailer == "Amazon"
    assert (rows["Amazon"].clicks, rows["Amazon"].conversions, rows["Amazon"].commission_cents) == (2, 1, 125)
    assert rows["Amazon"].epc_cents == 63
    assert rows["LEGO"].epc_cents == 0
    assert rows["Unknown"].clicks == 1

    data = report.to_dict()
    assert data["ok"] is True
    assert data["since"] == (now - timedelta(days=7)).isoformat()


@pytest.mark.asyncio
async def test_epc_report_window_excludes_old_activity(db_session):
    store = PriceStore(db_session)
    await record_outbound_click(store, InMemoryClickCounter(), "https://www.lego.com/a", retailer="LEGO")

    report = await build_epc_report(store, days=1, now=utcnow() + timedelta(days=3))

    assert report.rows == []


@pytest.mark.parametrize(
    "raw,expected",
    [(None, 30), ("abc", 30), ("nan", 30), ("0", 1), (-4, 1), (7.9, 7), ("1000", 365), ("14", 14)],
)
def test_clamp_days(raw, expected):
    assert clamp_days(raw) == expected


def test_utcnow_is_naive_utc():
    now = utcnow()

    assert now.tzinfo is None
    assert abs(datetime.now(timezone.utc).replace(tzinfo=None) - now) < timedelta(seconds=5)


@pytest.mark.asyncio
async def test_conversion_amounts_fit_integer_columns(db_session):
    store = PriceStore(db_session)
    click = await record_outbound_click(store, InMemoryClickCounter(), "https://www.lego.com/x", retailer="LEGO")

    conversion = await record_conversion(store, click.cid, 10**400, "9" * 400)
    await db_session.commit()

    assert conversion.commission_cents == MAX_PRICE_CENTS
    assert conversion.sale_amount_cents is None
