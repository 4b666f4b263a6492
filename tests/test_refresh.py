"""Tests for the refresh pipeline against a real (sqlite) store."""

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from brickprice.db.models import PLACEHOLDER_IMAGE
from brickprice.db.store import PersistenceError, PriceStore
from brickprice.ingest.base import RefreshState
from brickprice.ingest.refresh import PriceRefresher, clamp_concurrency
from brickprice.ingest.retailers import AMAZON, LEGO


async def _seed(session_factory, seed):
    async with session_factory() as session:
        await seed(PriceStore(session))
        await session.commit()


async def _read(session_factory, read):
    async with session_factory() as session:
        return await read(PriceStore(session))


def _serve(page, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(200, text=page)

    return handler


def _failing_commits(session_factory, product_id):
    """Session factory whose commit fails while the session holds rows for ``product_id``."""

    def factory():
        session = session_factory()
        commit = session.commit

        async def failing_commit():
            sync = session.sync_session
            pending = list(sync.identity_map.values()) + list(sync.new)
            if any(getattr(obj, "product_id", None) == product_id for obj in pending):
                raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
            await commit()

        session.commit = failing_commit
        return session

    return factory


@pytest.mark.asyncio
async def test_refresh_is_idempotent(session_factory, mock_http, amazon_page):
    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(amazon_page())))
    url = "https://www.amazon.com/dp/B0CTEST394"

    first = await refresher.refresh_one("75394", url)
    second = await refresher.refresh_one("75394", url)

    assert first.ok and second.ok
    assert first.price_cents == second.price_cents == 15999
    assert second.in_stock is True
    assert second.state == RefreshState.DONE

    offers = await _read(session_factory, lambda s: s.list_offers("Amazon"))
    history = await _read(session_factory, lambda s: s.list_history("75394", "Amazon"))
    product = await _read(session_factory, lambda s: s.find_product("75394"))

    assert len(offers) == 1
    assert offers[0].url == url
    assert len(history) == 1
    assert product.display_name == "LEGO Star Wars Imperial Star Destroyer 75394 Building Set"


@pytest.mark.asyncio
async def test_history_only_grows_on_change(session_factory, mock_http, amazon_page):
    async def seed(store):
        await store.ensure_product("10001")
        await store.upsert_offer("10001", "Amazon", url="https://www.amazon.com/dp/B0SAME")
        await store.append_history("10001", "Amazon", 1000, True)

    await _seed(session_factory, seed)

    unchanged = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(amazon_page(price="$10.00"))))
    result = await unchanged.refresh_product("10001")
    assert result.ok and result.price_cents == 1000
    assert len(await _read(session_factory, lambda s: s.list_history("10001"))) == 1

    cheaper = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(amazon_page(price="$9.00"))))
    result = await cheaper.refresh_product("10001")
    history = await _read(session_factory, lambda s: s.list_history("10001"))

    assert result.price_cents == 900
    assert [h.price_cents for h in history] == [1000, 900]


@pytest.mark.asyncio
async def test_stock_change_alone_appends_history(session_factory, mock_http, amazon_page):
    async def seed(store):
        await store.ensure_product("10001")
        await store.append_history("10001", "Amazon", 1000, True)

    await _seed(session_factory, seed)

    page = amazon_page(price="$10.00", availability="Temporarily out of stock.")
    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(page)))
    result = await refresher.refresh_one("10001", "https://www.amazon.com/dp/B0SAME")
    history = await _read(session_factory, lambda s: s.list_history("10001"))

    assert result.in_stock is False
    assert [(h.price_cents, h.in_stock) for h in history] == [(1000, True), (1000, False)]


@pytest.mark.asyncio
async def test_synthetic_id_is_remapped(session_factory, mock_http, amazon_page):
    async def seed(store):
        await store.ensure_product("rk-12345", "Imperial Star Destroyer")
        await store.upsert_offer(
            "rk-12345", "Amazon", url="https://www.amazon.com/dp/B0REMAP", price_cents=17999, in_stock=True
        )
        await store.append_history("rk-12345", "Amazon", 17999, True)

    await _seed(session_factory, seed)

    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(amazon_page())))
    result = await refresher.refresh_product("rk-12345")

    assert result.ok
    assert result.id == "75394"
    assert result.price_cents == 15999

    old_offer = await _read(session_factory, lambda s: s.find_offer("rk-12345", "Amazon"))
    new_offer = await _read(session_factory, lambda s: s.find_offer("75394", "Amazon"))
    old_history = await _read(session_factory, lambda s: s.list_history("rk-12345"))
    new_history = await _read(session_factory, lambda s: s.list_history("75394", "Amazon"))

    assert old_offer is None
    assert new_offer.url == "https://www.amazon.com/dp/B0REMAP"
    assert old_history == []
    assert [h.price_cents for h in new_history] == [17999, 15999]


@pytest.mark.asyncio
async def test_batch_refresh_isolates_failures(session_factory, mock_http, amazon_page):
    ids = [f"1000{n}" for n in range(1, 6)]

    async def seed(store):
        for n, product_id in enumerate(ids, start=1):
            await store.ensure_product(product_id)
            await store.upsert_offer(product_id, "Amazon", url=f"https://www.amazon.com/dp/ITEM{n}")

    await _seed(session_factory, seed)

    def handler(request):
        if request.url.path.endswith("ITEM3"):
            return httpx.Response(500)
        return httpx.Response(200, text=amazon_page())

    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(handler))
    batch = await refresher.refresh_all(concurrency=2)

    assert batch.ok
    assert (batch.total, batch.refreshed, batch.failed) == (5, 4, 1)
    assert [r.id for r in batch.results] == ids
    assert batch.results[2].ok is False
    assert "500" in batch.results[2].error
    assert batch.results[2].state == RefreshState.FAILED

    offers = await _read(session_factory, lambda s: s.list_offers("Amazon"))
    prices = {o.product_id: o.price_cents for o in offers}
    assert prices["10003"] is None
    assert prices["10001"] == 15999

    data = batch.to_dict()
    assert data["results"][2]["state"] == "failed"
    assert "error" not in data["results"][0]


@pytest.mark.asyncio
async def test_batch_limit_takes_first_products(session_factory, mock_http, amazon_page):
    async def seed(store):
        for product_id in ("10003", "10001", "10002"):
            await store.ensure_product(product_id)
            await store.upsert_offer(product_id, "Amazon", url=f"https://www.amazon.com/dp/{product_id}")

    await _seed(session_factory, seed)

    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(amazon_page())))
    batch = await refresher.refresh_all(concurrency=50, limit=2)

    assert [r.id for r in batch.results] == ["10001", "10002"]


@pytest.mark.asyncio
async def test_bad_url_is_not_fetched(session_factory, mock_http):
    calls = []
    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve("", calls)))

    result = await refresher.refresh_one("10001", "javascript:alert(1)")

    assert result.ok is False
    assert result.error == "Unsupported URL protocol"
    assert calls == []


@pytest.mark.asyncio
async def test_lego_linkshare_url_is_unwrapped_and_stored(session_factory, mock_http, lego_page):
    calls = []
    refresher = PriceRefresher(LEGO, session_factory, http_client=mock_http(_serve(lego_page(), calls)))
    wrapped = (
        "https://click.linksynergy.com/deeplink?id=abc&mid=13923"
        "&murl=https%3A%2F%2Fwww.lego.com%2Fen-us%2Fproduct%2Fmillennium-falcon-75192"
    )

    result = await refresher.refresh_one("75192", wrapped)

    target = "https://www.lego.com/en-us/product/millennium-falcon-75192"
    assert calls == [target]
    assert result.ok
    assert result.source_url == target
    assert result.price_cents == 84999

    product = await _read(session_factory, lambda s: s.find_product("75192"))
    offer = await _read(session_factory, lambda s: s.find_offer("75192", "LEGO"))
    assert product.lego_url == target
    assert offer.url == target


@pytest.mark.asyncio
async def test_lego_refresh_product_falls_back_to_product_url(session_factory, mock_http, lego_page):
    async def seed(store):
        await store.upsert_product("75192", lego_url="https://www.lego.com/en-us/product/millennium-falcon-75192")

    await _seed(session_factory, seed)

    refresher = PriceRefresher(LEGO, session_factory, http_client=mock_http(_serve(lego_page())))
    result = await refresher.refresh_product("75192")

    assert result.ok
    assert result.in_stock is True


@pytest.mark.asyncio
async def test_image_only_replaces_placeholder(session_factory, mock_http, amazon_page):
    async def seed(store):
        await store.upsert_product("75394")
        await store.upsert_product("10001", image_url="https://cdn.example/custom.jpg")

    await _seed(session_factory, seed)

    page = amazon_page(image="https://m.media-amazon.com/images/I/81destroyer.jpg")
    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(page)))
    await refresher.refresh_one("75394", "https://www.amazon.com/dp/B0A")
    await refresher.refresh_one("10001", "https://www.amazon.com/dp/B0B")

    upgraded = await _read(session_factory, lambda s: s.find_product("75394"))
    kept = await _read(session_factory, lambda s: s.find_product("10001"))
    assert upgraded.image_url == "https://m.media-amazon.com/images/I/81destroyer.jpg"
    assert kept.image_url == "https://cdn.example/custom.jpg"


@pytest.mark.asyncio
async def test_refresh_product_without_url(session_factory, mock_http):
    async def seed(store):
        await store.ensure_product("10001")

    await _seed(session_factory, seed)

    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve("")))
    result = await refresher.refresh_product("10001")

    assert result.ok is False
    assert "No Amazon URL" in result.error


@pytest.mark.asyncio
async def test_new_product_gets_placeholder_name_and_image(session_factory, mock_http):
    page = "<html><body><span id='priceblock_ourprice'>$24.99</span></body></html>"
    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(page)))

    result = await refresher.refresh_one("40567", "https://www.amazon.com/dp/B0NONAME")
    product = await _read(session_factory, lambda s: s.find_product("40567"))

    assert result.price_cents == 2499
    assert result.in_stock is True
    assert product.display_name == "LEGO Set 40567"
    assert product.image_url == PLACEHOLDER_IMAGE


def test_clamp_concurrency():
    assert clamp_concurrency(None) == 2
    assert clamp_concurrency(0) == 1
    assert clamp_concurrency(-5) == 1
    assert clamp_concurrency(4) == 4
    assert clamp_concurrency(500) == 10


@pytest.mark.asyncio
async def test_oversized_price_is_ignored(session_factory, mock_http):
    page = f'<html><body><span itemprop="price" content="{"9" * 400}">n/a</span></body></html>'
    refresher = PriceRefresher(AMAZON, session_factory, http_client=mock_http(_serve(page)))

    result = await refresher.refresh_one("75394", "https://www.amazon.com/dp/B0HUGE")
    offer = await _read(session_factory, lambda s: s.find_offer("75394", "Amazon"))

    assert result.ok is True
    assert result.price_cents is None
    assert offer.price_cents is None


@pytest.mark.asyncio
async def test_commit_failure_raises_persistence_error(session_factory, mock_http, amazon_page):
    refresher = PriceRefresher(
        AMAZON,
        _failing_commits(session_factory, "75394"),
        http_client=mock_http(_serve(amazon_page())),
    )

    with pytest.raises(PersistenceError):
        await refresher.refresh_one("75394", "https://www.amazon.com/dp/B0CTEST394")

    assert await _read(session_factory, lambda s: s.find_offer("75394", "Amazon")) is None


@pytest.mark.asyncio
async def test_batch_commit_failure_only_fails_that_item(session_factory, mock_http, amazon_page):
    ids = ["10001", "10002", "10003"]

    async def seed(store):
        for product_id in ids:
            await store.ensure_product(product_id)
            await store.upsert_offer(product_id, "Amazon", url=f"https://www.amazon.com/dp/B0{product_id}")

    await _seed(session_factory, seed)

    refresher = PriceRefresher(
        AMAZON,
        _failing_commits(session_factory, "10002"),
        http_client=mock_http(_serve(amazon_page())),
    )
    batch = await refresher.refresh_all(concurrency=3)

    assert batch.ok
    assert (batch.total, batch.refreshed, batch.failed) == (3, 2, 1)
    assert batch.results[1].ok is False
    assert batch.results[1].state == RefreshState.FAILED
    assert "disk I/O error" in batch.results[1].error

    offers = await _read(session_factory, lambda s: s.list_offers("Amazon"))
    prices = {o.product_id: o.price_cents for o in offers}
    assert prices == {"10001": 15999, "10002": None, "10003": 15999}
