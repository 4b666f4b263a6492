"""Shared fixtures: sqlite-backed sessions and retailer page builders."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CATALOG_LOOKUP_ENABLED", "false")
os.environ.setdefault("LOG_TO_FILE", "false")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from brickprice.db.models import Base


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """File-backed sqlite so concurrent workers each get their own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


def _amazon_page(
    title: str = "LEGO Star Wars Imperial Star Destroyer 75394 Building Set",
    price: str = "$159.99",
    availability: str = "In Stock",
    image: str = "",
) -> str:
    meta = f'<meta property="og:image" content="{image}">' if image else ""
    return f"""<!DOCTYPE html>
<html>
<head>
<title>Amazon.com: {title} : Toys &amp; Games</title>
{meta}
</head>
<body>
<div id="centerCol">
  <h1 id="title"><span id="productTitle" class="a-size-large product-title-word-break">  {title}  </span></h1>
</div>
<div id="corePrice_feature_div" class="celwidget">
  <span class="a-price aok-align-center reinventPricePriceToPayMargin priceToPay">
    <span class="a-offscreen">{price}</span>
  </span>
</div>
<div id="availability" class="a-section a-spacing-base">
  <span class="a-size-medium a-color-success">{availability}</span>
</div>
</body>
</html>"""


def _lego_page(name: str = "Millennium Falcon", price: str = "849.99") -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
<title>{name} 75192 | Star Wars | Buy online at the Official LEGO® Shop US</title>
<script type="application/ld+json">
{{"@context": "https://schema.org", "@type": "Product", "name": "{name}",
  "sku": "75192",
  "offers": {{"@type": "Offer", "price": "{price}", "priceCurrency": "USD",
    "availability": "https://schema.org/InStock",
    "seller": {{"@type": "Organization", "name": "LEGO"}}}}}}
</script>
</head>
<body>
<div class="ProductOverviewstyles__PriceAvailabilityWrapper">
  <span data-test="product-price" class="Text__BaseText">${price}</span>
</div>
</body>
</html>"""


@pytest.fixture
def amazon_page():
    """Builder for a minimal Amazon product page."""
    return _amazon_page


@pytest.fixture
def lego_page():
    """Builder for a minimal LEGO.com product page."""
    return _lego_page


@pytest_asyncio.fixture
async def mock_http():
    """Build httpx clients whose responses come from ``handler``."""
    clients = []

    def build(handler) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield build

    for client in clients:
        await client.aclose()
