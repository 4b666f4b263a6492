"""Tests for structured and text price candidate scanning."""

from brickprice.ingest.candidates import (
    collect_signals,
    excluded_by_context,
    is_unit_price_spec,
    scan_structured,
    scan_text,
)
from brickprice.ingest.json_extractor import extract_json_ld, flatten_nodes
from brickprice.ingest.reconciler import reconcile_page
from brickprice.ingest.retailers import AMAZON, LEGO

FILLER = "<div class='spacer'>" + ("&nbsp;" * 40) + "</div>"


def _by_cents(candidates):
    """Best-scored candidate per cent value."""
    found = {}
    for c in candidates:
        if c.cents not in found or c.score > found[c.cents].score:
            found[c.cents] = c
    return found


def test_offer_fields_and_scores():
    nodes = [
        {
            "@type": "Product",
            "name": "Haunted House",
            "offers": {
                "@type": "AggregateOffer",
                "lowPrice": "299.99",
                "highPrice": "399.99",
                "offers": [
                    {"@type": "Offer", "price": "319.99", "availability": "https://schema.org/InStock"},
                ],
            },
        }
    ]
    scan = scan_structured(nodes, LEGO)
    found = _by_cents(scan.candidates)

    assert found[29999].score == 70
    assert found[39999].score == 40
    assert found[31999].score == 90
    assert scan.availability == "https://schema.org/InStock"


def test_unit_price_specs_are_skipped():
    spec = {"@type": "UnitPriceSpecification", "price": "0.89", "unitText": "oz"}
    assert is_unit_price_spec(spec)
    assert not is_unit_price_spec({"@type": "PriceSpecification", "price": "24.99"})

    nodes = [
        {
            "@type": "Product",
            "offers": {
                "priceSpecification": [
                    spec,
                    {"@type": "PriceSpecification", "price": "24.99"},
                ]
            },
        }
    ]
    scan = scan_structured(nodes, AMAZON)

    assert [c.cents for c in scan.candidates] == [2499]
    assert scan.candidates[0].score == 85


def test_seller_attribution_and_used_offers():
    nodes = [
        {
            "@type": "Product",
            "offers": [
                {"price": "59.99", "seller": {"name": "Amazon.com"}},
                {"price": "44.99", "seller": {"name": "BrickDeals LLC"}},
                {"price": "29.99", "itemCondition": "https://schema.org/UsedCondition"},
            ],
        }
    ]
    found = _by_cents(scan_structured(nodes, AMAZON).candidates)

    assert found[5999].score == 90 + 15
    assert found[4499].score == 90 - 20
    assert 2999 not in found


def test_node_level_prices():
    nodes = [{"@type": "Product", "price": "19.99", "priceSpecification": {"price": "21.99"}}]
    found = _by_cents(scan_structured(nodes, AMAZON).candidates)

    assert found[1999].score == 75
    assert found[2199].score == 70


def test_unit_price_text_is_never_selected():
    html = f"""
    <span class="a-size-mini a-color-base">$12.99/oz</span>
    {FILLER}
    <span id="priceblock_ourprice" class="a-size-medium">$25.98</span>
    """
    candidates = scan_text(html, AMAZON)

    assert 1299 not in _by_cents(candidates)
    assert _by_cents(candidates)[2598].source == "text:priceblock"

    signals = collect_signals(html, [], AMAZON)
    assert reconcile_page(signals).price_cents == 2598


def test_list_price_installment_and_used_contexts():
    html = f"""
    <span class="a-price priceToPay"><span class="a-offscreen">$49.99</span></span>
    {FILLER}
    <span class="a-price a-text-price" data-a-strike="true"><span class="a-offscreen">$59.99</span></span>
    {FILLER}
    <span class="installment">or $12.50/mo for 4 months with Affirm</span>
    {FILLER}
    <span class="olp-text">Used - Like New from $31.00</span>
    """
    found = _by_cents(scan_text(html, AMAZON))

    assert 4999 in found
    assert 5999 not in found
    assert 1250 not in found
    assert 3100 not in found


def test_promo_context_only_filters_generic_matches():
    html = f"""
    <span id="priceblock_dealprice">$40.00</span><span class="badge">Save 20% off</span>
    {FILLER}
    <span class="coupon">Apply $5.00 coupon</span>
    """
    candidates = scan_text(html, AMAZON)

    assert [(c.cents, c.source) for c in candidates] == [(4000, "text:priceblock")]


def test_whole_fraction_pattern():
    html = (
        '<span class="a-price-whole">1,049<span class="a-price-decimal">.</span></span>'
        '<span class="a-price-fraction">95</span>'
    )
    found = _by_cents(scan_text(html, AMAZON))

    assert found[104995].source == "text:whole_fraction"


def test_lego_patterns_and_next_data():
    html = """
    <span data-test="product-price-sale"><span class="sr-only">Sale Price</span>$63.99</span>
    <script id="__NEXT_DATA__" type="application/json">
    {"props": {"pageProps": {"variant": {"price": {"formattedValue": "$79.99"}}}}}
    </script>
    """
    found = _by_cents(scan_text(html, LEGO))

    assert found[6399].score == 85
    assert found[7999].source == "next_data"
    assert found[7999].score == 30


def test_excluded_by_context_reports_reason():
    html = "price per ounce: $0.42 here"
    start = html.index("0.42")
    assert excluded_by_context(html, start, start + 4) == "unit_price"
    assert excluded_by_context("  $10.00  ", 3, 8) is None
    assert excluded_by_context("10% off $10.00", 9, 14, promo_filter=True) == "promo"


def test_json_ld_and_text_from_same_page(lego_page):
    html = lego_page(price="849.99")
    nodes = flatten_nodes(extract_json_ld(html))
    signals = collect_signals(html, nodes, LEGO)

    sources = {c.source for c in signals.candidates}
    assert "ld:offer.price" in sources
    assert "text:product_price" in sources

    outcome = reconcile_page(signals)
    assert outcome.price_cents == 84999
    assert outcome.in_stock is True
    assert outcome.source == "ld:offer.price"
