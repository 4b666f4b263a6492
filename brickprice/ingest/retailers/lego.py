"""LEGO.com product page profile."""

import re

from brickprice.ingest.retailers.base import (
    DOLLAR_AMOUNT,
    GENERIC_DOLLAR_PATTERN,
    RetailerProfile,
    text_pattern,
)
from brickprice.ingest.urls import normalize_lego_url

LEGO_RETAILER = "LEGO"

PRICE_PATTERNS = (
    text_pattern(
        "product_price_sale",
        r"data-test=[\"']product-price-sale[\"'][^>]*>[\s\S]{0,160}?" + DOLLAR_AMOUNT,
        85,
    ),
    text_pattern(
        "product_price",
        r"data-test=[\"']product-price[\"'][^>]*>[\s\S]{0,160}?" + DOLLAR_AMOUNT,
        80,
    ),
    text_pattern(
        "product_price_class",
        r"class=[\"'][^\"']*ProductPrice[^\"']*[\"'][^>]*>[\s\S]{0,160}?" + DOLLAR_AMOUNT,
        70,
    ),
    text_pattern("formatted_amount", r"\"formattedAmount\"\s*:\s*\"([^\"]+)\"", 60),
    GENERIC_DOLLAR_PATTERN,
)

LEGO = RetailerProfile(
    name=LEGO_RETAILER,
    seller_names=("lego",),
    text_patterns=PRICE_PATTERNS,
    availability_patterns=(
        re.compile(
            r"(Available now|In stock|Temporarily out of stock|Out of stock|Sold out)",
            re.IGNORECASE,
        ),
    ),
    scan_next_data=True,
    persist_source_url=True,
    url_normalizer=normalize_lego_url,
)
