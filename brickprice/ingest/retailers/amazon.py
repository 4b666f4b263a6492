"""Amazon product page profile."""

import re

from brickprice.ingest.retailers.base import (
    GENERIC_DOLLAR_PATTERN,
    RetailerProfile,
    text_pattern,
)

AMAZON_RETAILER = "Amazon"

# Ordered by priority - most reliable widgets first
PRICE_PATTERNS = (
    text_pattern(
        "priceblock",
        r"id=[\"']priceblock_(?:ourprice|dealprice|saleprice|pospromoprice)[\"'][^>]*>\s*([^<]+)",
        80,
    ),
    text_pattern(
        "price_to_pay",
        r"class=[\"'][^\"']*(?:apexPriceToPay|priceToPay)[^\"']*[\"'][^>]*>[\s\S]{0,200}?"
        r"<span[^>]*class=[\"'][^\"']*a-offscreen[^\"']*[\"'][^>]*>([^<]+)",
        78,
    ),
    text_pattern(
        "price_to_pay_json",
        r"\"priceToPay\"\s*:\s*\{\s*\"value\"\s*:\s*\"?(\d+(?:\.\d+)?)\"?",
        70,
    ),
    text_pattern(
        "itemprop_content",
        r"itemprop=[\"']price[\"'][^>]*content=[\"']([^\"']+)[\"']",
        65,
    ),
    text_pattern("itemprop_text", r"itemprop=[\"']price[\"'][^>]*>\s*([^<]+)", 65),
    text_pattern(
        "whole_fraction",
        r"class=[\"']a-price-whole[\"'][^>]*>\s*([\d,]+)[\s\S]{0,120}?"
        r"class=[\"']a-price-fraction[\"'][^>]*>\s*(\d{2})",
        60,
    ),
    text_pattern(
        "a_price",
        r"class=[\"'][^\"']*\ba-price\b[^\"']*[\"'][^>]*>[\s\S]{0,200}?"
        r"<span[^>]*class=[\"'][^\"']*a-offscreen[^\"']*[\"'][^>]*>([^<]+)",
        55,
    ),
    text_pattern("price_json", r"\"price\"\s*:\s*\"(\d+(?:\.\d+)?)\"", 50),
    GENERIC_DOLLAR_PATTERN,
)

AMAZON = RetailerProfile(
    name=AMAZON_RETAILER,
    seller_names=("amazon", "amazon.com"),
    text_patterns=PRICE_PATTERNS,
    availability_block=re.compile(r"id=[\"']availability[\"'][^>]*>([\s\S]*?)</div>", re.IGNORECASE),
    availability_patterns=(
        re.compile(
            r"(In Stock|Currently unavailable|Out of stock|Temporarily out of stock)",
            re.IGNORECASE,
        ),
    ),
    resolve_identity=True,
)
