"""Retailer profile base types."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from brickprice.ingest.urls import normalize_source_url

# "$49.99", "$ 1,299.99", "$50"
DOLLAR_AMOUNT = r"\$\s?(\d{1,3}(?:,\d{3})*(?:\.\d{2})?)"


@dataclass(frozen=True)
class TextPattern:
    """A raw-HTML price pattern. Group 1 holds the price text.

    A second group, when present, holds the fractional part.
    """

    name: str
    regex: re.Pattern
    score: float
    promo_filter: bool = False


def text_pattern(name: str, pattern: str, score: float, promo_filter: bool = False) -> TextPattern:
    return TextPattern(
        name=name,
        regex=re.compile(pattern, re.IGNORECASE),
        score=score,
        promo_filter=promo_filter,
    )


GENERIC_DOLLAR_PATTERN = text_pattern("generic_dollar", DOLLAR_AMOUNT, 10, promo_filter=True)


@dataclass(frozen=True)
class RetailerProfile:
    """How prices, availability and identity are read for one retailer channel."""

    name: str
    seller_names: tuple[str, ...] = ()
    text_patterns: tuple[TextPattern, ...] = ()
    availability_block: Optional[re.Pattern] = None
    availability_patterns: tuple[re.Pattern, ...] = ()
    resolve_identity: bool = False
    product_family: str = "lego"
    scan_next_data: bool = False
    persist_source_url: bool = False
    url_normalizer: Callable[[Optional[str]], str] = field(default=normalize_source_url)

    def normalize_url(self, raw: Optional[str]) -> str:
        return self.url_normalizer(raw)

    def seller_matches(self, seller_name: str) -> bool:
        lowered = seller_name.strip().lower()
        return any(name.lower() in lowered for name in self.seller_names)
