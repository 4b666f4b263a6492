"""Normalize scraped price, availability and markup text."""

import math
import re
from decimal import Decimal
from typing import Any, Optional

_NON_NUMERIC = re.compile(r"[^0-9.]")
_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")

# Checked first so "only 3 left in stock" stays True
_IN_STOCK = re.compile(r"instock|in stock|\bavailable now\b")
OUT_OF_STOCK_PHRASES = (
    "outofstock",
    "out of stock",
    "unavailable",
    "temporarily out",
    "sold out",
    "soldout",
)


# Largest value the integer price columns hold
MAX_PRICE_CENTS = 2**31 - 1


def _bounded(cents: int) -> Optional[int]:
    return cents if cents <= MAX_PRICE_CENTS else None


def _round_half_up(value: float) -> Optional[int]:
    if math.isnan(value) or math.isinf(value):
        return None
    return _bounded(int(math.floor(value + 0.5)))


def parse_money_to_cents(raw: Any) -> Optional[int]:
    """
    Convert a scraped price to integer cents.

    Integral numbers are taken as cents already, fractional numbers as
    dollars. Strings are reduced to digits and dots; they are read as dollars
    when they contain a decimal point or are below 1000, otherwise as cents.
    So "500" is $500.00 while "1500" is $15.00. Stored prices are compared
    by equality, so this must stay stable.

    Returns:
        Cents, or None when the input is empty, not a price, or too large
        to store
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, Decimal):
        raw = float(raw)

    if isinstance(raw, int):
        return _bounded(raw)

    if isinstance(raw, float):
        if math.isnan(raw) or math.isinf(raw):
            return None
        if raw.is_integer():
            return _bounded(int(raw))
        return _round_half_up(raw * 100)

    if isinstance(raw, str):
        cleaned = _NON_NUMERIC.sub("", raw.strip())
        if not cleaned:
            return None
        try:
            value = float(cleaned)
        except ValueError:
            return None
        if math.isnan(value) or math.isinf(value):
            return None
        if "." in cleaned or value < 1000:
            return _round_half_up(value * 100)
        return _round_half_up(value)

    return None


def dollars_to_cents(raw: Any) -> Optional[int]:
    """
    Convert a dollar amount such as an MSRP to cents.

    Unlike scraped prices, every number here is dollars, so 849 and "849"
    are both 84900 cents.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = _NON_NUMERIC.sub("", raw)
        if not raw:
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        return None
    cents = _round_half_up(value * 100)
    return cents if cents and cents > 0 else None


def availability_to_tristate(raw: Any) -> Optional[bool]:
    """Map an availability string (schema.org URL or page text) to True/False/None."""
    if raw is None:
        return None
    text = str(raw).lower()
    if _IN_STOCK.search(text):
        return True
    if any(phrase in text for phrase in OUT_OF_STOCK_PHRASES):
        return False
    return None


def strip_html_tags(html: Optional[str]) -> str:
    """Remove tag markup and collapse whitespace."""
    if not html:
        return ""
    return _WHITESPACE.sub(" ", _TAG.sub(" ", html)).strip()


def format_cents_usd(cents: Optional[int]) -> str:
    if cents is None:
        return "—"
    return f"${cents / 100:.2f}"
