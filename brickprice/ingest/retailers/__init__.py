"""Retailer profile registry."""

from __future__ import annotations

from typing import Optional

from brickprice.ingest.retailers.base import RetailerProfile, TextPattern
from brickprice.ingest.retailers.amazon import AMAZON, AMAZON_RETAILER
from brickprice.ingest.retailers.lego import LEGO, LEGO_RETAILER

RAKUTEN_LEGO_RETAILER = "RAKUTEN_LEGO"

_PROFILES = {
    "amazon": AMAZON,
    "lego": LEGO,
}

_LABEL_OVERRIDES = {
    RAKUTEN_LEGO_RETAILER: LEGO_RETAILER,
}


def get_profile(retailer: str) -> RetailerProfile:
    """Return the profile for a retailer channel.

    Raises:
        KeyError: If no profile is registered for the retailer
    """
    profile = _PROFILES.get((retailer or "").strip().lower())
    if profile is None:
        raise KeyError(f"Unknown retailer: {retailer}")
    return profile


def format_retailer_label(retailer: Optional[str]) -> str:
    """Display label for a stored retailer channel."""
    raw = (retailer or "").strip()
    if not raw:
        return "Unknown"
    return _LABEL_OVERRIDES.get(raw.upper(), raw)


__all__ = [
    "AMAZON",
    "AMAZON_RETAILER",
    "LEGO",
    "LEGO_RETAILER",
    "RAKUTEN_LEGO_RETAILER",
    "RetailerProfile",
    "TextPattern",
    "get_profile",
    "format_retailer_label",
]
