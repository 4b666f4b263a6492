"""Candidate price scanning.

Two independent passes over a fetched page:

* Pass A reads schema.org offers and price specifications from the flattened
  JSON-LD nodes.
* Pass B runs the retailer's ordered text patterns over the raw HTML and
  drops matches whose surrounding text marks them as something other than the
  buy-box price (unit prices, financing, list prices, used listings).

Both passes only emit candidates with a positive cent value.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Literal, Optional

from brickprice.ingest.base import PriceCandidate
from brickprice.ingest.json_extractor import extract_next_data, find_strings
from brickprice.ingest.retailers.base import DOLLAR_AMOUNT, RetailerProfile, TextPattern
from brickprice.normalize.money import parse_money_to_cents

logger = logging.getLogger(__name__)

OFFER_FIELD_SCORES = (
    ("price", 90),
    ("priceSpecification", 85),
    ("lowPrice", 70),
    ("highPrice", 40),
)
NODE_FIELD_SCORES = (
    ("price", 75),
    ("priceSpecification", 70),
)
SELLER_MATCH_BONUS = 15
SELLER_MISMATCH_PENALTY = 20
NEXT_DATA_SCORE = 30

_SKIPPED_CONDITIONS = ("used", "refurbished", "damaged")
_UNIT_SPEC_FIELDS = ("unitCode", "unitText", "referenceQuantity", "unitQuantity")
_NEXT_DATA_PRICE = re.compile(DOLLAR_AMOUNT)


@dataclass(frozen=True)
class ExclusionContext:
    """Text around a match that disqualifies it, searched from ``start - before`` to ``end + after``."""

    name: str
    regex: re.Pattern
    before: int
    after: int

    def matches(self, html: str, start: int, end: int) -> bool:
        window = html[max(0, start - self.before):min(len(html), end + self.after)]
        return bool(self.regex.search(window))


UNIT_PRICE_CONTEXT = ExclusionContext(
    "unit_price",
    re.compile(
        r"priceperunit|price-per-unit|unitprice|unit-price"
        r"|per (?:ounce|oz|lb|count|item|unit)"
        r"|/\s?(?:oz|ounce|lb|count|unit)\b",
        re.IGNORECASE,
    ),
    before=48,
    after=12,
)
INSTALLMENT_CONTEXT = ExclusionContext(
    "installment",
    re.compile(
        r"per month|/mo\b|/month|klarna|affirm|afterpay|installment|\bx\s?4\b",
        re.IGNORECASE,
    ),
    before=64,
    after=40,
)
LIST_PRICE_CONTEXT = ExclusionContext(
    "list_price",
    re.compile(r"list price|was:|strike|a-text-price|basisprice|typical price", re.IGNORECASE),
    before=64,
    after=8,
)
SECONDARY_MARKET_CONTEXT = ExclusionContext(
    "secondary_market",
    re.compile(
        r"\bused\b|refurbished|renewed|rental|other sellers|more buying choices|pre-owned",
        re.IGNORECASE,
    ),
    before=96,
    after=16,
)
PROMO_CONTEXT = ExclusionContext(
    "promo",
    re.compile(r"\boff\b|save|coupon|reward|savings|discount|promo", re.IGNORECASE),
    before=32,
    after=32,
)

EXCLUSION_CONTEXTS = (
    UNIT_PRICE_CONTEXT,
    INSTALLMENT_CONTEXT,
    LIST_PRICE_CONTEXT,
    SECONDARY_MARKET_CONTEXT,
)


@dataclass
class StructuredScan:
    """Pass A output: candidates plus the first availability value seen."""

    candidates: list[PriceCandidate] = field(default_factory=list)
    availability: Any = None


@dataclass(frozen=True)
class PriceHolder:
    """A validated JSON-LD mapping that may carry price fields."""

    kind: Literal["offer", "node"]
    data: dict
    seller: Optional[str] = None


@dataclass
class PageSignals:
    """Everything the reconciler needs from one page."""

    html: str
    profile: RetailerProfile
    structured: StructuredScan
    text_candidates: list[PriceCandidate]

    @property
    def candidates(self) -> list[PriceCandidate]:
        return self.structured.candidates + self.text_candidates


# ----------------------------------------------------------------------
# Accessors for untyped JSON-LD
# ----------------------------------------------------------------------


def _as_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _seller_name(offer: dict) -> Optional[str]:
    seller = offer.get("seller")
    if isinstance(seller, str):
        return seller.strip() or None
    seller = _as_dict(seller)
    if seller is not None:
        name = seller.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
    return None


def _is_skipped_condition(offer: dict) -> bool:
    condition = offer.get("itemCondition")
    if not isinstance(condition, str):
        return False
    lowered = condition.lower()
    return any(word in lowered for word in _SKIPPED_CONDITIONS)


def is_unit_price_spec(spec: Any) -> bool:
    """True when a priceSpecification describes a per-unit price."""
    spec = _as_dict(spec)
    if spec is None:
        return False
    type_name = str(spec.get("@type") or spec.get("priceType") or "").lower()
    if "unitprice" in type_name:
        return True
    return any(spec.get(key) for key in _UNIT_SPEC_FIELDS)


def _iter_offers(offers: Any, depth: int = 0) -> Iterator[dict]:
    """Walk an ``offers`` value, descending into AggregateOffer containers."""
    if depth > 4:
        return
    for item in _as_list(offers):
        offer = _as_dict(item)
        if offer is None:
            continue
        yield offer
        if "offers" in offer:
            yield from _iter_offers(offer["offers"], depth + 1)


def _price_holders(node: dict) -> Iterator[PriceHolder]:
    for offer in _iter_offers(node.get("offers")):
        if _is_skipped_condition(offer):
            continue
        yield PriceHolder(kind="offer", data=offer, seller=_seller_name(offer))
    yield PriceHolder(kind="node", data=node)


def _field_values(data: dict, key: str) -> Iterator[Any]:
    if key != "priceSpecification":
        value = data.get(key)
        if value is not None:
            yield value
        return

    for spec in _as_list(data.get(key)):
        spec = _as_dict(spec)
        if spec is None or is_unit_price_spec(spec):
            continue
        if spec.get("price") is not None:
            yield spec["price"]


# ----------------------------------------------------------------------
# Pass A
# ----------------------------------------------------------------------


def scan_structured(nodes: list[dict], profile: RetailerProfile) -> StructuredScan:
    """Collect scored candidates from flattened JSON-LD nodes."""
    scan = StructuredScan()

    for node in nodes:
        for holder in _price_holders(node):
            if scan.availability is None and holder.data.get("availability") is not None:
                scan.availability = holder.data["availability"]

            field_scores = OFFER_FIELD_SCORES if holder.kind == "offer" else NODE_FIELD_SCORES
            adjustment = 0
            if holder.seller:
                if profile.seller_matches(holder.seller):
                    adjustment = SELLER_MATCH_BONUS
                else:
                    adjustment = -SELLER_MISMATCH_PENALTY

            for key, score in field_scores:
                for raw in _field_values(holder.data, key):
                    cents = parse_money_to_cents(raw)
                    if cents is None or cents <= 0:
                        continue
                    scan.candidates.append(
                        PriceCandidate(
                            cents=cents,
                            score=score + adjustment,
                            source=f"ld:{holder.kind}.{key}",
                        )
                    )

    return scan


# ----------------------------------------------------------------------
# Pass B
# ----------------------------------------------------------------------


def excluded_by_context(
    html: str, start: int, end: int, promo_filter: bool = False
) -> Optional[str]:
    """Name of the first exclusion context around ``html[start:end]``, if any."""
    for context in EXCLUSION_CONTEXTS:
        if context.matches(html, start, end):
            return context.name
    if promo_filter and PROMO_CONTEXT.matches(html, start, end):
        return PROMO_CONTEXT.name
    return None


def _match_value(match: re.Match) -> Optional[str]:
    value = match.group(1)
    if value is None:
        return None
    if match.re.groups >= 2:
        fraction = match.group(2) or "00"
        return f"{value.rstrip('.')}.{fraction}"
    return value


def _scan_pattern(html: str, pattern: TextPattern) -> Iterator[PriceCandidate]:
    for match in pattern.regex.finditer(html):
        raw = _match_value(match)
        if not raw or not raw.strip():
            continue
        start, end = match.span(1)
        reason = excluded_by_context(html, start, end, pattern.promo_filter)
        if reason:
            logger.debug(f"Rejected {pattern.name} match {raw.strip()!r}: {reason}")
            continue
        cents = parse_money_to_cents(raw)
        if cents is None or cents <= 0:
            continue
        yield PriceCandidate(cents=cents, score=pattern.score, source=f"text:{pattern.name}")


def scan_next_data(html: str) -> Optional[PriceCandidate]:
    """First formatted dollar amount in the page's __NEXT_DATA__ payload."""
    data = extract_next_data(html)
    if data is None:
        return None
    for text in find_strings(data):
        match = _NEXT_DATA_PRICE.search(text)
        if not match:
            continue
        cents = parse_money_to_cents(match.group(1))
        if cents and cents > 0:
            return PriceCandidate(cents=cents, score=NEXT_DATA_SCORE, source="next_data")
    return None


def scan_text(html: str, profile: RetailerProfile) -> list[PriceCandidate]:
    """Run the profile's text patterns over raw HTML."""
    candidates: list[PriceCandidate] = []
    if not html:
        return candidates

    for pattern in profile.text_patterns:
        candidates.extend(_scan_pattern(html, pattern))

    if profile.scan_next_data:
        found = scan_next_data(html)
        if found is not None:
            candidates.append(found)

    return candidates


def collect_signals(html: str, nodes: list[dict], profile: RetailerProfile) -> PageSignals:
    """Run both passes over a page."""
    structured = scan_structured(nodes, profile)
    text_candidates = scan_text(html, profile)
    logger.debug(
        f"{profile.name}: {len(structured.candidates)} structured, "
        f"{len(text_candidates)} text candidates"
    )
    return PageSignals(
        html=html,
        profile=profile,
        structured=structured,
        text_candidates=text_candidates,
    )
