"""Pick one price and stock status out of competing page signals."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from brickprice.config import settings
from brickprice.ingest.base import PriceCandidate, PriceOutcome, ReconciledPrice
from brickprice.ingest.candidates import PageSignals
from brickprice.ingest.retailers.base import RetailerProfile
from brickprice.normalize.money import availability_to_tristate, strip_html_tags

logger = logging.getLogger(__name__)

# (ratio threshold, penalty) applied against the reference price
HEAVY_PENALTY = (0.30, 40)
LIGHT_PENALTY = (0.45, 15)
OVERPRICED_PENALTY = (1.8, 10)


def _dedupe(candidates: Iterable[PriceCandidate]) -> list[PriceCandidate]:
    """Keep the highest-scored candidate per cent value, in first-seen order."""
    best: dict[int, PriceCandidate] = {}
    for candidate in candidates:
        if candidate.cents <= 0:
            continue
        current = best.get(candidate.cents)
        if current is None or candidate.score > current.score:
            best[candidate.cents] = candidate
    return list(best.values())


def adjusted_score(candidate: PriceCandidate, reference_cents: Optional[int]) -> float:
    """Score after plausibility penalties against the reference price."""
    if not reference_cents:
        return candidate.score

    ratio = candidate.cents / reference_cents
    if ratio < HEAVY_PENALTY[0]:
        return candidate.score - HEAVY_PENALTY[1]
    if ratio < LIGHT_PENALTY[0]:
        return candidate.score - LIGHT_PENALTY[1]
    if ratio > OVERPRICED_PENALTY[0]:
        return candidate.score - OVERPRICED_PENALTY[1]
    return candidate.score


def reconcile_candidates(
    candidates: Iterable[PriceCandidate],
    reference_cents: Optional[int] = None,
    floor_ratio: Optional[float] = None,
) -> Optional[ReconciledPrice]:
    """
    Choose the winning price among candidates.

    Args:
        candidates: Candidates from both scanning passes
        reference_cents: Known MSRP, used only as a plausibility anchor
        floor_ratio: Fraction of the reference below which candidates are
            dropped (defaults to ``settings.plausibility_floor_ratio``)

    Returns:
        The top candidate, or None when there are no candidates
    """
    pool = _dedupe(candidates)
    if not pool:
        return None

    reference = reference_cents if reference_cents and reference_cents > 0 else None
    if floor_ratio is None:
        floor_ratio = settings.plausibility_floor_ratio

    if reference:
        floor = reference * floor_ratio
        above_floor = [c for c in pool if c.cents >= floor]
        if above_floor:
            pool = above_floor
        else:
            logger.debug(f"Plausibility floor {floor:.0f} would remove every candidate, skipping")

    def rank(candidate: PriceCandidate) -> tuple:
        closeness = abs(candidate.cents - reference) if reference else 0
        return (-adjusted_score(candidate, reference), closeness, -candidate.cents)

    winner = min(pool, key=rank)
    return ReconciledPrice(
        price_cents=winner.cents,
        source=winner.source,
        score=adjusted_score(winner, reference),
    )


def availability_from_text(html: str, profile: RetailerProfile) -> Optional[bool]:
    """Availability from the page's availability block or known phrases."""
    if not html:
        return None

    if profile.availability_block is not None:
        block = profile.availability_block.search(html)
        if block and block.group(1):
            return availability_to_tristate(strip_html_tags(block.group(1)))

    for pattern in profile.availability_patterns:
        match = pattern.search(html)
        if match:
            return availability_to_tristate(match.group(1))

    return None


def resolve_availability(
    structured: Any,
    html: str,
    price_cents: Optional[int],
    profile: RetailerProfile,
) -> Optional[bool]:
    """Structured signal first, then page text, then "priced means in stock"."""
    in_stock = availability_to_tristate(structured)
    if in_stock is not None:
        return in_stock

    in_stock = availability_from_text(html, profile)
    if in_stock is not None:
        return in_stock

    if price_cents is not None:
        return True
    return None


def reconcile_page(signals: PageSignals, reference_cents: Optional[int] = None) -> PriceOutcome:
    """Resolve price and stock status for one page."""
    winner = reconcile_candidates(signals.candidates, reference_cents)
    price_cents = winner.price_cents if winner else None
    in_stock = resolve_availability(
        signals.structured.availability,
        signals.html,
        price_cents,
        signals.profile,
    )

    if winner:
        logger.debug(
            f"{signals.profile.name}: selected {price_cents} from {winner.source} "
            f"(score {winner.score})"
        )

    return PriceOutcome(
        price_cents=price_cents,
        in_stock=in_stock,
        source=winner.source if winner else None,
    )
