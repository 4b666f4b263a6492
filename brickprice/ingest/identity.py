"""Resolve a LEGO set number, display name and image from a product page."""

from __future__ import annotations

import html as html_lib
import json
import logging
import re
from typing import TYPE_CHECKING, Any, Iterable, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser

from brickprice.ingest.base import Identity
from brickprice.ingest.json_extractor import node_types
from brickprice.ingest.retailers.base import RetailerProfile
from brickprice.normalize.money import strip_html_tags

if TYPE_CHECKING:
    from brickprice.ingest.catalog import CatalogLookup

logger = logging.getLogger(__name__)

_SET_ID = re.compile(r"^\d{4,6}$")
_SET_TOKEN = re.compile(r"\b\d{4,6}\b")
_PIECE_COUNT = re.compile(r"\b(\d{4,6})\s*-?\s*(?:pieces?|pcs?)\b", re.IGNORECASE)
_MODEL_NUMBER_LABELS = (
    re.compile(r"item model number[^0-9]*([0-9]{4,6})(?![0-9])", re.IGNORECASE),
    re.compile(r"model number[^0-9]*([0-9]{4,6})(?![0-9])", re.IGNORECASE),
)
_TITLE_BOILERPLATE = (
    re.compile(r"^\s*Amazon\.com\s*:\s*", re.IGNORECASE),
    re.compile(r"\s*:\s*Toys\s*&\s*Games\s*$", re.IGNORECASE),
    re.compile(r"\s*-?\s*Amazon\.com.*$", re.IGNORECASE),
    re.compile(r"\s*\|[^|]*LEGO®?\s*Shop.*$", re.IGNORECASE),
)
_PRODUCT_TYPES = ("product", "productgroup", "individualproduct")
_LENGTH_PREFERENCE = (5, 4, 6)


# ----------------------------------------------------------------------
# Set numbers
# ----------------------------------------------------------------------


def is_likely_set_id(value: Any) -> bool:
    """
    Check whether a token looks like a LEGO set number.

    Four to six digits, no leading zero, and not a calendar year.
    """
    text = str(value if value is not None else "").strip()
    if not _SET_ID.match(text):
        return False
    if text.startswith("0"):
        return False
    if len(text) == 4 and 1900 <= int(text) <= 2099:
        return False
    return True


def pick_likely_set_id(tokens: Iterable[str]) -> Optional[str]:
    """Prefer 5-digit over 4-digit over 6-digit ids, taking the last of each length."""
    unique = [t for t in dict.fromkeys(tokens) if is_likely_set_id(t)]
    for length in _LENGTH_PREFERENCE:
        same_length = [t for t in unique if len(t) == length]
        if same_length:
            return same_length[-1]
    return None


def extract_set_id_from_text(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    piece_counts = {m.group(1) for m in _PIECE_COUNT.finditer(text)}
    tokens = [t for t in _SET_TOKEN.findall(text) if t not in piece_counts]
    return pick_likely_set_id(tokens)


# ----------------------------------------------------------------------
# Titles
# ----------------------------------------------------------------------


def clean_title(raw: Optional[str]) -> Optional[str]:
    """Strip markup, entities and retailer boilerplate from a page title."""
    if not raw:
        return None
    title = html_lib.unescape(strip_html_tags(raw))
    for pattern in _TITLE_BOILERPLATE:
        title = pattern.sub("", title)
    title = title.strip()
    return title or None


def _structured_names(nodes: list[dict], product_only: bool = False) -> list[str]:
    names = []
    for node in nodes:
        if product_only and not any(t in _PRODUCT_TYPES for t in node_types(node)):
            continue
        name = node.get("name")
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    return names


def extract_title(html: str, nodes: list[dict]) -> Optional[str]:
    """Display title: product JSON-LD name, then #productTitle, then <title>."""
    for name in _structured_names(nodes, product_only=True):
        title = clean_title(name)
        if title:
            return title

    if not html:
        return None

    tree = HTMLParser(html)
    for selector in ("#productTitle", "title"):
        node = tree.css_first(selector)
        if node is not None:
            title = clean_title(node.text())
            if title:
                return title
    return None


def _model_fields(nodes: list[dict]) -> Iterable[str]:
    for node in nodes:
        for key in ("mpn", "model"):
            value = node.get(key)
            if isinstance(value, dict):
                value = value.get("name")
            if isinstance(value, (str, int)) and not isinstance(value, bool):
                yield str(value).strip()


# ----------------------------------------------------------------------
# Resolver
# ----------------------------------------------------------------------


def extract_identity(html: str, nodes: list[dict]) -> Identity:
    """Resolve identity from the page alone."""
    title = extract_title(html, nodes)
    set_id = extract_set_id_from_text(title)
    if set_id:
        return Identity(set_id=set_id, name=title)

    names = _structured_names(nodes)
    for name in names:
        set_id = extract_set_id_from_text(name)
        if set_id:
            return Identity(set_id=set_id, name=title or clean_title(name))

    for value in _model_fields(nodes):
        set_id = value if is_likely_set_id(value) else extract_set_id_from_text(value)
        if set_id:
            return Identity(set_id=set_id, name=title)

    for pattern in _MODEL_NUMBER_LABELS:
        match = pattern.search(html or "")
        if match and is_likely_set_id(match.group(1)):
            return Identity(set_id=match.group(1), name=title)

    fallback_name = title or (clean_title(names[0]) if names else None)
    return Identity(set_id=None, name=fallback_name)


async def resolve_identity(
    html: str,
    nodes: list[dict],
    profile: RetailerProfile,
    catalog: Optional["CatalogLookup"] = None,
) -> Identity:
    """
    Resolve identity from the page, then from the catalog by name.

    The catalog is only consulted when the name mentions the profile's
    product family. Lookup failures are treated as "not found".
    """
    identity = extract_identity(html, nodes)
    if identity.set_id or catalog is None:
        return identity

    name = identity.name
    if not name or profile.product_family not in name.lower():
        return identity

    try:
        found = await catalog.find_catalog_id_by_name(name)
    except Exception as e:
        logger.warning(f"Catalog lookup failed for {name!r}: {e}")
        return identity

    if found and is_likely_set_id(found):
        logger.info(f"Catalog lookup resolved {name!r} to {found}")
        return Identity(set_id=found, name=name)
    return identity


# ----------------------------------------------------------------------
# Images
# ----------------------------------------------------------------------


def _structured_image(nodes: list[dict]) -> Optional[str]:
    for node in nodes:
        image = node.get("image")
        if isinstance(image, list):
            image = image[0] if image else None
        if isinstance(image, dict):
            image = image.get("url")
        if isinstance(image, str) and image.strip():
            return image.strip()
    return None


def _attr(tree: HTMLParser, selector: str, attribute: str) -> Optional[str]:
    node = tree.css_first(selector)
    if node is None:
        return None
    value = node.attributes.get(attribute)
    return value.strip() if value and value.strip() else None


def _first_dynamic_image(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    try:
        parsed = json.loads(raw.replace("&quot;", '"'))
    except (json.JSONDecodeError, RecursionError):
        return None
    if isinstance(parsed, dict) and parsed:
        return str(next(iter(parsed)))
    return None


def extract_image_url(html: str, nodes: list[dict], base_url: Optional[str] = None) -> Optional[str]:
    """
    Best product image on the page.

    Checked in order: JSON-LD image, og:image, twitter:image, the Amazon
    landing image, then the first entry of its dynamic image map.
    """
    found = _structured_image(nodes)

    if not found and html:
        tree = HTMLParser(html)
        found = (
            _attr(tree, 'meta[property="og:image"]', "content")
            or _attr(tree, 'meta[name="twitter:image"]', "content")
            or _attr(tree, 'meta[property="twitter:image"]', "content")
            or _attr(tree, "#landingImage", "data-old-hires")
            or _attr(tree, "#landingImage", "src")
            or _first_dynamic_image(_attr(tree, "[data-a-dynamic-image]", "data-a-dynamic-image"))
        )

    if found and base_url:
        found = urljoin(base_url, found)
    return found
