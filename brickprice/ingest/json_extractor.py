"""Extract structured product data embedded in HTML pages."""

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)

_WRAPPER = re.compile(r"^\s*(?:<!--|<!\[CDATA\[)|(?:-->|\]\]>)\s*$")


def _loads_permissive(text: str) -> Any:
    """Parse JSON allowing control characters and stray comment/CDATA wrappers."""
    cleaned = _WRAPPER.sub("", text.strip())
    # Some pages end a block with a dangling semicolon
    cleaned = cleaned.rstrip().rstrip(";")
    return json.loads(cleaned, strict=False)


def extract_next_data(html: str) -> Optional[Dict[str, Any]]:
    """
    Extract __NEXT_DATA__ script tag content.

    LEGO.com product pages are a Next.js application.
    """
    try:
        tree = HTMLParser(html)
        scripts = tree.css("script#__NEXT_DATA__")
        if scripts:
            return _loads_permissive(scripts[0].text())
    except (json.JSONDecodeError, RecursionError, AttributeError, IndexError) as e:
        logger.debug(f"Failed to extract __NEXT_DATA__: {e}")
    return None


def extract_json_ld(html: str) -> List[Any]:
    """
    Extract JSON-LD structured data from script tags.

    Malformed blocks are skipped. Top-level arrays are spread into the result.
    """
    results: List[Any] = []
    if not html:
        return results

    tree = HTMLParser(html)
    for script in tree.css("script"):
        script_type = (script.attributes.get("type") or "").lower()
        if "ld+json" not in script_type:
            continue
        text = script.text() or ""
        if not text.strip():
            continue
        try:
            data = _loads_permissive(text)
        except (json.JSONDecodeError, RecursionError) as e:
            logger.debug(f"Skipping malformed JSON-LD block: {e}")
            continue
        if isinstance(data, list):
            results.extend(data)
        else:
            results.append(data)
    return results


def flatten_nodes(objects: List[Any]) -> List[Dict[str, Any]]:
    """
    Flatten JSON-LD objects so nested product nodes surface at the top level.

    Lists and ``@graph`` containers are walked recursively. Every dict found
    is emitted, containers before their children, in document order.
    """
    out: List[Dict[str, Any]] = []

    def walk(obj: Any, depth: int) -> None:
        if depth > 12:
            return
        if isinstance(obj, list):
            for item in obj:
                walk(item, depth + 1)
        elif isinstance(obj, dict):
            out.append(obj)
            graph = obj.get("@graph")
            if isinstance(graph, (list, dict)):
                walk(graph, depth + 1)

    walk(objects, 0)
    return out


def find_strings(obj: Any) -> Iterator[str]:
    """Yield every string leaf of a JSON value, depth-first."""
    stack = [obj]
    while stack:
        cur = stack.pop()
        if isinstance(cur, str):
            yield cur
        elif isinstance(cur, dict):
            stack.extend(reversed(list(cur.values())))
        elif isinstance(cur, list):
            stack.extend(reversed(cur))


def node_types(node: Dict[str, Any]) -> List[str]:
    """Lower-cased ``@type`` values of a node."""
    raw = node.get("@type")
    if isinstance(raw, str):
        return [raw.lower()]
    if isinstance(raw, list):
        return [str(t).lower() for t in raw if t]
    return []


def is_product_node(node: Dict[str, Any]) -> bool:
    """True for Product-like nodes (typed as such, or carrying offers)."""
    types = node_types(node)
    if any(t in ("product", "productgroup", "individualproduct") for t in types):
        return True
    return "offers" in node
