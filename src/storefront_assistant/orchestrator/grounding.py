"""Grounding of loosely phrased references against session snapshots.

The model often names things the way the shopper did ("the red runner")
instead of by catalog or cart-line id.  These helpers resolve such names
against the last product search or the last cart snapshot.  They never call
the storefront.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

import structlog

from storefront_assistant.models import Cart, CartLine, Product

logger = structlog.get_logger(__name__)

# Shopify's placeholder title for single-variant products.
_PLACEHOLDER_VARIANT_TITLE = "default title"

# Both sides of a substring match must be at least this long.
_MIN_SUBSTRING = 3


def normalize(text: str) -> str:
    """Casefold, turn punctuation into spaces and collapse whitespace."""
    return " ".join(re.sub(r"[^\w\s]", " ", text.casefold()).split())


def _contains_phrase(haystack: str, needle: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack) is not None


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def find_product_by_name(name: str, products: Iterable[Product]) -> Product | None:
    """Return the first product whose title contains *name*, case-insensitively.

    A second pass accepts titles contained in *name*, for references that
    carry extra words ("red runner shoes" for "Red Runner").
    """
    wanted = normalize(name)
    if not wanted:
        return None
    candidates = [(product, normalize(product.title)) for product in products]

    for product, title in candidates:
        if title and wanted in title:
            return product
    for product, title in candidates:
        if title and title in wanted:
            return product
    return None


# ---------------------------------------------------------------------------
# Cart lines
# ---------------------------------------------------------------------------


def _product_title(line: CartLine) -> str:
    return normalize(line.merchandise.product_title)


def _variant_title(line: CartLine) -> str:
    variant = normalize(line.merchandise.variant_title)
    if variant == _PLACEHOLDER_VARIANT_TITLE:
        return ""
    return variant


def _phrase_match(said: str, title: str) -> bool:
    return _contains_phrase(said, title) or _contains_phrase(title, said)


def _substring_match(said: str, title: str) -> bool:
    return min(len(said), len(title)) >= _MIN_SUBSTRING and (title in said or said in title)


_MATCHERS: list[tuple[str, Callable[[str, str], bool]]] = [
    ("exact", lambda said, title: said == title),
    ("phrase", _phrase_match),
    ("substring", _substring_match),
]

_TITLE_FIELDS: list[tuple[str, Callable[[CartLine], str]]] = [
    ("product", _product_title),
    ("variant", _variant_title),
]


def match_cart_line(utterance: str, cart: Cart | None) -> CartLine | None:
    """Pick the cart line the shopper is referring to.

    Tries, in order, exact equality, whole-phrase containment in either
    direction and plain substring containment.  Within each strategy every
    line's product title is compared before any variant title, and variant
    titles shorter than ``_MIN_SUBSTRING`` only match exactly.  The first
    match wins.
    """
    said = normalize(utterance)
    if cart is None or not said:
        return None

    for strategy, matches in _MATCHERS:
        for field, title_of in _TITLE_FIELDS:
            for line in cart.lines:
                title = title_of(line)
                if not title:
                    continue
                if field == "variant" and strategy != "exact" and len(title) < _MIN_SUBSTRING:
                    continue
                if matches(said, title):
                    logger.debug(
                        "cart_line_matched", strategy=strategy, field=field, line_id=line.id
                    )
                    return line
    return None
