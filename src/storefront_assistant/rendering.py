"""Product listing text convention shared by the summarizer and the chat UI.

The chat UI turns assistant replies into product cards by pattern-matching
numbered entries of the form::

    1. ![Red Runner](https://cdn.example/red.png)
    Red Runner
    $49.00

The image line is optional (``1. Red Runner`` followed by the price line is
also valid).  This module renders that convention for the summary prompt and
parses it back, so the server can hand card data to clients that do not
implement the pattern match themselves.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel

from storefront_assistant.models import Money, Product

_CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$", "AUD": "A$", "EUR": "€", "GBP": "£", "INR": "₹", "JPY": "¥"}

_ENTRY_RE = re.compile(r"^\s*(\d+)\.\s+(?:!\[([^\]]*)\]\(([^)\s]+)\))?\s*(.*?)\s*$")
_PRICE_RE = re.compile(r"^\s*(?:[A-Z]{0,3}[$€£₹¥]|[A-Z]{3}\s)?\s*\d[\d,]*(?:\.\d+)?(?:\s?[A-Z]{3})?\s*$")


class ProductCard(BaseModel):
    """One product entry recovered from an assistant reply."""

    position: int
    title: str
    image_url: str | None = None
    price: str | None = None


def format_price(money: Money | None) -> str:
    """Render a Storefront ``MoneyV2`` the way product cards display it."""
    if money is None:
        return ""
    try:
        amount = Decimal(money.amount).quantize(Decimal("0.01"))
    except InvalidOperation:
        return f"{money.amount} {money.currency_code}"
    symbol = _CURRENCY_SYMBOLS.get(money.currency_code)
    if symbol:
        return f"{symbol}{amount:,}"
    return f"{amount:,} {money.currency_code}"


def render_product_listing(products: list[Product]) -> str:
    """Render *products* as numbered entries: image, title, first-variant price."""
    entries: list[str] = []
    for position, product in enumerate(products, start=1):
        price = format_price(product.variants[0].price) if product.variants else ""
        if product.image_url:
            lines = [f"{position}. ![{product.title}]({product.image_url})", product.title]
        else:
            lines = [f"{position}. {product.title}"]
        if price:
            lines.append(price)
        entries.append("\n".join(lines))
    return "\n\n".join(entries)


def parse_product_cards(text: str) -> list[ProductCard]:
    """Recover product cards from a reply that follows the listing convention.

    Lines that do not belong to a numbered entry are ignored, so replies that
    mix prose and a listing still yield their cards.
    """
    cards: list[ProductCard] = []
    lines = [line.strip() for line in text.splitlines()]
    index = 0

    while index < len(lines):
        match = _ENTRY_RE.match(lines[index])
        index += 1
        if match is None:
            continue

        position = int(match.group(1))
        alt, image_url, rest = match.group(2), match.group(3), match.group(4)
        following = _next_non_empty(lines, index)

        if image_url and not rest:
            # Image-only header: the title sits on the next line.
            if following is None or _ENTRY_RE.match(lines[following]):
                title = alt or ""
            else:
                title = lines[following]
                index = following + 1
                following = _next_non_empty(lines, index)
        else:
            title = rest

        price = None
        if following is not None and _PRICE_RE.match(lines[following]):
            price = lines[following]
            index = following + 1

        if title:
            cards.append(ProductCard(position=position, title=title, image_url=image_url, price=price))

    return cards


def _next_non_empty(lines: list[str], start: int) -> int | None:
    for position in range(start, len(lines)):
        if lines[position]:
            return position
    return None
