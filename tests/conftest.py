"""Shared test fixtures for the Storefront Assistant."""

from __future__ import annotations

import itertools
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from storefront_assistant.api import create_app
from storefront_assistant.config import Settings
from storefront_assistant.errors import LanguageModelError
from storefront_assistant.models import (
    Cart,
    CartLine,
    CartLineInput,
    Merchandise,
    Money,
    OrderStatus,
    Product,
    ProductVariant,
)
from storefront_assistant.session import SessionState


class FakeModel:
    """Scripted :class:`CompletionModel`; replies are consumed in order."""

    def __init__(self, *replies: str | Exception) -> None:
        self.replies: list[str | Exception] = list(replies)
        self.calls: list[dict[str, Any]] = []

    def script(self, *replies: str | Exception) -> None:
        self.replies.extend(replies)

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        json_output: bool = False,
        max_tokens: int = 512,
    ) -> str:
        self.calls.append(
            {"system": system, "prompt": prompt, "json_output": json_output, "max_tokens": max_tokens}
        )
        if not self.replies:
            raise LanguageModelError("no scripted reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeStorefront:
    """In-memory stand-in for :class:`StorefrontClient` that records calls."""

    def __init__(self, products: list[Product] | None = None) -> None:
        self.products = list(products or [])
        self.carts: dict[str, Cart] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None
        self.token = "customer-token"
        self.active_cart_id: str | None = None
        self._ids = itertools.count(1)

    def _record(self, name: str, **kwargs: Any) -> None:
        self.calls.append((name, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    @property
    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _line(self, line: CartLineInput) -> CartLine:
        title = ""
        for product in self.products:
            if any(variant.id == line.merchandise_id for variant in product.variants):
                title = product.title
        return CartLine(
            id=f"gid://shopify/CartLine/{next(self._ids)}",
            quantity=line.quantity,
            merchandise=Merchandise(id=line.merchandise_id, product_title=title),
        )

    def _store(self, cart_id: str, lines: list[CartLine]) -> Cart:
        cart = Cart(
            id=cart_id,
            checkout_url=f"https://shop.example/checkouts/{cart_id.rsplit('/', 1)[-1]}",
            total_quantity=sum(line.quantity for line in lines),
            lines=lines,
        )
        self.carts[cart_id] = cart
        return cart

    def seed_cart(self, cart_id: str, lines: list[CartLine]) -> Cart:
        return self._store(cart_id, lines)

    async def search_products(self, query: str, first: int | None = None) -> list[Product]:
        self._record("search_products", query=query)
        return list(self.products)

    async def create_cart(self, lines: list[CartLineInput] | None = None) -> Cart:
        self._record("create_cart", lines=lines)
        cart_id = f"gid://shopify/Cart/new{next(self._ids)}"
        return self._store(cart_id, [self._line(line) for line in lines or []])

    async def add_cart_lines(self, cart_id: str, lines: list[CartLineInput]) -> Cart | None:
        self._record("add_cart_lines", cart_id=cart_id, lines=lines)
        cart = self.carts.get(cart_id)
        if cart is None:
            return None
        return self._store(cart_id, [*cart.lines, *(self._line(line) for line in lines)])

    async def remove_cart_lines(self, cart_id: str, line_ids: list[str]) -> Cart | None:
        self._record("remove_cart_lines", cart_id=cart_id, line_ids=line_ids)
        cart = self.carts.get(cart_id)
        if cart is None:
            return None
        return self._store(cart_id, [line for line in cart.lines if line.id not in line_ids])

    async def get_cart(self, cart_id: str) -> Cart | None:
        self._record("get_cart", cart_id=cart_id)
        return self.carts.get(cart_id)

    async def get_checkout_url(self, cart_id: str) -> str | None:
        self._record("get_checkout_url", cart_id=cart_id)
        cart = self.carts.get(cart_id)
        return cart.checkout_url if cart else None

    async def get_order_status(self, order_id: str, customer_token: str | None = None) -> OrderStatus:
        self._record("get_order_status", order_id=order_id, customer_token=customer_token)
        if not customer_token:
            return OrderStatus(id=order_id, message="Order status requires customer authentication")
        return OrderStatus(id=order_id, name=f"#{order_id}", status="fulfilled")

    async def create_customer_access_token(self, email: str, password: str) -> str:
        self._record("create_customer_access_token", email=email)
        return self.token

    async def get_active_cart_id(self, customer_token: str) -> str | None:
        self._record("get_active_cart_id", customer_token=customer_token)
        return self.active_cart_id

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    """Create test settings with every external service configured."""
    return Settings(
        environment="testing",
        anthropic_api_key="test-key",
        shopify_shop_domain="demo-shop.myshopify.com",
        shopify_storefront_access_token="storefront-token",
    )


@pytest.fixture
def products():
    """A two-product search result."""
    return [
        Product(
            id="gid://shopify/Product/1",
            title="Red Runner",
            handle="red-runner",
            image_url="https://cdn.example/red.png",
            variants=[
                ProductVariant(
                    id="gid://shopify/ProductVariant/11",
                    title="Default Title",
                    price=Money(amount="49.0", currency_code="USD"),
                )
            ],
        ),
        Product(
            id="gid://shopify/Product/2",
            title="Blue Trail Shoe",
            handle="blue-trail-shoe",
            variants=[
                ProductVariant(
                    id="gid://shopify/ProductVariant/21",
                    title="M",
                    price=Money(amount="59.5", currency_code="USD"),
                ),
                ProductVariant(
                    id="gid://shopify/ProductVariant/22",
                    title="L",
                    price=Money(amount="59.5", currency_code="USD"),
                ),
            ],
        ),
    ]


@pytest.fixture
def storefront(products):
    return FakeStorefront(products)


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def session():
    return SessionState()


@pytest.fixture
def app(settings, storefront, model):
    """Create the FastAPI app wired to the in-memory storefront and model."""
    return create_app(settings, storefront=storefront, language_model=model)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
