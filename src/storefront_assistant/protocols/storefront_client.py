"""Shopify Storefront API client (the commerce gateway).

Wraps the fixed GraphQL documents in :mod:`storefront_assistant.protocols.queries`,
normalises authentication headers, and maps transport, GraphQL and
``userErrors`` failures onto typed exceptions.  Requests are never retried.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from storefront_assistant.config import Settings
from storefront_assistant.errors import (
    StorefrontGraphQLError,
    StorefrontTransportError,
    StorefrontUserError,
)
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
from storefront_assistant.protocols import queries

logger = structlog.get_logger(__name__)

_GID_PREFIX = "gid://shopify/"


def to_global_id(kind: str, value: str) -> str:
    """Coerce a bare Shopify id into a Global ID of the given *kind*.

    >>> to_global_id("ProductVariant", "4410")
    'gid://shopify/ProductVariant/4410'
    >>> to_global_id("Cart", "gid://shopify/Cart/c1")
    'gid://shopify/Cart/c1'
    """
    value = value.strip()
    if value.startswith("gid://"):
        return value
    return f"{_GID_PREFIX}{kind}/{value}"


def is_catalog_id(value: str) -> bool:
    """True when *value* looks like a catalog identifier rather than a name."""
    value = value.strip()
    return value.startswith("gid://") or value.isdigit()


class StorefrontClient:
    """Async GraphQL client for the Shopify Storefront API."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def endpoint(self) -> str:
        domain = self._settings.shopify_shop_domain.removeprefix("https://").rstrip("/")
        return f"https://{domain}/api/{self._settings.shopify_api_version}/graphql.json"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Storefront-Access-Token": self._settings.shopify_storefront_access_token,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-initialise the shared ``httpx.AsyncClient``."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.gateway_timeout),
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Shut down the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Request helper
    # ------------------------------------------------------------------

    async def _execute(self, document: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST one GraphQL document and return its ``data`` object."""
        self._settings.require_storefront()
        client = await self._get_client()

        try:
            response = await client.post(
                self.endpoint,
                json={"query": document, "variables": variables},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "storefront_http_error",
                status=exc.response.status_code,
                endpoint=self.endpoint,
            )
            raise StorefrontTransportError(
                f"Storefront API error: {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("storefront_request_error", error=str(exc), endpoint=self.endpoint)
            raise StorefrontTransportError(f"Storefront API unreachable: {exc}") from exc
        except ValueError as exc:
            raise StorefrontTransportError("Storefront API returned invalid JSON") from exc

        errors = payload.get("errors") or []
        if errors:
            message = errors[0].get("message", "Unknown GraphQL error")
            logger.warning("storefront_graphql_error", message=message, count=len(errors))
            raise StorefrontGraphQLError(f"GraphQL error: {message}")

        return payload.get("data") or {}

    @staticmethod
    def _raise_user_errors(user_errors: list[dict[str, Any]]) -> None:
        if user_errors:
            first = user_errors[0]
            logger.info("storefront_user_error", message=first.get("message"), field=first.get("field"))
            raise StorefrontUserError(first.get("message", "Request rejected"), first.get("field"))

    @staticmethod
    def _is_missing_cart(user_errors: list[dict[str, Any]]) -> bool:
        return any((err.get("field") or [])[-1:] == ["cartId"] for err in user_errors)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def search_products(self, query: str, first: int | None = None) -> list[Product]:
        """Search products by title or keyword."""
        data = await self._execute(
            queries.SEARCH_PRODUCTS,
            {"query": query, "first": first or self._settings.product_search_limit},
        )
        edges = (data.get("products") or {}).get("edges", [])
        products = [_parse_product(edge["node"]) for edge in edges]
        logger.info("products_searched", query=query, results=len(products))
        return products

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def create_cart(self, lines: list[CartLineInput] | None = None) -> Cart:
        """Create a cart, optionally seeded with *lines*."""
        data = await self._execute(
            queries.CART_CREATE,
            {"input": {"lines": [_line_variables(line) for line in lines or []]}},
        )
        payload = data.get("cartCreate") or {}
        self._raise_user_errors(payload.get("userErrors") or [])
        cart = payload.get("cart")
        if cart is None:
            raise StorefrontGraphQLError("cartCreate returned no cart")
        return _parse_cart(cart)

    async def add_cart_lines(self, cart_id: str, lines: list[CartLineInput]) -> Cart | None:
        """Add *lines* to a cart; ``None`` when the cart no longer exists."""
        data = await self._execute(
            queries.CART_LINES_ADD,
            {
                "cartId": to_global_id("Cart", cart_id),
                "lines": [_line_variables(line) for line in lines],
            },
        )
        return self._cart_mutation_result(data.get("cartLinesAdd") or {})

    async def remove_cart_lines(self, cart_id: str, line_ids: list[str]) -> Cart | None:
        """Remove cart lines by id; ``None`` when the cart no longer exists."""
        data = await self._execute(
            queries.CART_LINES_REMOVE,
            {
                "cartId": to_global_id("Cart", cart_id),
                "lineIds": [to_global_id("CartLine", line_id) for line_id in line_ids],
            },
        )
        return self._cart_mutation_result(data.get("cartLinesRemove") or {})

    def _cart_mutation_result(self, payload: dict[str, Any]) -> Cart | None:
        user_errors = payload.get("userErrors") or []
        if self._is_missing_cart(user_errors):
            logger.info("storefront_cart_missing")
            return None
        self._raise_user_errors(user_errors)
        cart = payload.get("cart")
        return _parse_cart(cart) if cart else None

    async def get_cart(self, cart_id: str) -> Cart | None:
        """Read a cart; ``None`` when it does not exist."""
        data = await self._execute(queries.GET_CART, {"cartId": to_global_id("Cart", cart_id)})
        cart = data.get("cart")
        return _parse_cart(cart) if cart else None

    async def get_checkout_url(self, cart_id: str) -> str | None:
        """Return the hosted checkout URL of a cart."""
        data = await self._execute(
            queries.GET_CHECKOUT_URL, {"cartId": to_global_id("Cart", cart_id)}
        )
        cart = data.get("cart") or {}
        return cart.get("checkoutUrl")

    # ------------------------------------------------------------------
    # Orders and customers
    # ------------------------------------------------------------------

    async def get_order_status(
        self,
        order_id: str,
        customer_token: str | None = None,
    ) -> OrderStatus:
        """Look up an order among the buyer's orders.

        Without a buyer token there is nothing to query, so a placeholder
        status is returned.
        """
        if not customer_token:
            return OrderStatus(
                id=order_id,
                status="processing",
                message="Order status requires customer authentication",
            )

        data = await self._execute(
            queries.CUSTOMER_ORDERS, {"customerAccessToken": customer_token}
        )
        customer = data.get("customer")
        if customer is None:
            return OrderStatus(
                id=order_id,
                status="unknown",
                message="Customer session expired, please log in again",
            )

        wanted = order_id.lstrip("#").strip()
        for edge in (customer.get("orders") or {}).get("edges", []):
            node = edge["node"]
            candidates = {
                node.get("id", ""),
                str(node.get("orderNumber", "")),
                (node.get("name") or "").lstrip("#"),
            }
            if wanted in candidates or to_global_id("Order", wanted) in candidates:
                return OrderStatus(
                    id=node["id"],
                    name=node.get("name"),
                    status=(node.get("fulfillmentStatus") or "UNFULFILLED").lower(),
                    status_url=node.get("statusUrl"),
                    message=f"Payment {(node.get('financialStatus') or 'pending').lower()}",
                )

        return OrderStatus(id=order_id, status="not_found", message="No matching order found")

    async def create_customer_access_token(self, email: str, password: str) -> str:
        """Log a customer in and return their access token."""
        data = await self._execute(
            queries.CUSTOMER_ACCESS_TOKEN_CREATE,
            {"input": {"email": email, "password": password}},
        )
        payload = data.get("customerAccessTokenCreate") or {}
        self._raise_user_errors(payload.get("customerUserErrors") or [])
        token = (payload.get("customerAccessToken") or {}).get("accessToken")
        if not token:
            raise StorefrontUserError("Invalid credentials")
        return token

    async def get_active_cart_id(self, customer_token: str) -> str | None:
        """Return the customer's open cart id, if the store reports one.

        The store answers with ``lastIncompleteCheckout``.  Only ids that are
        Cart Global IDs are returned; a Checkout id cannot be used with the
        cart mutations and is dropped.
        """
        data = await self._execute(
            queries.CUSTOMER_ACTIVE_CART, {"customerAccessToken": customer_token}
        )
        customer = data.get("customer") or {}
        checkout = customer.get("lastIncompleteCheckout") or {}
        checkout_id = checkout.get("id")
        if checkout_id and not checkout_id.startswith(f"{_GID_PREFIX}Cart/"):
            logger.info("active_cart_not_a_cart", checkout_id=checkout_id)
            return None
        return checkout_id


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _line_variables(line: CartLineInput) -> dict[str, Any]:
    return {
        "merchandiseId": to_global_id("ProductVariant", line.merchandise_id),
        "quantity": line.quantity,
    }


def _parse_money(raw: dict[str, Any] | None) -> Money | None:
    if not raw:
        return None
    return Money(amount=str(raw.get("amount", "0")), currency_code=raw.get("currencyCode", "USD"))


def _parse_product(node: dict[str, Any]) -> Product:
    image = node.get("featuredImage") or {}
    variants = [
        ProductVariant(
            id=edge["node"]["id"],
            title=edge["node"].get("title", ""),
            price=_parse_money(edge["node"].get("price")),
            available_for_sale=edge["node"].get("availableForSale", True),
        )
        for edge in (node.get("variants") or {}).get("edges", [])
    ]
    return Product(
        id=node["id"],
        title=node.get("title", ""),
        handle=node.get("handle", ""),
        description=node.get("description", ""),
        image_url=image.get("url"),
        variants=variants,
    )


def _parse_cart(node: dict[str, Any]) -> Cart:
    lines: list[CartLine] = []
    for edge in (node.get("lines") or {}).get("edges", []):
        line = edge["node"]
        merch = line.get("merchandise") or {}
        product = merch.get("product") or {}
        image = merch.get("image") or product.get("featuredImage") or {}
        lines.append(
            CartLine(
                id=line["id"],
                quantity=line.get("quantity", 0),
                merchandise=Merchandise(
                    id=merch.get("id"),
                    product_title=product.get("title", ""),
                    variant_title=merch.get("title", ""),
                    price=_parse_money(merch.get("price")),
                    image_url=image.get("url"),
                ),
            )
        )
    return Cart(
        id=node["id"],
        checkout_url=node.get("checkoutUrl"),
        total_quantity=node.get("totalQuantity", sum(line.quantity for line in lines)),
        lines=lines,
    )
