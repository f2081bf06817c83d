"""Action dispatcher: structured tool call -> storefront effect.

The dispatcher resolves and validates parameters against the session
(held cart id, last product search, last cart snapshot), calls exactly one
gateway operation per tool, and keeps the session snapshots in sync with
what the gateway returned.  Query construction lives in the gateway; this
module only substitutes resolved identifiers.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from storefront_assistant.errors import (
    GroundingError,
    StorefrontError,
    StorefrontUserError,
    ToolParameterError,
    UnknownToolError,
)
from storefront_assistant.models import Cart, CartLineInput, DispatchResult, ToolCall
from storefront_assistant.orchestrator.grounding import find_product_by_name, match_cart_line
from storefront_assistant.protocols import tool_registry as tools
from storefront_assistant.protocols.storefront_client import StorefrontClient, is_catalog_id
from storefront_assistant.session import SessionState

logger = structlog.get_logger(__name__)

STORE_UNREACHABLE = "Sorry, the store could not be reached right now. Please try again."
PRODUCT_NOT_FOUND = (
    'I couldn\'t find "{name}" in the latest search results. '
    "Please search for the product first."
)
CART_LINE_NOT_FOUND = "I couldn't find that item in your cart."
CART_EXPIRED = "Your cart could not be found. It may have expired, so please add the items again."

Handler = Callable[[dict[str, Any], SessionState], Awaitable[DispatchResult]]

# Keys the model has been seen to use for a line's merchandise reference.
_MERCHANDISE_KEYS = ("merchandiseId", "variantId", "productId", "product", "productTitle", "title")


class ActionDispatcher:
    """Executes validated tool calls against the Storefront API."""

    def __init__(self, storefront: StorefrontClient) -> None:
        self._storefront = storefront
        self._handlers: dict[str, Handler] = {
            tools.QUERY_PRODUCTS: self._query_products,
            tools.CREATE_CART: self._create_cart,
            tools.ADD_TO_CART: self._add_to_cart,
            tools.REMOVE_FROM_CART: self._remove_from_cart,
            tools.GET_CART: self._get_cart,
            tools.BEGIN_CHECKOUT: self._begin_checkout,
            tools.ORDER_STATUS: self._order_status,
        }

    async def dispatch(self, call: ToolCall, session: SessionState) -> DispatchResult:
        """Execute *call* for *session* and return exactly one result variant.

        Grounding and parameter failures are returned as error results
        without touching the gateway.  Gateway user errors come back verbatim
        (first one only); transport failures come back as a generic message.
        Configuration errors propagate.
        """
        try:
            tools.validate_tool_call(call)
        except (UnknownToolError, ToolParameterError) as exc:
            logger.warning("tool_call_rejected", tool=call.name, error=str(exc))
            return DispatchResult.failure(call.name, str(exc))

        params = self._with_session_cart(call, session)
        handler = self._handlers[call.name]

        try:
            result = await handler(params, session)
        except (ToolParameterError, GroundingError) as exc:
            logger.info("tool_call_not_dispatched", tool=call.name, reason=str(exc))
            return DispatchResult.failure(call.name, str(exc))
        except StorefrontUserError as exc:
            return DispatchResult.failure(call.name, str(exc))
        except StorefrontError as exc:
            logger.error("dispatch_failed", tool=call.name, error=str(exc))
            return DispatchResult.failure(call.name, STORE_UNREACHABLE)

        if call.name in tools.CART_RETURNING_TOOLS and result.cart is not None and result.cart.id:
            session.replace_cart(result.cart)

        logger.info("tool_call_dispatched", tool=call.name, ok=result.ok)
        return result

    # ------------------------------------------------------------------
    # Parameter resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _with_session_cart(call: ToolCall, session: SessionState) -> dict[str, Any]:
        """Copy the parameters, letting a held cart id override the model's."""
        params = dict(call.parameters)
        if call.name in tools.CART_SCOPED_TOOLS:
            if session.cart_id:
                if params.get("cartId") not in (None, session.cart_id):
                    logger.info("model_cart_id_overridden", tool=call.name)
                params["cartId"] = session.cart_id
            elif not params.get("cartId"):
                params.pop("cartId", None)
        return params

    def _resolve_lines(self, params: dict[str, Any], session: SessionState) -> list[CartLineInput]:
        """Turn the model's line items into merchandise ids plus quantities.

        A reference that is not a catalog id is treated as a product name
        and matched against the last product search; the first variant of
        the first matching product is used.
        """
        raw_lines = params.get("lines")
        if raw_lines is None and any(key in params for key in _MERCHANDISE_KEYS):
            raw_lines = [params]
        if raw_lines is None:
            return []
        if isinstance(raw_lines, dict):
            raw_lines = [raw_lines]
        if not isinstance(raw_lines, list):
            raise ToolParameterError("lines must be a list of line items")

        resolved: list[CartLineInput] = []
        for raw in raw_lines:
            if isinstance(raw, str):
                raw = {"merchandiseId": raw}
            if not isinstance(raw, dict):
                raise ToolParameterError("Each line item must be an object")

            reference = next(
                (str(raw[key]).strip() for key in _MERCHANDISE_KEYS if raw.get(key)), ""
            )
            if not reference:
                raise ToolParameterError("Each line item needs a merchandiseId")

            try:
                quantity = int(raw.get("quantity", 1))
            except (TypeError, ValueError) as exc:
                raise ToolParameterError("quantity must be a whole number") from exc
            if quantity < 1:
                raise ToolParameterError("quantity must be at least 1")

            resolved.append(
                CartLineInput(merchandise_id=self._ground_merchandise(reference, session), quantity=quantity)
            )
        return resolved

    @staticmethod
    def _ground_merchandise(reference: str, session: SessionState) -> str:
        if is_catalog_id(reference):
            # A product id is not purchasable; use its first variant when we know it.
            if reference.startswith("gid://shopify/Product/"):
                for product in session.last_products:
                    if product.id == reference and product.variants:
                        return product.variants[0].id
            return reference

        product = find_product_by_name(reference, session.last_products)
        if product is None or not product.variants:
            raise GroundingError(PRODUCT_NOT_FOUND.format(name=reference))
        logger.info("product_grounded", name=reference, product_id=product.id)
        return product.variants[0].id

    # ------------------------------------------------------------------
    # Tool handlers
    # ------------------------------------------------------------------

    async def _query_products(self, params: dict[str, Any], session: SessionState) -> DispatchResult:
        query = str(params.get("query") or "").strip()
        if not query:
            raise ToolParameterError("Missing query")
        products = await self._storefront.search_products(query)
        session.replace_products(products)
        return DispatchResult(action=tools.QUERY_PRODUCTS, products=products)

    async def _create_cart(self, params: dict[str, Any], session: SessionState) -> DispatchResult:
        lines = self._resolve_lines(params, session)
        cart = await self._storefront.create_cart(lines)
        return DispatchResult(action=tools.CREATE_CART, cart=cart)

    async def _add_to_cart(self, params: dict[str, Any], session: SessionState) -> DispatchResult:
        lines = self._resolve_lines(params, session)
        if not lines:
            raise ToolParameterError("Missing lines")

        cart_id = params.get("cartId")
        cart: Cart | None = None
        if cart_id:
            cart = await self._storefront.add_cart_lines(cart_id, lines)
            if cart is None:
                logger.info("held_cart_invalid_creating_new", cart_id=cart_id)
        if cart is None:
            cart = await self._storefront.create_cart(lines)
        return DispatchResult(action=tools.ADD_TO_CART, cart=cart)

    async def _remove_from_cart(self, params: dict[str, Any], session: SessionState) -> DispatchResult:
        cart_id = params.get("cartId")
        if not cart_id:
            raise GroundingError(CART_LINE_NOT_FOUND)

        snapshot = session.last_cart
        if snapshot is None or snapshot.id != cart_id:
            snapshot = await self._storefront.get_cart(cart_id)
            if snapshot is None:
                session.forget_cart()
                return DispatchResult.failure(tools.REMOVE_FROM_CART, CART_EXPIRED)
            session.replace_cart(snapshot)

        supplied = params.get("lineIds") or []
        if isinstance(supplied, str):
            supplied = [supplied]
        known = {line.id for line in snapshot.lines}

        if supplied and all(line_id in known for line_id in supplied):
            line_ids = list(supplied)
        else:
            line = match_cart_line(session.latest_user_text(), snapshot)
            if line is None:
                raise GroundingError(CART_LINE_NOT_FOUND)
            line_ids = [line.id]
            logger.info("cart_line_grounded", line_id=line.id)

        cart = await self._storefront.remove_cart_lines(cart_id, line_ids)
        if cart is None:
            session.forget_cart()
            return DispatchResult.failure(tools.REMOVE_FROM_CART, CART_EXPIRED)
        return DispatchResult(action=tools.REMOVE_FROM_CART, cart=cart)

    async def _get_cart(self, params: dict[str, Any], session: SessionState) -> DispatchResult:
        cart_id = params.get("cartId")
        cart = await self._storefront.get_cart(cart_id) if cart_id else None
        if cart is None:
            if cart_id:
                logger.info("held_cart_missing", cart_id=cart_id)
            session.forget_cart()
            return DispatchResult(action=tools.GET_CART, cart=Cart.empty())
        return DispatchResult(action=tools.GET_CART, cart=cart)

    async def _begin_checkout(self, params: dict[str, Any], session: SessionState) -> DispatchResult:
        cart_id = params.get("cartId")
        if not cart_id:
            raise ToolParameterError("Cart ID required for checkout")
        checkout_url = await self._storefront.get_checkout_url(cart_id)
        if not checkout_url:
            session.forget_cart()
            return DispatchResult.failure(tools.BEGIN_CHECKOUT, CART_EXPIRED)
        return DispatchResult(action=tools.BEGIN_CHECKOUT, checkout_url=checkout_url)

    async def _order_status(self, params: dict[str, Any], session: SessionState) -> DispatchResult:
        order_id = str(params.get("orderId") or "").strip()
        if not order_id:
            raise ToolParameterError("Order ID required")
        order = await self._storefront.get_order_status(order_id, session.auth_token)
        return DispatchResult(action=tools.ORDER_STATUS, order=order)
