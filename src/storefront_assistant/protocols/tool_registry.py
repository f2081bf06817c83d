"""Tool registry for the Storefront Assistant.

The fixed set of structured actions the intent extractor may emit and the
dispatcher may execute, with their JSON-Schema parameter shapes.  The same
definitions are served as a manifest so model-side tooling can discover them.
"""

from __future__ import annotations

from typing import Any

import structlog

from storefront_assistant.errors import ToolParameterError, UnknownToolError
from storefront_assistant.models import ToolCall, ToolDefinition

logger = structlog.get_logger(__name__)

QUERY_PRODUCTS = "query_products"
CREATE_CART = "create_cart"
ADD_TO_CART = "add_to_cart"
REMOVE_FROM_CART = "remove_from_cart"
GET_CART = "get_cart"
BEGIN_CHECKOUT = "begin_checkout"
ORDER_STATUS = "order_status"

# Tools whose cart id is always taken from the session when one is held.
CART_SCOPED_TOOLS = frozenset({ADD_TO_CART, REMOVE_FROM_CART, BEGIN_CHECKOUT, GET_CART})

# Tools whose successful result is a cart that replaces the session snapshot.
CART_RETURNING_TOOLS = frozenset({CREATE_CART, ADD_TO_CART, REMOVE_FROM_CART, GET_CART})

_LINES_SCHEMA: dict[str, Any] = {
    "type": "array",
    "description": (
        "Line items. Each item has merchandiseId (a product variant id from "
        "the latest search results, or the product title if the id is not "
        "known) and quantity."
    ),
    "items": {
        "type": "object",
        "properties": {
            "merchandiseId": {"type": "string"},
            "quantity": {"type": "integer", "minimum": 1, "default": 1},
        },
        "required": ["merchandiseId"],
    },
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

STOREFRONT_TOOLS: list[ToolDefinition] = [
    ToolDefinition(
        name=QUERY_PRODUCTS,
        description="Search for products by title or keyword.",
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Search term for product title or description.",
                },
            },
            "required": ["query"],
        },
    ),
    ToolDefinition(
        name=CREATE_CART,
        description="Create a new cart with optional initial line items.",
        parameters={
            "type": "object",
            "properties": {"lines": _LINES_SCHEMA},
            "required": [],
        },
    ),
    ToolDefinition(
        name=ADD_TO_CART,
        description=(
            "Add line items to the shopper's cart. A cart is created when the "
            "shopper does not have one yet."
        ),
        parameters={
            "type": "object",
            "properties": {
                "cartId": {"type": "string", "description": "Cart ID (optional)"},
                "lines": _LINES_SCHEMA,
            },
            "required": ["lines"],
        },
    ),
    ToolDefinition(
        name=REMOVE_FROM_CART,
        description="Remove line items from the shopper's cart.",
        parameters={
            "type": "object",
            "properties": {
                "cartId": {"type": "string", "description": "Cart ID (optional)"},
                "lineIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": (
                        "IDs of cart lines to remove. Cart line ids only, never "
                        "product titles or variant ids."
                    ),
                },
            },
            "required": [],
        },
    ),
    ToolDefinition(
        name=GET_CART,
        description="Show the contents of the shopper's cart.",
        parameters={
            "type": "object",
            "properties": {
                "cartId": {"type": "string", "description": "Cart ID (optional)"},
            },
            "required": [],
        },
    ),
    ToolDefinition(
        name=BEGIN_CHECKOUT,
        description="Get the checkout URL for the shopper's cart.",
        parameters={
            "type": "object",
            "properties": {
                "cartId": {"type": "string", "description": "Cart ID (optional)"},
            },
            "required": [],
        },
    ),
    ToolDefinition(
        name=ORDER_STATUS,
        description="Get the status of an order by order ID or order number.",
        parameters={
            "type": "object",
            "properties": {
                "orderId": {"type": "string", "description": "Order ID or number"},
            },
            "required": ["orderId"],
        },
    ),
]

TOOL_NAMES: tuple[str, ...] = tuple(tool.name for tool in STOREFRONT_TOOLS)

_TOOLS_BY_NAME = {tool.name: tool for tool in STOREFRONT_TOOLS}


def list_tools() -> list[dict[str, Any]]:
    """Return all tool definitions as dicts."""
    return [tool.model_dump() for tool in STOREFRONT_TOOLS]


def get_tool(name: str) -> ToolDefinition:
    """Look up a tool definition, raising :class:`UnknownToolError`."""
    tool = _TOOLS_BY_NAME.get(name)
    if tool is None:
        raise UnknownToolError(name)
    return tool


def is_registered(name: str) -> bool:
    return name in _TOOLS_BY_NAME


def validate_tool_call(call: ToolCall) -> ToolDefinition:
    """Check *call* against the registry before it is dispatched.

    Raises
    ------
    UnknownToolError
        The name is not registered.
    ToolParameterError
        ``parameters`` is not a JSON object.
    """
    tool = get_tool(call.name)
    if not isinstance(call.parameters, dict):
        raise ToolParameterError(f"Parameters for {call.name} must be an object")
    return tool


def build_manifest() -> dict[str, Any]:
    """Return the model-facing tool manifest served by the API."""
    return {
        "schema_version": "v1",
        "name_for_human": "Shopify Store Assistant",
        "name_for_model": "shopify_store_assistant",
        "description_for_human": (
            "Conversational assistant for Shopify stores. Search, browse, add "
            "to cart, and checkout via chat."
        ),
        "description_for_model": (
            "Enables conversational commerce on Shopify. Call tools to query "
            "products, manage carts, and handle checkout."
        ),
        "tools": list_tools(),
        "auth": {"type": "none"},
    }
