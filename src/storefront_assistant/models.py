"""Pydantic models for the Storefront Assistant.

Covers chat turns, tool calls, catalog products, carts, order status and
the dispatch result union exchanged between the relay stages and the API.
Wire-facing models serialize with camelCase aliases so the JSON matches the
Storefront API and the chat widget.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models that travel as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys and without unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class Speaker(str, enum.Enum):
    """Who produced a chat turn."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatTurn(BaseModel):
    """One entry of the append-only conversation history.

    The widget historically sent ``{"from": ..., "message": ...}``; both
    spellings are accepted.
    """

    model_config = ConfigDict(populate_by_name=True)

    speaker: Speaker = Field(validation_alias=AliasChoices("speaker", "from"))
    text: str = Field(validation_alias=AliasChoices("text", "message"))


class ToolCall(BaseModel):
    """A structured action extracted from natural language."""

    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Money(WireModel):
    """Amount plus ISO currency code, as returned by the Storefront API."""

    amount: str
    currency_code: str = "USD"


class ProductVariant(WireModel):
    """A purchasable variant of a product."""

    id: str
    title: str = ""
    price: Money | None = None
    available_for_sale: bool = True


class Product(WireModel):
    """A catalog product from a product search."""

    id: str
    title: str
    handle: str = ""
    description: str = ""
    image_url: str | None = None
    variants: list[ProductVariant] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


class Merchandise(WireModel):
    """The variant a cart line points at, flattened for display."""

    id: str | None = None
    product_title: str = ""
    variant_title: str = ""
    price: Money | None = None
    image_url: str | None = None


class CartLine(WireModel):
    """One quantity-bearing entry in a cart."""

    id: str
    quantity: int
    merchandise: Merchandise = Field(default_factory=Merchandise)


class Cart(WireModel):
    """Snapshot of a storefront cart.

    ``id`` is ``None`` only for the synthetic empty cart reported when the
    session holds no cart.
    """

    id: str | None = None
    checkout_url: str | None = None
    total_quantity: int = 0
    lines: list[CartLine] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> Cart:
        return cls(id=None, total_quantity=0, lines=[])


class CartLineInput(WireModel):
    """A line to add: a resolved merchandise id and a quantity."""

    merchandise_id: str
    quantity: int = 1


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderStatus(WireModel):
    """Minimal order status lookup result."""

    id: str
    name: str | None = None
    status: str = "processing"
    status_url: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Dispatch result
# ---------------------------------------------------------------------------

_RESULT_VARIANTS = ("products", "cart", "checkout_url", "order", "error")


class DispatchResult(WireModel):
    """Outcome of dispatching one tool call.

    Exactly one of ``products``, ``cart``, ``checkout_url``, ``order`` or
    ``error`` is populated. ``action`` names the tool the result answers.
    """

    action: str
    products: list[Product] | None = None
    cart: Cart | None = None
    checkout_url: str | None = None
    order: OrderStatus | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _exactly_one_variant(self) -> DispatchResult:
        populated = [name for name in _RESULT_VARIANTS if getattr(self, name) is not None]
        if len(populated) != 1:
            raise ValueError(
                f"DispatchResult needs exactly one of {_RESULT_VARIANTS}, got {populated}"
            )
        return self

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, action: str, message: str) -> DispatchResult:
        return cls(action=action, error=message)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


class ToolDefinition(BaseModel):
    """Registry entry with a JSON-Schema parameter shape."""

    name: str
    description: str
    parameters: dict[str, Any]
