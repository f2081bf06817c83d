"""Exception taxonomy for the Storefront Assistant.

Nothing in the service retries: every error below is either surfaced to the
caller as-is or converted into a user-facing message, and recovery is the
shopper re-issuing a turn.
"""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all errors raised by the assistant."""


class ConfigurationError(AssistantError):
    """Required credentials or endpoints are missing."""


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


class UnknownToolError(AssistantError):
    """The tool name is not part of the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool_use: {name}")
        self.name = name


class ToolParameterError(AssistantError):
    """A tool call is missing a required parameter or has a malformed one."""


class GroundingError(AssistantError):
    """A spoken product or cart-line reference could not be resolved."""


# ---------------------------------------------------------------------------
# Upstream services
# ---------------------------------------------------------------------------


class StorefrontError(AssistantError):
    """Base class for Storefront API failures."""


class StorefrontTransportError(StorefrontError):
    """The Storefront API could not be reached or returned a non-2xx status."""


class StorefrontGraphQLError(StorefrontError):
    """The Storefront API answered with top-level GraphQL errors."""


class StorefrontUserError(StorefrontError):
    """A mutation returned ``userErrors``; the message is the first one verbatim."""

    def __init__(self, message: str, field: list[str] | None = None) -> None:
        super().__init__(message)
        self.field = field or []


class LanguageModelError(AssistantError):
    """The language model call failed or returned nothing usable."""


# ---------------------------------------------------------------------------
# Browser cart bridge
# ---------------------------------------------------------------------------


class CartBridgeError(AssistantError):
    """The host storefront page answered a bridge request with an error."""


class CartBridgeTimeout(CartBridgeError):
    """No response arrived for a bridge request before the timeout."""
