"""Configuration management for the Storefront Assistant."""

from __future__ import annotations

from typing import Literal

from common.config import Settings as BaseSettings

from storefront_assistant.errors import ConfigurationError


class Settings(BaseSettings):
    """Storefront Assistant configuration.

    Inherits common provider keys from ``common.config.Settings`` and adds
    the storefront, model and relay options.
    """

    # Service identity
    service_name: str = "storefront-assistant"
    service_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 8030

    # Shopify Storefront API
    shopify_shop_domain: str = ""
    shopify_storefront_access_token: str = ""
    shopify_api_version: str = "2024-04"

    # LLM configuration
    llm_provider: Literal["anthropic", "openai"] = "anthropic"
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    openai_model: str = "gpt-4o-mini"
    intent_max_tokens: int = 512
    summary_max_tokens: int = 1024

    # Timeouts and limits
    gateway_timeout: float = 15.0
    cart_bridge_timeout: float = 5.0
    product_search_limit: int = 10

    @property
    def storefront_configured(self) -> bool:
        return bool(self.shopify_shop_domain and self.shopify_storefront_access_token)

    @property
    def language_model_configured(self) -> bool:
        if self.llm_provider == "openai":
            return bool(self.openai_api_key)
        return bool(self.anthropic_api_key)

    def require_storefront(self) -> None:
        """Raise :class:`ConfigurationError` unless the storefront is configured."""
        missing = [
            name
            for name, value in (
                ("SHOPIFY_SHOP_DOMAIN", self.shopify_shop_domain),
                ("SHOPIFY_STOREFRONT_ACCESS_TOKEN", self.shopify_storefront_access_token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing Shopify storefront configuration: {', '.join(missing)}"
            )

    def require_language_model(self) -> None:
        """Raise :class:`ConfigurationError` unless the selected provider has a key."""
        if self.llm_provider == "anthropic" and not self.anthropic_api_key:
            raise ConfigurationError("Missing Anthropic API key (ANTHROPIC_API_KEY)")
        if self.llm_provider == "openai" and not self.openai_api_key:
            raise ConfigurationError("Missing OpenAI API key (OPENAI_API_KEY)")


def get_settings() -> Settings:
    """Return a settings instance loaded from the environment."""
    return Settings()
