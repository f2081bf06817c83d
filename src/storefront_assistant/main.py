"""Entry point for the Storefront Assistant service.

Creates the FastAPI application, configures logging, and starts the
uvicorn server.
"""

from __future__ import annotations

import structlog
import uvicorn
from fastapi import FastAPI

from common import setup_logging

from storefront_assistant.api import create_app
from storefront_assistant.config import Settings, get_settings

logger = structlog.get_logger(__name__)


def build_app(settings: Settings | None = None) -> FastAPI:
    """Construct the fully-configured application."""
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = create_app(settings)

    base_url = f"http://{settings.host}:{settings.port}"
    if settings.host == "0.0.0.0":
        base_url = f"http://localhost:{settings.port}"

    logger.info(
        "application_ready",
        service=settings.service_name,
        version=settings.service_version,
        llm_provider=settings.llm_provider,
        shop_domain=settings.shopify_shop_domain or None,
        docs_url=f"{base_url}/docs",
    )

    return app


def main() -> None:
    """Launch the Storefront Assistant server."""
    settings = get_settings()
    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
