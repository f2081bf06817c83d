"""Turns a dispatch result back into a shopper-facing reply."""

from __future__ import annotations

import json

import structlog
from pydantic import ValidationError

from storefront_assistant.config import Settings
from storefront_assistant.errors import LanguageModelError
from storefront_assistant.models import ChatTurn, DispatchResult, Product, Speaker
from storefront_assistant.orchestrator.llm import CompletionModel
from storefront_assistant.rendering import render_product_listing

logger = structlog.get_logger(__name__)

SUMMARY_FALLBACK = "Sorry, I could not summarize the result."

_SYSTEM_PROMPT = """\
You are a friendly shopping assistant for a Shopify store. The last message \
in the conversation is the result of a store action, serialized as JSON. \
Explain that result to the shopper in natural language.

Rules:
- Never output raw JSON, code, or code fences.
- Do not include URLs, except the checkout link when the result has a checkoutUrl.
- When the result contains products, list EVERY product using exactly this \
format, numbering them sequentially and separating entries with a blank line:

1. ![<product title>](<image url>)
<product title>
<price of the first variant>

- Leave out the image line's markdown when a product has no image, and write \
"1. <product title>" instead.
- For carts, mention each item with its quantity and the total quantity. An \
empty cart should be described as empty.
- For errors, explain what went wrong and what the shopper can do next.
- Keep the reply short.
"""


def format_history(turns: list[ChatTurn]) -> str:
    return "\n".join(f"{turn.speaker.value}: {turn.text}" for turn in turns)


class Summarizer:
    """Produces the natural-language reply for a dispatch result."""

    def __init__(self, settings: Settings, model: CompletionModel) -> None:
        self._settings = settings
        self._model = model

    async def summarize(self, history: list[ChatTurn], result: DispatchResult) -> str:
        """Summarize *result* in the context of *history*."""
        tool_turn = ChatTurn(speaker=Speaker.TOOL, text=json.dumps(result.to_wire()))
        return await self.summarize_turns([*history, tool_turn])

    async def summarize_turns(self, turns: list[ChatTurn]) -> str:
        """Summarize a history whose newest turn is a tool result.

        Returns the fixed fallback text when the model call fails; the
        dispatch effect has already happened by then and is not undone.
        """
        prompt = self._build_prompt(turns)
        try:
            reply = await self._model.complete(
                _SYSTEM_PROMPT,
                prompt,
                json_output=False,
                max_tokens=self._settings.summary_max_tokens,
            )
        except LanguageModelError:
            logger.warning("summary_failed", exc_info=True)
            return SUMMARY_FALLBACK
        return reply.strip()

    @staticmethod
    def _build_prompt(turns: list[ChatTurn]) -> str:
        sections = [f"Conversation:\n{format_history(turns)}"]

        products = _products_from_tool_turn(turns[-1]) if turns else []
        if products:
            sections.append(
                "Reference listing for these products (reuse this formatting exactly):\n"
                + render_product_listing(products)
            )

        sections.append("Write the assistant's reply to the shopper.")
        return "\n\n".join(sections)


def _products_from_tool_turn(turn: ChatTurn) -> list[Product]:
    """Best-effort recovery of the product list carried by a tool turn."""
    if turn.speaker != Speaker.TOOL:
        return []
    try:
        payload = json.loads(turn.text)
        return [Product.model_validate(raw) for raw in payload.get("products") or []]
    except (ValueError, AttributeError, ValidationError):
        return []
