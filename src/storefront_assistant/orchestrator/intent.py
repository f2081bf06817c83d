"""LLM-powered intent extraction.

Sends the chat history to the language model with a prompt demanding one
JSON tool call, then recovers that JSON from whatever text the model
returned.  When the newest turn is a tool result the same entry point
produces a summary instead.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from storefront_assistant.config import Settings
from storefront_assistant.errors import LanguageModelError, ToolParameterError
from storefront_assistant.models import ChatTurn, Speaker, ToolCall
from storefront_assistant.orchestrator.llm import CompletionModel
from storefront_assistant.orchestrator.summarizer import Summarizer, format_history
from storefront_assistant.protocols import tool_registry as tools

logger = structlog.get_logger(__name__)

_SYSTEM_PROMPT = f"""\
You are the intent extractor of a shopping assistant for a Shopify store. \
Given the chat history, decide which single store action answers the \
shopper's newest message.

Respond with exactly one line of valid JSON and nothing else (no prose, no \
markdown, no code fences), in this shape:
{{"tool_use": {{"name": "<tool name>", "parameters": {{...}}}}}}

Available tools: {', '.join(tools.TOOL_NAMES)}

Parameter rules:
- query_products: {{"query": "<search keywords>"}}
- create_cart: {{"lines": [{{"merchandiseId": "<variant id>", "quantity": 1}}]}} (lines optional)
- add_to_cart: {{"lines": [{{"merchandiseId": "<variant id>", "quantity": 1}}]}}. Use the \
variant id from the latest product results when you know it; otherwise put the exact \
product title in merchandiseId.
- remove_from_cart: {{"lineIds": ["<cart line id>"]}}. lineIds must be cart line ids \
from the latest cart, never product titles or variant ids. Omit lineIds if you do not \
know the cart line id.
- get_cart: {{}}
- begin_checkout: {{}}
- order_status: {{"orderId": "<order id or number>"}}
- Never invent a cartId; the store tracks the shopper's cart.
"""


class IntentResponse(BaseModel):
    """Either an extracted tool call or a summary message, never both."""

    tool_use: ToolCall | None = None
    message: str | None = None

    @property
    def detected(self) -> bool:
        return self.tool_use is not None or self.message is not None


def parse_tool_call(raw: str) -> ToolCall | None:
    """Recover a registered :class:`ToolCall` from free model text.

    Takes the span from the first ``{`` to the last ``}`` and parses it as
    JSON.  Both ``{"tool_use": {...}}`` and a bare ``{"name": ..., "parameters":
    ...}`` are accepted.  Returns ``None`` when there is no span, the JSON is
    invalid, no tool is named, or the tool is not registered.
    """
    start, end = raw.find("{"), raw.rfind("}")
    if start == -1 or end <= start:
        logger.info("intent_no_json_span", raw_snippet=raw[:200])
        return None

    try:
        data: Any = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        logger.info("intent_json_parse_failed", raw_snippet=raw[:200])
        return None

    if isinstance(data, dict) and isinstance(data.get("tool_use"), dict):
        data = data["tool_use"]
    if not isinstance(data, dict) or not data.get("name"):
        logger.info("intent_missing_tool_name")
        return None

    try:
        call = ToolCall.model_validate(data)
    except ValidationError:
        logger.info("intent_tool_call_invalid", raw_snippet=raw[:200])
        return None

    if not tools.is_registered(call.name):
        logger.warning("intent_unknown_tool", tool=call.name)
        return None
    return call


class IntentExtractor:
    """Natural language -> :class:`ToolCall`, or summary for tool-result turns."""

    def __init__(self, settings: Settings, model: CompletionModel, summarizer: Summarizer) -> None:
        self._settings = settings
        self._model = model
        self._summarizer = summarizer

    async def respond(self, history: list[ChatTurn]) -> IntentResponse:
        """Extract an intent, or summarize when the newest turn came from a tool.

        Raises
        ------
        ToolParameterError
            *history* is empty.
        ConfigurationError
            The language model is not configured.
        """
        if not history:
            raise ToolParameterError("Missing messages")

        if history[-1].speaker == Speaker.TOOL:
            message = await self._summarizer.summarize_turns(history)
            return IntentResponse(message=message)

        return IntentResponse(tool_use=await self.extract(history))

    async def extract(self, history: list[ChatTurn]) -> ToolCall | None:
        """Return the tool call for the newest user turn, or ``None``.

        Model failures yield ``None`` so the shopper can rephrase; nothing
        is retried.
        """
        prompt = f"Chat history:\n{format_history(history)}\n\nRespond with the JSON tool call."
        try:
            raw = await self._model.complete(
                _SYSTEM_PROMPT,
                prompt,
                json_output=True,
                max_tokens=self._settings.intent_max_tokens,
            )
        except LanguageModelError:
            logger.warning("intent_extraction_failed", exc_info=True)
            return None

        call = parse_tool_call(raw)
        if call is not None:
            logger.info("tool_call_extracted", tool=call.name)
        return call
