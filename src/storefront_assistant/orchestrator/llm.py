"""Language model primitive shared by the intent extractor and summarizer.

One ``complete`` call per relay leg, against either Anthropic or OpenAI as
selected by ``settings.llm_provider``.  Failures are wrapped in
:class:`LanguageModelError` and never retried.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from storefront_assistant.config import Settings
from storefront_assistant.errors import LanguageModelError

logger = structlog.get_logger(__name__)


class CompletionModel(Protocol):
    """Anything that turns a system prompt plus a user prompt into text."""

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        json_output: bool = False,
        max_tokens: int = 512,
    ) -> str: ...


class LanguageModel:
    """Provider-backed :class:`CompletionModel`."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._openai_client: object | None = None
        self._anthropic_client: object | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        json_output: bool = False,
        max_tokens: int = 512,
    ) -> str:
        """Return the model's text response.

        When *json_output* is set and the provider can constrain its output
        format, a JSON object is requested; otherwise free text comes back and
        callers must recover structure themselves.

        Raises
        ------
        ConfigurationError
            The selected provider has no API key.
        LanguageModelError
            The provider call failed.
        """
        self._settings.require_language_model()
        provider = self._settings.llm_provider

        try:
            if provider == "openai":
                text = await self._complete_with_openai(system, prompt, json_output, max_tokens)
            else:
                text = await self._complete_with_anthropic(system, prompt, json_output, max_tokens)
        except Exception as exc:
            logger.warning("llm_call_failed", provider=provider, error=str(exc))
            raise LanguageModelError(f"{provider} completion failed: {exc}") from exc

        if not text.strip():
            raise LanguageModelError(f"{provider} returned an empty completion")
        return text

    # ------------------------------------------------------------------
    # Anthropic
    # ------------------------------------------------------------------

    async def _complete_with_anthropic(
        self, system: str, prompt: str, json_output: bool, max_tokens: int
    ) -> str:
        """Use the Anthropic messages API.

        Anthropic has no JSON mode; for JSON output the assistant turn is
        prefilled with an opening brace so the completion continues the object.
        """
        from anthropic import AsyncAnthropic

        if self._anthropic_client is None:
            self._anthropic_client = AsyncAnthropic(api_key=self._settings.anthropic_api_key)

        client: AsyncAnthropic = self._anthropic_client  # type: ignore[assignment]
        messages = [{"role": "user", "content": prompt}]
        prefill = "{" if json_output else ""
        if prefill:
            messages.append({"role": "assistant", "content": prefill})

        response = await client.messages.create(
            model=self._settings.anthropic_model,
            max_tokens=max_tokens,
            system=system,
            messages=messages,
        )
        text = "".join(getattr(block, "text", "") for block in response.content)
        return prefill + text if text.strip() else text

    # ------------------------------------------------------------------
    # OpenAI
    # ------------------------------------------------------------------

    async def _complete_with_openai(
        self, system: str, prompt: str, json_output: bool, max_tokens: int
    ) -> str:
        """Use the OpenAI chat completions API."""
        from openai import AsyncOpenAI

        if self._openai_client is None:
            self._openai_client = AsyncOpenAI(api_key=self._settings.openai_api_key)

        client: AsyncOpenAI = self._openai_client  # type: ignore[assignment]
        extra: dict[str, object] = {}
        if json_output:
            extra["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(
            model=self._settings.openai_model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=0.2,
            max_tokens=max_tokens,
            **extra,
        )
        return response.choices[0].message.content or ""
