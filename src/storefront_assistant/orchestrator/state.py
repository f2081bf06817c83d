"""LangGraph state schema for one relay turn.

``RelayState`` carries the session context object plus the outputs of each
stage.  Stages run strictly in sequence; each reads what the previous one
wrote.
"""

from __future__ import annotations

from typing import TypedDict

from storefront_assistant.models import DispatchResult, ToolCall
from storefront_assistant.session import SessionState


class RelayState(TypedDict, total=False):
    """Typed dictionary describing the state flowing through the relay graph."""

    # --- Input ----------------------------------------------------------------
    session: SessionState

    # --- Extraction -----------------------------------------------------------
    tool_call: ToolCall | None

    # --- Dispatch -------------------------------------------------------------
    result: DispatchResult | None

    # --- Summary --------------------------------------------------------------
    reply: str
