"""LangGraph StateGraph for one shopper turn.

Nodes
-----
extract    -- LLM turns the chat history into a structured tool call
dispatch   -- Ground parameters and call the Storefront API
summarize  -- LLM turns the dispatch result into the reply
no_intent  -- Fixed reply when no tool call could be extracted

Edges (with conditional routing)
------
extract -> dispatch (if a tool call was found) | no_intent
dispatch -> summarize
summarize -> END
no_intent -> END
"""

from __future__ import annotations

import structlog
from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from storefront_assistant.models import DispatchResult, Speaker, ToolCall
from storefront_assistant.orchestrator.dispatcher import ActionDispatcher
from storefront_assistant.orchestrator.intent import IntentExtractor
from storefront_assistant.orchestrator.state import RelayState
from storefront_assistant.orchestrator.summarizer import Summarizer
from storefront_assistant.rendering import ProductCard, parse_product_cards
from storefront_assistant.session import SessionState

logger = structlog.get_logger(__name__)

NO_INTENT_REPLY = "Sorry, I could not understand your intent. Could you rephrase that?"


# ---------------------------------------------------------------------------
# Node factories
# ---------------------------------------------------------------------------


def _make_extract_node(extractor: IntentExtractor):
    """Create the *extract* node function."""

    async def extract_node(state: RelayState) -> RelayState:
        session = state["session"]
        tool_call = await extractor.extract(session.history)
        return {"tool_call": tool_call}

    return extract_node


def _make_dispatch_node(dispatcher: ActionDispatcher):
    """Create the *dispatch* node function."""

    async def dispatch_node(state: RelayState) -> RelayState:
        result = await dispatcher.dispatch(state["tool_call"], state["session"])
        return {"result": result}

    return dispatch_node


def _make_summarize_node(summarizer: Summarizer):
    """Create the *summarize* node function."""

    async def summarize_node(state: RelayState) -> RelayState:
        session = state["session"]
        reply = await summarizer.summarize(session.history, state["result"])
        return {"reply": reply}

    return summarize_node


async def _no_intent_node(state: RelayState) -> RelayState:
    logger.info("no_intent_detected", session_id=state["session"].session_id)
    return {"reply": NO_INTENT_REPLY, "result": None}


def _after_extract(state: RelayState) -> str:
    return "dispatch" if state.get("tool_call") is not None else "no_intent"


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


def build_relay_graph(
    extractor: IntentExtractor,
    dispatcher: ActionDispatcher,
    summarizer: Summarizer,
) -> StateGraph:
    """Construct the relay workflow.  Call ``.compile()`` before invoking."""
    graph = StateGraph(RelayState)

    graph.add_node("extract", _make_extract_node(extractor))
    graph.add_node("dispatch", _make_dispatch_node(dispatcher))
    graph.add_node("summarize", _make_summarize_node(summarizer))
    graph.add_node("no_intent", _no_intent_node)

    graph.set_entry_point("extract")

    graph.add_conditional_edges(
        "extract",
        _after_extract,
        {"dispatch": "dispatch", "no_intent": "no_intent"},
    )
    graph.add_edge("dispatch", "summarize")

    graph.add_edge("summarize", END)
    graph.add_edge("no_intent", END)

    return graph


# ---------------------------------------------------------------------------
# Turn runner
# ---------------------------------------------------------------------------


class TurnOutcome(BaseModel):
    """What one shopper turn produced."""

    reply: str
    tool_use: ToolCall | None = None
    result: DispatchResult | None = None
    cards: list[ProductCard] = Field(default_factory=list)


class ShoppingAssistant:
    """Runs extraction, dispatch and summarization for one turn at a time."""

    def __init__(
        self,
        extractor: IntentExtractor,
        dispatcher: ActionDispatcher,
        summarizer: Summarizer,
    ) -> None:
        self._graph = build_relay_graph(extractor, dispatcher, summarizer).compile()

    async def handle_turn(self, session: SessionState, text: str) -> TurnOutcome:
        """Append the shopper's *text*, run the relay, append and return the reply."""
        session.add_turn(Speaker.USER, text)
        final = await self._graph.ainvoke({"session": session, "tool_call": None, "result": None})

        reply = final.get("reply") or NO_INTENT_REPLY
        session.add_turn(Speaker.ASSISTANT, reply)

        result = final.get("result")
        cards = parse_product_cards(reply) if result is not None and result.products else []
        logger.info(
            "turn_completed",
            session_id=session.session_id,
            tool=final["tool_call"].name if final.get("tool_call") else None,
            cards=len(cards),
        )
        return TurnOutcome(reply=reply, tool_use=final.get("tool_call"), result=result, cards=cards)
