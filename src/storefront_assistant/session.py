"""Per-session assistant state.

A :class:`SessionState` is the explicit context object threaded through the
relay chain: the held cart id, the buyer token, the last product search and
cart snapshots used for grounding, and the conversation history.  Only the
cart id and buyer token survive a reload (see :meth:`SessionState.persisted`).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, Field

from storefront_assistant.models import Cart, ChatTurn, Product, Speaker

logger = structlog.get_logger(__name__)


class PersistedSession(BaseModel):
    """The subset of session state a client keeps across reloads."""

    cart_id: str | None = None
    auth_token: str | None = None


class SessionState(BaseModel):
    """Ephemeral, single-owner assistant state for one chat session."""

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    auth_token: str | None = None
    cart_id: str | None = None
    last_products: list[Product] = Field(default_factory=list)
    last_cart: Cart | None = None
    history: list[ChatTurn] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    # ------------------------------------------------------------------
    # Grounding context
    # ------------------------------------------------------------------

    def replace_products(self, products: list[Product]) -> None:
        """Replace (never merge) the last product search results."""
        self.last_products = list(products)
        self._touch()

    def replace_cart(self, cart: Cart) -> None:
        """Replace the cart snapshot and re-sync the held cart id with it."""
        if self.cart_id != cart.id:
            logger.info("session_cart_id_changed", session_id=self.session_id, cart_id=cart.id)
        self.cart_id = cart.id
        self.last_cart = cart
        self._touch()

    def forget_cart(self) -> None:
        """Drop the held cart after the storefront reported it missing."""
        self.cart_id = None
        self.last_cart = Cart.empty()
        self._touch()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def add_turn(self, speaker: Speaker, text: str) -> ChatTurn:
        turn = ChatTurn(speaker=speaker, text=text)
        self.history.append(turn)
        self._touch()
        return turn

    def latest_user_text(self) -> str:
        """Text of the newest user turn, or ``""`` when there is none."""
        for turn in reversed(self.history):
            if turn.speaker == Speaker.USER:
                return turn.text
        return ""

    # ------------------------------------------------------------------
    # Persistence across reloads
    # ------------------------------------------------------------------

    def persisted(self) -> PersistedSession:
        return PersistedSession(cart_id=self.cart_id, auth_token=self.auth_token)

    @classmethod
    def restore(cls, snapshot: PersistedSession | dict[str, Any] | None) -> SessionState:
        """Start a session from persisted client state; snapshots start empty."""
        if snapshot is None:
            return cls()
        if isinstance(snapshot, dict):
            snapshot = PersistedSession.model_validate(snapshot)
        return cls(cart_id=snapshot.cart_id, auth_token=snapshot.auth_token)

    def _touch(self) -> None:
        self.updated_at = datetime.now(tz=timezone.utc)


class SessionStore:
    """In-memory session store for the server-driven chat endpoint."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}

    def get_or_create(self, session_id: str | None = None) -> SessionState:
        """Return the session for *session_id*, creating it on first use."""
        if session_id and session_id in self._sessions:
            return self._sessions[session_id]
        session = SessionState(session_id=session_id) if session_id else SessionState()
        self._sessions[session.session_id] = session
        logger.info("session_created", session_id=session.session_id)
        return session

    def get(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
