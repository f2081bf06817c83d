"""Request/response bridge to the cart of the hosting storefront page.

The assistant runs inside a widget embedded in the shop's theme; the theme's
own cart (``/cart.js`` and friends) is only reachable from that page.  The
page connects to the assistant over a WebSocket and answers bridge requests.
Every request carries a ``requestId``; the matching response resolves the
waiting caller.  A request with no response before the timeout fails and its
pending slot is released.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from storefront_assistant.errors import CartBridgeError, CartBridgeTimeout

logger = structlog.get_logger(__name__)

SendFn = Callable[[dict[str, Any]], Awaitable[None]]


class CartBridgeAction(str, enum.Enum):
    """Message types understood by the storefront page."""

    GET_CART = "GET_CART"
    ADD_TO_CART = "ADD_TO_CART"
    REMOVE_FROM_CART = "REMOVE_FROM_CART"
    UPDATE_CART = "UPDATE_CART"
    CLEAR_CART = "CLEAR_CART"


class CartBridge:
    """Correlates bridge requests with the page's responses.

    Parameters
    ----------
    send:
        Coroutine that delivers one JSON message to the page.
    timeout:
        Seconds to wait for each response.
    """

    def __init__(self, send: SendFn, timeout: float = 5.0) -> None:
        self._send = send
        self._timeout = timeout
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        action: CartBridgeAction,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send *action* to the page and wait for its response payload.

        Raises
        ------
        CartBridgeTimeout
            No response within the timeout.
        CartBridgeError
            The page reported an error, the message could not be sent, or
            the bridge was closed.
        """
        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        message = {"type": action.value, "requestId": request_id, "payload": payload or {}}
        try:
            try:
                await self._send(message)
            except Exception as exc:
                logger.warning("cart_bridge_send_failed", action=action.value, error=str(exc))
                raise CartBridgeError(f"{action.value} could not be sent: {exc}") from exc
            response = await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "cart_bridge_timeout",
                action=action.value,
                request_id=request_id,
                timeout=self._timeout,
            )
            raise CartBridgeTimeout(
                f"{action.value} timed out after {self._timeout:g}s"
            ) from exc
        finally:
            self._pending.pop(request_id, None)

        if response.get("error"):
            raise CartBridgeError(str(response["error"]))
        return response.get("payload") or {}

    async def get_cart(self) -> dict[str, Any]:
        return await self.request(CartBridgeAction.GET_CART)

    async def add_to_cart(self, variant_id: str, quantity: int = 1) -> dict[str, Any]:
        return await self.request(
            CartBridgeAction.ADD_TO_CART, {"id": variant_id, "quantity": quantity}
        )

    async def remove_from_cart(self, line_key: str) -> dict[str, Any]:
        return await self.request(CartBridgeAction.REMOVE_FROM_CART, {"id": line_key})

    async def update_cart(self, line_key: str, quantity: int) -> dict[str, Any]:
        return await self.request(
            CartBridgeAction.UPDATE_CART, {"id": line_key, "quantity": quantity}
        )

    async def clear_cart(self) -> dict[str, Any]:
        return await self.request(CartBridgeAction.CLEAR_CART)

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def handle_message(self, message: dict[str, Any]) -> bool:
        """Resolve the pending request *message* answers.

        Returns ``False`` for responses nobody is waiting for (unknown id,
        or one that already timed out).
        """
        request_id = message.get("requestId")
        future = self._pending.get(request_id) if isinstance(request_id, str) else None
        if future is None or future.done():
            logger.info("cart_bridge_unmatched_response", request_id=request_id)
            return False
        future.set_result(message)
        return True

    def close(self) -> None:
        """Fail every outstanding request; used when the page disconnects."""
        for future in self._pending.values():
            if not future.done():
                future.set_exception(CartBridgeError("Cart bridge disconnected"))
        self._pending.clear()


class CartBridgeRegistry:
    """Live bridges keyed by chat session id."""

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout
        self._bridges: dict[str, CartBridge] = {}

    def connect(self, session_id: str, send: SendFn) -> CartBridge:
        previous = self._bridges.pop(session_id, None)
        if previous is not None:
            previous.close()
        bridge = CartBridge(send, timeout=self._timeout)
        self._bridges[session_id] = bridge
        logger.info("cart_bridge_connected", session_id=session_id)
        return bridge

    def disconnect(self, session_id: str, bridge: CartBridge | None = None) -> None:
        current = self._bridges.get(session_id)
        if current is None or (bridge is not None and current is not bridge):
            return
        current.close()
        del self._bridges[session_id]
        logger.info("cart_bridge_disconnected", session_id=session_id)

    def get(self, session_id: str) -> CartBridge | None:
        return self._bridges.get(session_id)
