"""Tests for the storefront page cart bridge."""

import asyncio

import pytest

from storefront_assistant.errors import CartBridgeError, CartBridgeTimeout
from storefront_assistant.protocols.cart_bridge import (
    CartBridge,
    CartBridgeAction,
    CartBridgeRegistry,
)


class FakePage:
    """Answers bridge requests the way the storefront page script does."""

    def __init__(self, reply=None, error=None, silent=False):
        self.reply = reply or {}
        self.error = error
        self.silent = silent
        self.sent = []
        self.bridge = None

    async def send(self, message):
        self.sent.append(message)
        if self.silent:
            return
        response = {"type": f"{message['type']}_RESPONSE", "requestId": message["requestId"]}
        if self.error:
            response["error"] = self.error
        else:
            response["payload"] = self.reply
        asyncio.get_running_loop().call_soon(self.bridge.handle_message, response)


def _bridge(page, timeout=1.0):
    bridge = CartBridge(page.send, timeout=timeout)
    page.bridge = bridge
    return bridge


class TestCartBridge:
    async def test_response_resolves_request(self):
        page = FakePage(reply={"item_count": 2, "items": []})
        bridge = _bridge(page)

        cart = await bridge.get_cart()

        assert cart == {"item_count": 2, "items": []}
        assert page.sent[0]["type"] == "GET_CART"
        assert page.sent[0]["payload"] == {}
        assert bridge.pending == 0

    async def test_request_payloads(self):
        page = FakePage()
        bridge = _bridge(page)

        await bridge.add_to_cart("4410", 2)
        await bridge.update_cart("4410:abc", 0)

        assert [m["type"] for m in page.sent] == ["ADD_TO_CART", "UPDATE_CART"]
        assert page.sent[0]["payload"] == {"id": "4410", "quantity": 2}
        assert page.sent[1]["payload"] == {"id": "4410:abc", "quantity": 0}
        assert page.sent[0]["requestId"] != page.sent[1]["requestId"]

    async def test_timeout_releases_pending_slot(self):
        page = FakePage(silent=True)
        bridge = _bridge(page, timeout=0.01)

        with pytest.raises(CartBridgeTimeout):
            await bridge.request(CartBridgeAction.CLEAR_CART)

        assert bridge.pending == 0

    async def test_late_response_is_ignored(self):
        page = FakePage(silent=True)
        bridge = _bridge(page, timeout=0.01)

        with pytest.raises(CartBridgeTimeout):
            await bridge.get_cart()

        assert bridge.handle_message({"requestId": page.sent[0]["requestId"], "payload": {}}) is False

    async def test_error_response(self):
        page = FakePage(error="Cart is locked")
        bridge = _bridge(page)

        with pytest.raises(CartBridgeError, match="Cart is locked"):
            await bridge.remove_from_cart("4410:abc")

    async def test_send_failure_is_a_bridge_error(self):
        async def closed_socket(message):
            raise RuntimeError("Cannot call send once a close message has been sent.")

        bridge = CartBridge(closed_socket)

        with pytest.raises(CartBridgeError, match="GET_CART could not be sent"):
            await bridge.get_cart()
        assert bridge.pending == 0

    async def test_unknown_request_id(self):
        bridge = CartBridge(FakePage().send)

        assert bridge.handle_message({"requestId": "nope"}) is False
        assert bridge.handle_message({}) is False

    async def test_close_fails_outstanding_requests(self):
        page = FakePage(silent=True)
        bridge = _bridge(page, timeout=5.0)

        task = asyncio.create_task(bridge.get_cart())
        await asyncio.sleep(0)
        bridge.close()

        with pytest.raises(CartBridgeError, match="disconnected"):
            await task
        assert bridge.pending == 0


class TestCartBridgeRegistry:
    async def test_reconnect_replaces_bridge(self):
        registry = CartBridgeRegistry(timeout=1.0)

        first = registry.connect("s1", FakePage().send)
        second = registry.connect("s1", FakePage().send)

        assert registry.get("s1") is second
        assert first is not second

    async def test_stale_disconnect_keeps_current_bridge(self):
        registry = CartBridgeRegistry(timeout=1.0)
        first = registry.connect("s1", FakePage().send)
        second = registry.connect("s1", FakePage().send)

        registry.disconnect("s1", first)
        assert registry.get("s1") is second

        registry.disconnect("s1", second)
        assert registry.get("s1") is None
