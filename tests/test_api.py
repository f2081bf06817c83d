"""Tests for the Storefront Assistant API."""

import asyncio

from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from storefront_assistant.api import create_app
from storefront_assistant.config import Settings
from storefront_assistant.errors import StorefrontTransportError, StorefrontUserError
from storefront_assistant.main import build_app
from storefront_assistant.models import CartLine, Merchandise
from storefront_assistant.protocols.cart_bridge import CartBridgeRegistry


class TestHealth:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["service"] == "storefront-assistant"
        assert data["checks"] == {"storefront": True, "language_model": True}

    async def test_degraded_without_storefront(self, storefront, model):
        app = create_app(Settings(anthropic_api_key="k", shopify_shop_domain=""), storefront=storefront, language_model=model)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"
        assert resp.json()["checks"]["storefront"] is False

    async def test_build_app(self, settings):
        app = build_app(settings)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/health")
        assert resp.status_code == 200


class TestTools:
    async def test_manifest_lists_every_tool(self, client):
        resp = await client.get("/api/v1/tools")
        assert resp.status_code == 200
        names = [tool["name"] for tool in resp.json()["tools"]]
        assert names == [
            "query_products",
            "create_cart",
            "add_to_cart",
            "remove_from_cart",
            "get_cart",
            "begin_checkout",
            "order_status",
        ]


class TestIntent:
    async def test_missing_messages(self, client):
        resp = await client.post("/api/v1/intent", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing messages"}

    async def test_extracts_tool_use(self, client, model):
        model.script('{"tool_use": {"name": "query_products", "parameters": {"query": "shoes"}}}')

        resp = await client.post(
            "/api/v1/intent",
            json={"messages": [{"from": "user", "message": "show me shoes"}]},
        )

        assert resp.status_code == 200
        assert resp.json() == {"tool_use": {"name": "query_products", "parameters": {"query": "shoes"}}}

    async def test_no_intent(self, client, model):
        model.script("Hello there!")

        resp = await client.post("/api/v1/intent", json={"messages": [{"speaker": "user", "text": "hi"}]})

        assert resp.status_code == 400
        assert resp.json() == {"error": "No tool_use detected"}

    async def test_tool_turn_is_summarized(self, client, model):
        model.script("Your cart is empty.")

        resp = await client.post(
            "/api/v1/intent",
            json={
                "messages": [
                    {"from": "user", "message": "cart?"},
                    {"from": "tool", "message": '{"action": "get_cart", "cart": {"totalQuantity": 0, "lines": []}}'},
                ]
            },
        )

        assert resp.status_code == 200
        assert resp.json() == {"message": "Your cart is empty."}

    async def test_missing_model_key_is_configuration_error(self, storefront, model):
        app = create_app(
            Settings(anthropic_api_key="", openai_api_key=""),
            storefront=storefront,
            language_model=model,
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.post("/api/v1/intent", json={"messages": [{"from": "user", "message": "hi"}]})

        assert resp.status_code == 500
        assert "ANTHROPIC_API_KEY" in resp.json()["error"]
        assert model.calls == []


class TestDispatch:
    async def test_missing_tool_use(self, client):
        resp = await client.post("/api/v1/dispatch", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing tool_use or tool_use.name"}

    async def test_unknown_tool(self, client, storefront):
        resp = await client.post("/api/v1/dispatch", json={"tool_use": {"name": "apply_discount"}})

        assert resp.status_code == 400
        assert resp.json() == {"error": "Unknown tool_use: apply_discount", "action": "apply_discount"}
        assert storefront.calls == []

    async def test_malformed_body(self, client):
        resp = await client.post("/api/v1/dispatch", json={"tool_use": "add_to_cart"})
        assert resp.status_code == 422

    async def test_add_to_cart_returns_cart_and_session(self, client, products):
        resp = await client.post(
            "/api/v1/dispatch",
            json={
                "tool_use": {
                    "name": "add_to_cart",
                    "parameters": {"lines": [{"merchandiseId": "Red Runner", "quantity": 2}]},
                },
                "session": {"lastProducts": [p.to_wire() for p in products]},
            },
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["action"] == "add_to_cart"
        assert data["cart"]["totalQuantity"] == 2
        assert data["session"]["cartId"] == data["cart"]["id"]
        assert data["session"]["lastCart"]["id"] == data["cart"]["id"]
        assert "messages" not in data["session"]

    async def test_held_cart_is_used(self, client, storefront):
        cart = storefront.seed_cart("gid://shopify/Cart/c1", [])

        resp = await client.post(
            "/api/v1/dispatch",
            json={"tool_use": {"name": "begin_checkout", "parameters": {}}, "session": {"cartId": cart.id}},
        )

        assert resp.json() == {
            "action": "begin_checkout",
            "checkoutUrl": cart.checkout_url,
            "session": {"cartId": cart.id, "lastProducts": []},
        }

    async def test_remove_grounds_on_client_history(self, client, storefront):
        cart = storefront.seed_cart(
            "gid://shopify/Cart/c1",
            [CartLine(id="gid://shopify/CartLine/a", quantity=1, merchandise=Merchandise(product_title="Red Runner"))],
        )

        resp = await client.post(
            "/api/v1/dispatch",
            json={
                "tool_use": {"name": "remove_from_cart", "parameters": {"lineIds": ["Red Runner"]}},
                "session": {
                    "cartId": cart.id,
                    "messages": [{"from": "user", "message": "remove the red runner"}],
                },
            },
        )

        data = resp.json()
        assert data["cart"]["lines"] == []
        assert storefront.calls[-1] == (
            "remove_cart_lines",
            {"cart_id": cart.id, "line_ids": ["gid://shopify/CartLine/a"]},
        )

    async def test_customer_token_header(self, client, storefront):
        resp = await client.post(
            "/api/v1/dispatch",
            json={"tool_use": {"name": "order_status", "parameters": {"orderId": "1001"}}},
            headers={"x-customer-access-token": "buyer-token"},
        )

        assert resp.json()["order"]["status"] == "fulfilled"
        assert storefront.calls == [
            ("get_order_status", {"order_id": "1001", "customer_token": "buyer-token"})
        ]

    async def test_store_failure_is_an_error_result(self, client, storefront):
        storefront.fail_with = StorefrontTransportError("Storefront API error: 503")

        resp = await client.post(
            "/api/v1/dispatch",
            json={"tool_use": {"name": "query_products", "parameters": {"query": "shoes"}}},
        )

        assert resp.status_code == 200
        assert resp.json()["error"].startswith("Sorry, the store could not be reached")


class TestChat:
    async def test_turns_share_server_session(self, client, model, storefront):
        model.script(
            '{"tool_use": {"name": "query_products", "parameters": {"query": "shoes"}}}',
            "1. ![Red Runner](https://cdn.example/red.png)\nRed Runner\n$49.00",
            '{"tool_use": {"name": "add_to_cart", "parameters": {"lines": [{"merchandiseId": "red runner"}]}}}',
            "Added it.",
        )

        first = await client.post("/api/v1/chat", json={"message": "show me shoes"})
        session_id = first.json()["session_id"]
        second = await client.post("/api/v1/chat", json={"session_id": session_id, "message": "add the red runner"})

        assert first.status_code == 200
        assert first.json()["cards"] == [
            {"position": 1, "title": "Red Runner", "image_url": "https://cdn.example/red.png", "price": "$49.00"}
        ]
        data = second.json()
        assert data["reply"] == "Added it."
        assert data["persisted"]["cart_id"] == data["result"]["cart"]["id"]
        assert storefront.call_names == ["search_products", "create_cart"]

    async def test_restores_persisted_cart(self, client, model, storefront):
        cart = storefront.seed_cart("gid://shopify/Cart/kept", [])
        model.script('{"tool_use": {"name": "get_cart", "parameters": {}}}', "Your cart is empty.")

        resp = await client.post("/api/v1/chat", json={"message": "what's in my cart", "cart_id": cart.id})

        assert resp.json()["result"]["cart"]["id"] == cart.id

    async def test_empty_message_is_rejected(self, client):
        resp = await client.post("/api/v1/chat", json={"message": ""})
        assert resp.status_code == 422

    async def test_unconfigured_storefront(self, storefront, model):
        app = create_app(Settings(anthropic_api_key="k", shopify_shop_domain=""), storefront=storefront, language_model=model)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.post("/api/v1/chat", json={"message": "hi"})

        assert resp.status_code == 500
        assert "SHOPIFY_SHOP_DOMAIN" in resp.json()["error"]


class TestCustomer:
    async def test_login(self, client):
        resp = await client.post("/api/v1/customer/login", json={"email": "a@example.com", "password": "pw"})
        assert resp.status_code == 200
        assert resp.json() == {"accessToken": "customer-token"}

    async def test_login_rejected(self, client, storefront):
        storefront.fail_with = StorefrontUserError("Unidentified customer", ["input"])

        resp = await client.post("/api/v1/customer/login", json={"email": "a@example.com", "password": "bad"})

        assert resp.status_code == 401
        assert resp.json() == {"error": "Unidentified customer"}

    async def test_login_missing_fields(self, client):
        resp = await client.post("/api/v1/customer/login", json={"email": "a@example.com"})
        assert resp.status_code == 400

    async def test_active_cart(self, client, storefront):
        storefront.active_cart_id = "gid://shopify/Cart/c9"

        resp = await client.post("/api/v1/customer/active-cart", json={"customerAccessToken": "buyer-token"})

        assert resp.json() == {"cartId": "gid://shopify/Cart/c9"}

    async def test_active_cart_failure_is_null(self, client, storefront):
        storefront.fail_with = StorefrontTransportError("Storefront API unreachable")

        resp = await client.post("/api/v1/customer/active-cart", json={"customerAccessToken": "buyer-token"})

        assert resp.status_code == 200
        assert resp.json()["cartId"] is None

    async def test_active_cart_without_token(self, client, storefront):
        resp = await client.post("/api/v1/customer/active-cart", json={})

        assert resp.json() == {"cartId": None}
        assert storefront.calls == []


class TestCartBridge:
    async def test_no_connected_page(self, client):
        resp = await client.get("/api/v1/cart-bridge/s1/cart")
        assert resp.status_code == 404

    async def test_reads_cart_through_connected_page(self, app, client):
        bridges = app.state.app_state.bridges

        async def page(message):
            response = {"requestId": message["requestId"], "payload": {"item_count": 1}}
            asyncio.get_running_loop().call_soon(bridges.get("s1").handle_message, response)

        bridges.connect("s1", page)

        resp = await client.get("/api/v1/cart-bridge/s1/cart")

        assert resp.status_code == 200
        assert resp.json() == {"session_id": "s1", "cart": {"item_count": 1}}

    async def test_page_timeout(self, app, client):
        bridges = app.state.app_state.bridges = CartBridgeRegistry(timeout=0.01)

        async def silent_page(message):
            return None

        bridges.connect("s1", silent_page)

        resp = await client.get("/api/v1/cart-bridge/s1/cart")

        assert resp.status_code == 504

    async def test_dead_page_is_bad_gateway(self, app, client):
        bridges = app.state.app_state.bridges

        async def closed_socket(message):
            raise RuntimeError("Cannot call send once a close message has been sent.")

        bridges.connect("s1", closed_socket)

        resp = await client.get("/api/v1/cart-bridge/s1/cart")

        assert resp.status_code == 502

    def test_websocket_registers_bridge(self, app):
        with TestClient(app) as test_client:
            with test_client.websocket_connect("/api/v1/cart-bridge/s9"):
                assert app.state.app_state.bridges.get("s9") is not None
