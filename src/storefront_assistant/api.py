"""FastAPI application for the Storefront Assistant.

Exposes REST endpoints for:
- Intent extraction and tool-result summarization (stateless, client-held history)
- Tool dispatch against the Storefront API (stateless, client-held session)
- A server-driven chat turn that runs the whole relay
- Customer login and active-cart lookup
- The tool manifest
- The WebSocket cart bridge to the hosting storefront page
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from common import ErrorResponse, HealthResponse

from storefront_assistant.config import Settings
from storefront_assistant.errors import (
    CartBridgeError,
    CartBridgeTimeout,
    ConfigurationError,
    StorefrontError,
    StorefrontUserError,
    ToolParameterError,
)
from storefront_assistant.models import Cart, ChatTurn, Product, ToolCall, WireModel
from storefront_assistant.orchestrator.dispatcher import ActionDispatcher
from storefront_assistant.orchestrator.graph import ShoppingAssistant
from storefront_assistant.orchestrator.intent import IntentExtractor
from storefront_assistant.orchestrator.llm import CompletionModel, LanguageModel
from storefront_assistant.orchestrator.summarizer import Summarizer
from storefront_assistant.protocols import tool_registry as tools
from storefront_assistant.protocols.cart_bridge import CartBridgeRegistry
from storefront_assistant.protocols.storefront_client import StorefrontClient
from storefront_assistant.session import SessionState, SessionStore

logger = structlog.get_logger(__name__)

CUSTOMER_TOKEN_HEADER = "x-customer-access-token"


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class IntentRequest(BaseModel):
    """Chat history to extract an intent from, or to summarize."""

    messages: list[ChatTurn] | None = None


class ClientSession(WireModel):
    """Session state held by the widget and round-tripped through dispatch."""

    cart_id: str | None = None
    last_products: list[Product] = Field(default_factory=list)
    last_cart: Cart | None = None
    messages: list[ChatTurn] = Field(default_factory=list)

    def to_state(self, auth_token: str | None) -> SessionState:
        return SessionState(
            auth_token=auth_token,
            cart_id=self.cart_id,
            last_products=self.last_products,
            last_cart=self.last_cart,
            history=self.messages,
        )

    @classmethod
    def from_state(cls, session: SessionState) -> ClientSession:
        return cls(
            cart_id=session.cart_id,
            last_products=session.last_products,
            last_cart=session.last_cart,
        )


class DispatchRequest(BaseModel):
    """A tool call plus the widget's current session state."""

    tool_use: ToolCall | None = None
    session: ClientSession = Field(default_factory=ClientSession)


class ChatRequest(BaseModel):
    """One shopper message for the server-driven relay."""

    session_id: str | None = None
    message: str = Field(min_length=1)
    cart_id: str | None = None


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class ActiveCartRequest(BaseModel):
    customer_access_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("customerAccessToken", "customer_access_token"),
    )


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


# ---------------------------------------------------------------------------
# Application state container
# ---------------------------------------------------------------------------


class AppState:
    """Shared collaborators accessible from route handlers."""

    def __init__(
        self,
        settings: Settings,
        storefront: StorefrontClient | None = None,
        language_model: CompletionModel | None = None,
    ) -> None:
        self.settings = settings
        self.storefront = storefront or StorefrontClient(settings)
        self.language_model = language_model or LanguageModel(settings)
        self.summarizer = Summarizer(settings, self.language_model)
        self.extractor = IntentExtractor(settings, self.language_model, self.summarizer)
        self.dispatcher = ActionDispatcher(self.storefront)
        self.assistant = ShoppingAssistant(self.extractor, self.dispatcher, self.summarizer)
        self.sessions = SessionStore()
        self.bridges = CartBridgeRegistry(timeout=settings.cart_bridge_timeout)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    storefront: StorefrontClient | None = None,
    language_model: CompletionModel | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()
    state = AppState(settings, storefront=storefront, language_model=language_model)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await state.storefront.close()
        logger.info("storefront_client_closed")

    app = FastAPI(
        title="Storefront Assistant",
        description=(
            "Conversational shopping assistant that turns chat messages into "
            "Shopify Storefront API actions and back into replies."
        ),
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Shared state
    app.state.app_state = state
    app.state.settings = settings

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        return HealthResponse.from_checks(
            service=settings.service_name,
            version=settings.service_version,
            checks={
                "storefront": settings.storefront_configured,
                "language_model": settings.language_model_configured,
            },
        )

    # -------------------------------------------------------------------
    # Relay endpoints
    # -------------------------------------------------------------------

    @app.post("/api/v1/intent", tags=["relay"])
    async def extract_intent(req: IntentRequest) -> Any:
        """Extract a tool call, or summarize when the last turn is a tool result."""
        settings.require_language_model()
        if not req.messages:
            return _error(400, "Missing messages")

        response = await state.extractor.respond(req.messages)
        if response.message is not None:
            return {"message": response.message}
        if response.tool_use is None:
            return _error(400, "No tool_use detected")
        return {"tool_use": response.tool_use.model_dump()}

    @app.post("/api/v1/dispatch", tags=["relay"])
    async def dispatch_tool(
        req: DispatchRequest,
        customer_token: str | None = Header(default=None, alias=CUSTOMER_TOKEN_HEADER),
    ) -> Any:
        """Execute one tool call and return its result plus the updated session."""
        if req.tool_use is None or not req.tool_use.name:
            return _error(400, "Missing tool_use or tool_use.name")
        if not tools.is_registered(req.tool_use.name):
            return _error(400, f"Unknown tool_use: {req.tool_use.name}", action=req.tool_use.name)

        session = req.session.to_state(customer_token)
        result = await state.dispatcher.dispatch(req.tool_use, session)

        body = result.to_wire()
        body["session"] = ClientSession.from_state(session).model_dump(
            by_alias=True, exclude_none=True, exclude={"messages"}
        )
        return body

    @app.post("/api/v1/chat", tags=["relay"])
    async def chat(
        req: ChatRequest,
        customer_token: str | None = Header(default=None, alias=CUSTOMER_TOKEN_HEADER),
    ) -> dict[str, Any]:
        """Run one full turn (extract, dispatch, summarize) on a server-held session."""
        settings.require_language_model()
        settings.require_storefront()

        session = state.sessions.get_or_create(req.session_id)
        if req.cart_id and not session.cart_id:
            session.cart_id = req.cart_id
        if customer_token:
            session.auth_token = customer_token

        outcome = await state.assistant.handle_turn(session, req.message)
        return {
            "session_id": session.session_id,
            "reply": outcome.reply,
            "tool_use": outcome.tool_use.model_dump() if outcome.tool_use else None,
            "result": outcome.result.to_wire() if outcome.result else None,
            "cards": [card.model_dump() for card in outcome.cards],
            "persisted": session.persisted().model_dump(),
        }

    @app.get("/api/v1/tools", tags=["relay"])
    async def tool_manifest() -> dict[str, Any]:
        """Tool manifest for model-side tooling."""
        return tools.build_manifest()

    # -------------------------------------------------------------------
    # Customer endpoints
    # -------------------------------------------------------------------

    @app.post("/api/v1/customer/login", tags=["customer"])
    async def customer_login(req: LoginRequest) -> Any:
        """Exchange email and password for a customer access token."""
        if not req.email or not req.password:
            return _error(400, "Missing email or password")
        settings.require_storefront()
        try:
            token = await state.storefront.create_customer_access_token(req.email, req.password)
        except StorefrontUserError as exc:
            return _error(401, str(exc))
        except StorefrontError:
            logger.warning("customer_login_failed", exc_info=True)
            return _error(500, "Failed to login")
        return {"accessToken": token}

    @app.post("/api/v1/customer/active-cart", tags=["customer"])
    async def active_cart(req: ActiveCartRequest) -> dict[str, Any]:
        """Look up the logged-in customer's open cart, if the store has one."""
        if not req.customer_access_token:
            return {"cartId": None}
        try:
            cart_id = await state.storefront.get_active_cart_id(req.customer_access_token)
        except (StorefrontError, ConfigurationError) as exc:
            logger.info("active_cart_lookup_failed", error=str(exc))
            return {"cartId": None, "error": str(exc)}
        return {"cartId": cart_id}

    # -------------------------------------------------------------------
    # Storefront cart bridge
    # -------------------------------------------------------------------

    @app.websocket("/api/v1/cart-bridge/{session_id}")
    async def cart_bridge_socket(websocket: WebSocket, session_id: str) -> None:
        """Connection from the hosting storefront page; it answers cart requests."""
        bridge = state.bridges.connect(session_id, websocket.send_json)
        await websocket.accept()
        try:
            while True:
                message = await websocket.receive_json()
                if isinstance(message, dict):
                    bridge.handle_message(message)
        except WebSocketDisconnect:
            logger.info("cart_bridge_socket_closed", session_id=session_id)
        finally:
            state.bridges.disconnect(session_id, bridge)

    @app.get("/api/v1/cart-bridge/{session_id}/cart", tags=["cart-bridge"])
    async def storefront_page_cart(session_id: str) -> dict[str, Any]:
        """Read the theme cart through the page connected for *session_id*."""
        bridge = state.bridges.get(session_id)
        if bridge is None:
            raise HTTPException(status_code=404, detail="No storefront page connected")
        try:
            cart = await bridge.get_cart()
        except CartBridgeTimeout as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        except CartBridgeError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"session_id": session_id, "cart": cart}

    # -------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("configuration_error", error=str(exc), path=request.url.path)
        return _error(500, str(exc))

    @app.exception_handler(ToolParameterError)
    async def parameter_error_handler(request: Request, exc: ToolParameterError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc),
                status_code=500,
            ).model_dump(),
        )

    return app
