"""
HTTP API for the chat UI.

Endpoints (all JSON errors are ``{"error": "<message>"}``):

    POST   /api/mcp/connect              ServerConfig → ConnectionState
    POST   /api/mcp/disconnect           {serverId}
    DELETE /api/mcp/servers/{serverId}   forget a deleted server
    GET    /api/mcp/status[?serverId=]   one state, or {states, tools}
    GET    /api/mcp/tools?serverId=      list / POST {serverId, toolName, arguments}
    GET    /api/mcp/prompts?serverId=    list / POST {serverId, promptName, arguments}
    GET    /api/mcp/resources?serverId=  list / POST {serverId, uri}
    GET    /api/mcp/configs/export       saved configs as JSON
    POST   /api/mcp/configs/import       replace saved configs
    POST   /api/chat                     {messages, useMCPTools} → text or SSE stream

The MCPServerManager is created once per app and shared by every request.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from langchain_core.language_models import BaseChatModel
from mcp.shared.exceptions import McpError
from pydantic import BaseModel

from mcp_chat.agent import AgenticLoop, create_chat_model, stream_completion, to_langchain_messages
from mcp_chat.config import Settings, get_settings
from mcp_chat.errors import (
    MCPConnectionError,
    MCPTimeoutError,
    ModelConfigurationError,
    ServerConfigError,
    ServerNotConnectedError,
)
from mcp_chat.manager import MCPServerManager, default_session_factory
from mcp_chat.storage import ServerConfigStore
from mcp_chat.types import ConnectionState, ServerConfig

logger = logging.getLogger(__name__)

ModelFactory = Callable[[Settings], BaseChatModel]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


# ============================================================
# REQUEST BODIES
# ============================================================

class DisconnectRequest(BaseModel):
    serverId: str | None = None


class ToolCallRequest(BaseModel):
    serverId: str | None = None
    toolName: str | None = None
    arguments: dict[str, Any] | None = None


class PromptRequest(BaseModel):
    serverId: str | None = None
    promptName: str | None = None
    arguments: dict[str, str] | None = None


class ResourceReadRequest(BaseModel):
    serverId: str | None = None
    uri: str | None = None


class ChatMessage(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    messages: list[ChatMessage] | None = None
    useMCPTools: bool = False


# ============================================================
# DEPENDENCIES
# ============================================================

def get_manager(request: Request) -> MCPServerManager:
    return request.app.state.manager


def get_store(request: Request) -> ServerConfigStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


# ============================================================
# MCP ROUTES
# ============================================================

mcp_router = APIRouter(prefix="/api/mcp", tags=["MCP"])


@mcp_router.post("/connect")
async def connect_server(
    payload: Any = Body(...),
    manager: MCPServerManager = Depends(get_manager),
):
    config = ServerConfig.from_dict(payload)
    try:
        state = await manager.connect(config)
    except MCPConnectionError as e:
        # The failure is recorded in the state; report it as data
        state = manager.get_connection_state(config.id) or ConnectionState.failed(config.id, str(e))
    except Exception as e:
        logger.error(f"MCP connect error: {e}", exc_info=True)
        return error_response(str(e) or "Failed to connect", 500)
    return state.to_dict()


@mcp_router.post("/disconnect")
async def disconnect_server(
    body: DisconnectRequest,
    manager: MCPServerManager = Depends(get_manager),
):
    if not body.serverId:
        return error_response("Missing required field: serverId", 400)
    await manager.disconnect(body.serverId)
    return {"success": True, "serverId": body.serverId}


@mcp_router.delete("/servers/{server_id}")
async def remove_server(
    server_id: str,
    manager: MCPServerManager = Depends(get_manager),
    store: ServerConfigStore = Depends(get_store),
):
    await manager.remove_server(server_id)
    store.delete(server_id)
    return {"success": True, "serverId": server_id}


@mcp_router.get("/status")
async def connection_status(
    serverId: str | None = None,
    manager: MCPServerManager = Depends(get_manager),
):
    if serverId:
        state = manager.get_connection_state(serverId)
        if state is None:
            return error_response("Server not found", 404)
        return state.to_dict()

    return {
        "states": [s.to_dict() for s in manager.get_all_connection_states()],
        "tools": [t.to_dict() for t in manager.get_all_tools()],
    }


@mcp_router.get("/tools")
async def list_tools(serverId: str | None = None, manager: MCPServerManager = Depends(get_manager)):
    if not serverId:
        return error_response("Missing required query param: serverId", 400)
    tools = await manager.list_tools(serverId)
    return {"tools": [t.to_dict() for t in tools]}


@mcp_router.post("/tools")
async def call_tool(body: ToolCallRequest, manager: MCPServerManager = Depends(get_manager)):
    if not body.serverId or not body.toolName:
        return error_response("Missing required fields: serverId, toolName", 400)
    output = await manager.call_tool(body.serverId, body.toolName, body.arguments or {})
    return output.to_dict()


@mcp_router.get("/prompts")
async def list_prompts(serverId: str | None = None, manager: MCPServerManager = Depends(get_manager)):
    if not serverId:
        return error_response("Missing required query param: serverId", 400)
    prompts = await manager.list_prompts(serverId)
    return {"prompts": [p.to_dict() for p in prompts]}


@mcp_router.post("/prompts")
async def get_prompt(body: PromptRequest, manager: MCPServerManager = Depends(get_manager)):
    if not body.serverId or not body.promptName:
        return error_response("Missing required fields: serverId, promptName", 400)
    result = await manager.get_prompt(body.serverId, body.promptName, body.arguments or {})
    return result.to_dict()


@mcp_router.get("/resources")
async def list_resources(serverId: str | None = None, manager: MCPServerManager = Depends(get_manager)):
    if not serverId:
        return error_response("Missing required query param: serverId", 400)
    resources = await manager.list_resources(serverId)
    return {"resources": [r.to_dict() for r in resources]}


@mcp_router.post("/resources")
async def read_resource(body: ResourceReadRequest, manager: MCPServerManager = Depends(get_manager)):
    if not body.serverId or not body.uri:
        return error_response("Missing required fields: serverId, uri", 400)
    contents = await manager.read_resource(body.serverId, body.uri)
    return {"contents": [c.to_dict() for c in contents]}


@mcp_router.get("/configs/export")
async def export_configs(store: ServerConfigStore = Depends(get_store)):
    return Response(content=store.export_configs(), media_type="application/json")


@mcp_router.post("/configs/import")
async def import_configs(request: Request, store: ServerConfigStore = Depends(get_store)):
    raw = (await request.body()).decode("utf-8")
    configs = store.import_configs(raw)
    return {"servers": [c.to_dict() for c in configs]}


# ============================================================
# CHAT ROUTE
# ============================================================

chat_router = APIRouter(prefix="/api", tags=["Chat"])


def stream_error_marker(error: BaseException) -> str:
    """Trailer that ends a plain-text stream whose model call failed."""
    return f"\n\n[Error: {str(error) or type(error).__name__}]"


async def _plain_text_stream(model: BaseChatModel, messages) -> AsyncIterator[str]:
    # Headers are already sent, so the failure is reported in the body
    try:
        async for text in stream_completion(model, messages):
            yield text
    except Exception as e:
        logger.error(f"Chat stream failed: {e}", exc_info=True)
        yield stream_error_marker(e)


async def _event_stream(loop: AgenticLoop, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
    async for event in loop.run(messages):
        yield event.to_sse()


@chat_router.post("/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    manager: MCPServerManager = Depends(get_manager),
    settings: Settings = Depends(get_app_settings),
):
    if not body.messages:
        return error_response("Messages array is required", 400)

    turns = [m.model_dump() for m in body.messages]
    try:
        conversation = to_langchain_messages(turns)
    except ValueError as e:
        return error_response(str(e), 400)

    try:
        model = request.app.state.model_factory(settings)
    except ModelConfigurationError as e:
        return error_response(str(e), 500)

    if not body.useMCPTools or not manager.get_all_tools():
        return StreamingResponse(
            _plain_text_stream(model, conversation),
            media_type="text/plain; charset=utf-8",
            headers={"Cache-Control": "no-cache"},
        )

    loop = AgenticLoop(model, manager, max_iterations=settings.max_tool_iterations)
    return StreamingResponse(
        _event_stream(loop, turns),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ============================================================
# APP FACTORY
# ============================================================

async def connect_saved_servers(manager: MCPServerManager, store: ServerConfigStore) -> dict[str, str]:
    """Connect every saved server. Returns {server_id: status}; failures are logged."""
    results = {}
    for config in store.load():
        try:
            state = await manager.connect(config)
            results[config.id] = state.status.value
        except Exception as e:
            logger.error(f"Failed to connect {config.name}: {e}")
            results[config.id] = "error"
    return results


def create_app(
    settings: Settings | None = None,
    manager: MCPServerManager | None = None,
    store: ServerConfigStore | None = None,
    model_factory: ModelFactory | None = None,
    autoconnect: bool = False,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Defaults to environment settings.
        manager: Shared connection manager; built from settings if omitted.
        store: Saved-config store; defaults to ``settings.servers_file``.
        model_factory: Builds the chat model per request.
        autoconnect: Connect every saved server at startup.
    """
    settings = settings or get_settings()
    manager = manager or MCPServerManager(
        default_session_factory(
            client_name=settings.client_name,
            client_version=settings.client_version,
            connect_timeout=settings.connect_timeout,
            call_timeout=settings.tool_call_timeout,
        )
    )
    store = store or ServerConfigStore(settings.servers_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autoconnect:
            results = await connect_saved_servers(manager, store)
            logger.info(f"Auto-connected saved servers: {results}")
        yield
        await manager.shutdown()

    app = FastAPI(title="MCP Chat", lifespan=lifespan)
    app.state.settings = settings
    app.state.manager = manager
    app.state.store = store
    app.state.model_factory = model_factory or create_chat_model

    @app.exception_handler(ServerConfigError)
    async def handle_config_error(request: Request, exc: ServerConfigError):
        return error_response(str(exc), 400)

    @app.exception_handler(ServerNotConnectedError)
    async def handle_not_connected(request: Request, exc: ServerNotConnectedError):
        return error_response(str(exc), 409)

    @app.exception_handler(MCPTimeoutError)
    async def handle_timeout(request: Request, exc: MCPTimeoutError):
        return error_response(str(exc), 504)

    @app.exception_handler(McpError)
    async def handle_protocol_error(request: Request, exc: McpError):
        logger.error(f"MCP request failed: {exc}")
        return error_response(str(exc) or "MCP request failed", 500)

    app.include_router(mcp_router)
    app.include_router(chat_router)
    return app
