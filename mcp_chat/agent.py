"""
Agentic loop — lets the chat model call MCP tools until it can answer.

One AgenticLoop.run() call handles one chat request:

    user turn ─▶ model ──tool calls?──yes──▶ execute via ToolDispatcher
                   ▲                              │
                   └──── tool results appended ◀──┘
                              no
                               └──▶ final text

Progress is streamed as LoopEvents in the order it happens:
``tools_available``, ``tool_call``, ``tool_result``, ``text``, ``error``,
``done``. The loop is bounded by ``max_iterations`` model calls.

Usage:
    loop = AgenticLoop(model, manager, max_iterations=10)
    async for event in loop.run([{"role": "user", "content": "What time is it?"}]):
        print(event.type, event.data)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from mcp_chat.bridge import ToolDispatcher, describe_tools, tool_call_args
from mcp_chat.config import Settings
from mcp_chat.errors import ModelConfigurationError, ToolResolutionError
from mcp_chat.manager import MCPServerManager
from mcp_chat.types import ServerTool, ToolCall, ToolCallResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10

SYSTEM_INSTRUCTION = """You are a helpful assistant with access to external tools provided by MCP servers.

Available tools:
{tool_list}

Rules:
1. If a tool can answer or help answer the user's request, you MUST call it instead of guessing.
2. Call tools with arguments that match their parameter schema.
3. After receiving tool results, answer the user based on those results.
4. If a tool returns an error, explain what went wrong or try a different approach.
5. If no tool applies, answer directly."""


@dataclass(frozen=True)
class LoopEvent:
    """One streamed step of the loop."""
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.data, default=str)}\n\n"


@dataclass(frozen=True)
class LoopState:
    """Conversation so far plus the model calls still allowed."""
    messages: tuple[BaseMessage, ...]
    remaining: int

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def advance(self, *turns: BaseMessage) -> "LoopState":
        return LoopState(self.messages + turns, max(self.remaining - 1, 0))


# ============================================================
# MESSAGE HELPERS
# ============================================================

def to_langchain_messages(messages: Iterable[dict[str, Any]]) -> list[BaseMessage]:
    """Convert UI chat turns (``{"role", "content"}``) into langchain messages."""
    converted: list[BaseMessage] = []
    for message in messages:
        role = message.get("role")
        content = message.get("content") or ""
        if role == "user":
            converted.append(HumanMessage(content=content))
        elif role in ("assistant", "model"):
            converted.append(AIMessage(content=content))
        elif role == "system":
            converted.append(SystemMessage(content=content))
        else:
            raise ValueError(f"Unsupported message role: {role!r}")
    return converted


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of parts."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def inject_system_instruction(
    messages: list[BaseMessage],
    tools: list[ServerTool],
) -> list[BaseMessage]:
    """
    Lead the conversation with the tool instruction, once.

    Gemini only reads a system turn in first position, so a leading
    system message is extended with the instruction instead of being
    followed by a second one.
    """
    instruction = SYSTEM_INSTRUCTION.format(tool_list=describe_tools(tools))
    if messages and isinstance(messages[0], SystemMessage):
        merged = SystemMessage(content=f"{instruction}\n\n{message_text(messages[0])}")
        return [merged, *messages[1:]]
    return [SystemMessage(content=instruction), *messages]


def create_chat_model(settings: Settings) -> BaseChatModel:
    """
    Build the chat model named by ``settings.model`` ("provider:model").

    Raises:
        ModelConfigurationError: if no API key is configured.
    """
    if not settings.api_key:
        raise ModelConfigurationError("GEMINI_API_KEY is not configured")

    from langchain.chat_models import init_chat_model

    return init_chat_model(settings.model, api_key=settings.api_key)


async def stream_completion(model: BaseChatModel, messages: list[BaseMessage]) -> AsyncIterator[str]:
    """Plain streamed completion with no tools bound."""
    async for chunk in model.astream(messages):
        text = message_text(chunk)
        if text:
            yield text


# ============================================================
# LOOP DRIVER
# ============================================================

class AgenticLoop:
    """
    Drives the model ↔ tool exchange for one chat request.

    The manager is shared by every request; the dispatcher snapshot and
    the loop state belong to this run only.
    """

    def __init__(
        self,
        model: BaseChatModel,
        manager: MCPServerManager,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.model = model
        self.manager = manager
        self.max_iterations = max_iterations

    async def run(self, messages: Iterable[dict[str, Any]]) -> AsyncIterator[LoopEvent]:
        """
        Run the loop, yielding events as they happen.

        A loop-fatal error (model API failure, bad input) yields an
        ``error`` event and ends the stream without ``done``.
        """
        try:
            conversation = to_langchain_messages(messages)
            dispatcher = ToolDispatcher.from_manager(self.manager)

            if len(dispatcher) == 0:
                async for event in self._plain_completion(conversation):
                    yield event
                return

            yield LoopEvent("tools_available", {
                "tools": [
                    {"name": t.tool.name, "serverId": t.server_id, "serverName": t.server_name}
                    for t in dispatcher.tools
                ],
            })

            bound_model = self.model.bind_tools(dispatcher.declarations())
            state = LoopState(
                messages=tuple(inject_system_instruction(conversation, dispatcher.tools)),
                remaining=self.max_iterations,
            )

            while not state.exhausted:
                response = await bound_model.ainvoke(list(state.messages))

                if not response.tool_calls:
                    yield LoopEvent("text", {"content": message_text(response)})
                    yield LoopEvent("done", {"status": "complete"})
                    return

                turns: list[BaseMessage] = [response]
                for requested in response.tool_calls:
                    call = self._resolve_call(dispatcher, requested)
                    yield LoopEvent("tool_call", call.to_dict())

                    result = await self._execute(dispatcher, call)
                    yield LoopEvent("tool_result", result.to_dict())

                    turns.append(ToolMessage(
                        content=result.result,
                        tool_call_id=call.id,
                        name=call.name,
                        status="error" if result.is_error else "success",
                    ))

                state = state.advance(*turns)

            logger.warning(f"Tool loop stopped after {self.max_iterations} iterations without a final answer")
            yield LoopEvent("done", {
                "status": "incomplete",
                "reason": "max_iterations",
                "iterations": self.max_iterations,
            })
        except Exception as e:
            logger.error(f"Tool loop failed: {e}", exc_info=True)
            yield LoopEvent("error", {"message": str(e) or type(e).__name__})

    async def _plain_completion(self, conversation: list[BaseMessage]) -> AsyncIterator[LoopEvent]:
        logger.info("No MCP tools connected, using a plain completion")
        response = await self.model.ainvoke(conversation)
        yield LoopEvent("text", {"content": message_text(response)})
        yield LoopEvent("done", {"status": "complete"})

    @staticmethod
    def _resolve_call(dispatcher: ToolDispatcher, requested: dict[str, Any]) -> ToolCall:
        name = requested.get("name", "")
        call_id = requested.get("id") or f"call_{uuid.uuid4().hex[:12]}"
        args = tool_call_args(requested.get("args"))
        try:
            owner = dispatcher.resolve(name)
        except ToolResolutionError:
            return ToolCall(id=call_id, name=name, args=args)
        return ToolCall(
            id=call_id,
            name=name,
            args=args,
            server_id=owner.server_id,
            server_name=owner.server_name,
        )

    @staticmethod
    async def _execute(dispatcher: ToolDispatcher, call: ToolCall) -> ToolCallResult:
        if call.server_id is None:
            message = str(ToolResolutionError(call.name))
            logger.warning(message)
            return ToolCallResult(
                tool_call_id=call.id, name=call.name, result=f"Error: {message}", is_error=True
            )

        # An already dispatched call finishes even if the client goes away
        task = asyncio.create_task(dispatcher.execute(call.server_id, call.name, call.args, call.id))
        return await asyncio.shield(task)
