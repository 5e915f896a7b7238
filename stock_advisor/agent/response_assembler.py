"""
Streaming response assembly.

A producer task pulls chunks from the completion service and pushes tokens
into a bounded channel; the caller consumes the channel as an async sequence.
The last item on the channel is the assembled GenerationResult.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from ..core.exceptions import GenerationError
from .llm_client import DashScopeClient
from .state import Turn, TurnRole
from .tools import UPDATE_PROFILE_TOOL, ToolInvocation

logger = structlog.get_logger()


@dataclass(frozen=True)
class StreamToken:
    """Incremental piece of generated text."""

    text: str


@dataclass(frozen=True)
class GenerationResult:
    """Final text of one generation round plus any tool invocations it emitted."""

    text: str
    tool_calls: tuple[ToolInvocation, ...] = field(default_factory=tuple)

    def find_tool_call(self, name: str) -> ToolInvocation | None:
        for call in self.tool_calls:
            if call.name == name:
                return call
        return None


@dataclass(frozen=True)
class _ProducerFailure:
    error: Exception


def _chunk_text(chunk: AIMessageChunk) -> str:
    """Extract text from a chunk whose content may be a string or content blocks."""
    content = chunk.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def turns_to_messages(history: list[Turn]) -> list[BaseMessage]:
    """
    Convert buffered turns to chat messages.

    Summary turns are not sent as messages; their text already lives in the
    system prompt.
    """
    messages: list[BaseMessage] = []
    for turn in history:
        if turn.role is TurnRole.USER:
            messages.append(HumanMessage(content=turn.content))
        elif turn.role is TurnRole.ASSISTANT:
            messages.append(AIMessage(content=turn.content))
        elif turn.role is TurnRole.SYSTEM:
            continue
        else:
            raise ValueError(f"Unknown turn role: {turn.role!r}")
    return messages


class StreamingResponseAssembler:
    """
    Drives one request to the completion service and assembles the reply.

    Exactly one generation may be in flight per conversation. The assembler
    does not queue; the orchestrator rejects overlapping calls.
    """

    def __init__(self, llm: DashScopeClient, channel_size: int = 64):
        """
        Args:
            llm: Completion service client
            channel_size: Bound of the token channel (producer blocks when full)
        """
        self.llm = llm
        self.channel_size = channel_size

    def build_prompt(
        self, system_prompt: str, history: list[Turn], user_message: str
    ) -> list[BaseMessage]:
        """System message, paired history oldest to newest, then the new message."""
        return [
            SystemMessage(content=system_prompt),
            *turns_to_messages(history),
            HumanMessage(content=user_message),
        ]

    def build_tool_followup(
        self,
        system_prompt: str,
        history: list[Turn],
        user_message: str,
        first_round: GenerationResult,
        call: ToolInvocation,
        arguments: dict[str, Any],
        tool_result: str,
    ) -> list[BaseMessage]:
        """Prompt for the second round: fold the tool call and its result back in."""
        call_id = call.call_id or f"call_{uuid.uuid4().hex[:12]}"
        return [
            *self.build_prompt(system_prompt, history, user_message),
            AIMessage(
                content=first_round.text,
                tool_calls=[{"name": call.name, "args": arguments, "id": call_id}],
            ),
            ToolMessage(content=tool_result, tool_call_id=call_id),
        ]

    async def stream(
        self,
        system_prompt: str,
        history: list[Turn],
        user_message: str,
    ) -> AsyncIterator[StreamToken | GenerationResult]:
        """First round: offer the profile tool alongside the conversation."""
        messages = self.build_prompt(system_prompt, history, user_message)
        async for item in self.stream_messages(messages, tools=[UPDATE_PROFILE_TOOL]):
            yield item

    async def stream_messages(
        self,
        messages: list[BaseMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamToken | GenerationResult]:
        """
        Stream tokens in arrival order, ending with the GenerationResult.

        Raises:
            GenerationError: If the completion service call fails
        """
        channel: asyncio.Queue = asyncio.Queue(maxsize=self.channel_size)
        producer = asyncio.create_task(self._produce(messages, tools, channel))

        try:
            while True:
                item = await channel.get()
                if isinstance(item, _ProducerFailure):
                    raise GenerationError(
                        f"Completion failed: {item.error}",
                        error_type_name=type(item.error).__name__,
                    ) from item.error
                yield item
                if isinstance(item, GenerationResult):
                    await producer
                    return
        finally:
            if not producer.done():
                producer.cancel()

    async def generate(
        self,
        system_prompt: str,
        history: list[Turn],
        user_message: str,
        on_token: Callable[[str], None] | None = None,
    ) -> GenerationResult:
        """
        Run one generation to completion.

        Args:
            system_prompt: Profile and summary context
            history: Paired turns, oldest first
            user_message: The new message
            on_token: Optional sink called synchronously for every token, in order

        Returns:
            The assembled result; tokens were all delivered before it returns
        """
        async for item in self.stream(system_prompt, history, user_message):
            if isinstance(item, StreamToken):
                if on_token is not None:
                    on_token(item.text)
            else:
                return item
        raise GenerationError("Completion stream ended without a result")

    async def _produce(
        self,
        messages: list[BaseMessage],
        tools: list[dict[str, Any]] | None,
        channel: asyncio.Queue,
    ) -> None:
        """Pull chunks from the completion service into the channel."""
        text_parts: list[str] = []
        tool_parts: dict[int, dict[str, Any]] = {}

        try:
            async for chunk in self.llm.astream(messages, tools=tools):
                text = _chunk_text(chunk)
                if text:
                    text_parts.append(text)
                    await channel.put(StreamToken(text))

                for tool_chunk in getattr(chunk, "tool_call_chunks", None) or []:
                    index = tool_chunk.get("index")
                    part = tool_parts.setdefault(
                        index if index is not None else 0,
                        {"name": "", "args": "", "id": None},
                    )
                    part["name"] += tool_chunk.get("name") or ""
                    part["args"] += tool_chunk.get("args") or ""
                    if tool_chunk.get("id"):
                        part["id"] = tool_chunk["id"]

            result = GenerationResult(
                text="".join(text_parts),
                tool_calls=tuple(
                    ToolInvocation(
                        name=part["name"], arguments=part["args"], call_id=part["id"]
                    )
                    for _, part in sorted(tool_parts.items())
                ),
            )
            logger.info(
                "Generation assembled",
                reply_chars=len(result.text),
                tool_calls=[call.name for call in result.tool_calls],
            )
            await channel.put(result)

        except Exception as e:
            logger.error(
                "Completion stream failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            await channel.put(_ProducerFailure(e))
