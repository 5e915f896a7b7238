"""
Shared fakes for advisor tests.

ScriptedLLM stands in for DashScopeClient: each call to astream() plays the
next scripted round of real langchain_core message chunks.
"""

import asyncio
import json
from datetime import datetime, timedelta

import pytest
from langchain_core.messages import AIMessageChunk

from stock_advisor.agent.chat_orchestrator import ChatOrchestrator
from stock_advisor.agent.response_assembler import StreamingResponseAssembler
from stock_advisor.agent.state import TurnRole
from stock_advisor.core.config import Settings
from stock_advisor.core.exceptions import PersistenceUnavailableError
from stock_advisor.database.kv_store import InMemoryKeyValueStore
from stock_advisor.models.profile import AdvisoryProfile
from stock_advisor.services.conversation_store import (
    InMemoryConversationStore,
    PersistenceGateway,
)
from stock_advisor.services.identity_resolver import SessionIdentityResolver
from stock_advisor.services.summary_generator import SummaryGenerator


def text_round(*parts: str) -> list[AIMessageChunk]:
    """A streamed reply made of the given text deltas."""
    return [AIMessageChunk(content=part) for part in parts]


def tool_round(
    arguments: dict | str,
    text: str = "",
    name: str = "update_profile",
    call_id: str = "call_1",
) -> list[AIMessageChunk]:
    """A streamed reply carrying one tool call, its JSON split over two chunks."""
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    middle = len(raw) // 2
    chunks = [AIMessageChunk(content=text)] if text else []
    chunks.append(
        AIMessageChunk(
            content="",
            tool_call_chunks=[
                {"name": name, "args": raw[:middle], "id": call_id, "index": 0}
            ],
        )
    )
    chunks.append(
        AIMessageChunk(
            content="",
            tool_call_chunks=[{"name": None, "args": raw[middle:], "id": None, "index": 0}],
        )
    )
    return chunks


class ScriptedLLM:
    """Fake completion client replaying scripted rounds."""

    def __init__(self, rounds=None, summary: str | Exception = "Condensed summary."):
        self.rounds = list(rounds or [])
        self.summary = summary
        self.stream_calls: list[tuple[list, list | None]] = []
        self.invoke_calls: list[list] = []
        self.gate: asyncio.Event | None = None

    async def astream(self, messages, tools=None):
        self.stream_calls.append((messages, tools))
        script = self.rounds.pop(0) if self.rounds else text_round("OK")
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(script, Exception):
            raise script
        for chunk in script:
            await asyncio.sleep(0)
            yield chunk

    async def ainvoke(self, messages) -> str:
        self.invoke_calls.append(messages)
        if isinstance(self.summary, Exception):
            raise self.summary
        return self.summary


class UnavailableStore(PersistenceGateway):
    """Gateway whose every call fails as if the network refused it."""

    def __init__(self) -> None:
        self.attempts: list[str] = []

    def _fail(self, operation: str):
        self.attempts.append(operation)
        raise PersistenceUnavailableError(
            "Connection refused", operation=operation
        )

    async def append_turn(self, user_id, role, content, timestamp, sequence=None):
        self._fail("append_turn")

    async def list_turns(self, user_id):
        self._fail("list_turns")

    async def append_summary(self, user_id, text, timestamp):
        self._fail("append_summary")

    async def latest_summary(self, user_id):
        self._fail("latest_summary")

    async def read_profile(self, user_id) -> AdvisoryProfile | None:
        self._fail("read_profile")

    async def write_profile(self, user_id, profile):
        self._fail("write_profile")

    async def probe(self):
        self._fail("probe")


class FrozenClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings():
    """Settings for tests, independent of any env files."""
    return Settings(
        environment="test",
        dashscope_api_key="test-key",
        conversation_store_url="",
        redis_url="",
        memory_token_budget=1000,
        tail_messages_keep=4,
        default_user_id="user1",
    )


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def identity_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def make_orchestrator(settings, identity_store):
    """Factory building an orchestrator around the given fakes."""

    def _make(
        llm: ScriptedLLM,
        gateway: PersistenceGateway,
        summary_llm: ScriptedLLM | None = None,
        client_id: str = "client-1",
        clock=None,
        orchestrator_settings: Settings | None = None,
    ) -> ChatOrchestrator:
        resolver_kwargs = {"clock": clock} if clock is not None else {}
        return ChatOrchestrator(
            settings=orchestrator_settings or settings,
            assembler=StreamingResponseAssembler(llm, channel_size=4),
            summary_generator=SummaryGenerator(summary_llm or llm, gateway),
            gateway=gateway,
            identity_resolver=SessionIdentityResolver(
                identity_store, client_id, **resolver_kwargs
            ),
        )

    return _make


def roles(turns) -> list[TurnRole]:
    return [turn.role for turn in turns]
