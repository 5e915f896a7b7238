"""
Unit tests for the conversation store gateways.

The HTTP gateway runs against httpx.MockTransport; the in-memory gateway is
exercised directly.
"""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from stock_advisor.agent.state import TurnRole
from stock_advisor.core.exceptions import PersistenceUnavailableError
from stock_advisor.models.profile import AdvisoryProfile
from stock_advisor.services.conversation_store import (
    HttpConversationStore,
    InMemoryConversationStore,
)

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def make_store(handler) -> HttpConversationStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpConversationStore("http://store.test/", client=client)


# ===== HTTP Gateway Tests =====


class TestHttpConversationStore:
    """Test the REST contract"""

    @pytest.mark.asyncio
    async def test_append_turn_posts_document(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "messageId": "m1"})

        store = make_store(handler)
        message_id = await store.append_turn(
            "alice", TurnRole.USER, "Hello", BASE_TIME, sequence=3
        )

        assert message_id == "m1"
        assert captured["method"] == "POST"
        assert captured["path"] == "/api/conversations"
        assert captured["body"] == {
            "userId": "alice",
            "message": "Hello",
            "sender": "user",
            "timestamp": BASE_TIME.isoformat(),
            "sequence": 3,
        }

    @pytest.mark.asyncio
    async def test_list_turns_sorted_and_malformed_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/conversations/alice"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "messages": [
                        {
                            "userId": "alice",
                            "message": "second",
                            "sender": "bot",
                            "timestamp": "2025-03-01T12:05:00Z",
                        },
                        {"userId": "alice", "message": "no timestamp", "sender": "user"},
                        {
                            "userId": "alice",
                            "message": "first",
                            "sender": "user",
                            "timestamp": "2025-03-01T12:00:00",
                            "_id": "abc",
                        },
                    ],
                },
            )

        turns = await make_store(handler).list_turns("alice")

        assert [turn.message for turn in turns] == ["first", "second"]
        assert turns[0].timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_user_id_is_path_quoted(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.raw_path.decode())
            return httpx.Response(200, json={"success": True, "messages": []})

        await make_store(handler).list_turns("a/b c")

        assert paths == ["/api/conversations/a%2Fb%20c"]

    @pytest.mark.asyncio
    async def test_latest_summary_404_is_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"success": False, "error": "none"})

        assert await make_store(handler).latest_summary("alice") is None

    @pytest.mark.asyncio
    async def test_latest_summary_text(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/conversations/alice/summary"
            return httpx.Response(200, json={"success": True, "summary": "Digest"})

        assert await make_store(handler).latest_summary("alice") == "Digest"

    @pytest.mark.asyncio
    async def test_append_summary_body(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "summaryId": "s1"})

        summary_id = await make_store(handler).append_summary("alice", "Digest", BASE_TIME)

        assert summary_id == "s1"
        assert bodies == [{"summary": "Digest", "timestamp": BASE_TIME.isoformat()}]

    @pytest.mark.asyncio
    async def test_profile_round_trip(self):
        saved = {}

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/profiles/alice"
            if request.method == "PUT":
                saved["profile"] = json.loads(request.content)
                return httpx.Response(200, json={"success": True})
            if "profile" not in saved:
                return httpx.Response(404, json={"success": False})
            return httpx.Response(200, json={"success": True, "profile": saved["profile"]})

        store = make_store(handler)
        assert await store.read_profile("alice") is None

        profile = AdvisoryProfile(user_id="alice", risk_tolerance="high")
        await store.write_profile("alice", profile)

        assert saved["profile"]["riskTolerance"] == "high"
        assert await store.read_profile("alice") == profile

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"success": False}),
            httpx.Response(200, text="<html>oops</html>"),
            httpx.Response(200, json={"success": False, "error": "write failed"}),
        ],
    )
    async def test_failures_raise_persistence_unavailable(self, response):
        store = make_store(lambda request: response)

        with pytest.raises(PersistenceUnavailableError) as exc_info:
            await store.append_turn("alice", TurnRole.USER, "Hi", BASE_TIME)

        assert exc_info.value.context["service"] == "conversation_store"
        assert exc_info.value.context["operation"] == "append_turn"

    @pytest.mark.asyncio
    async def test_transport_error_raises_persistence_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(PersistenceUnavailableError):
            await make_store(handler).list_turns("alice")

    @pytest.mark.asyncio
    async def test_probe(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/api/test-mongodb"
            return httpx.Response(200, json={"success": True, "message": "Connected"})

        assert (await make_store(handler).probe())["message"] == "Connected"

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        )
        store = HttpConversationStore("http://store.test", client=client)

        await store.close()

        assert not client.is_closed
        await client.aclose()


# ===== In-Memory Gateway Tests =====


class TestInMemoryConversationStore:
    """Test the process-local gateway"""

    @pytest.mark.asyncio
    async def test_latest_summary_is_max_created_at(self):
        store = InMemoryConversationStore()
        await store.append_summary("alice", "middle", BASE_TIME)
        await store.append_summary("alice", "newest", BASE_TIME + timedelta(days=1))
        await store.append_summary("alice", "oldest", BASE_TIME - timedelta(days=1))

        assert await store.latest_summary("alice") == "newest"
        assert await store.latest_summary("bob") is None

    @pytest.mark.asyncio
    async def test_turns_listed_ascending(self):
        store = InMemoryConversationStore()
        await store.append_turn("alice", TurnRole.ASSISTANT, "b", BASE_TIME + timedelta(seconds=1))
        await store.append_turn("alice", TurnRole.USER, "a", BASE_TIME)

        turns = await store.list_turns("alice")

        assert [turn.message for turn in turns] == ["a", "b"]
        assert turns[0].is_user and turns[1].is_assistant

    @pytest.mark.asyncio
    async def test_profile_copies(self):
        store = InMemoryConversationStore()
        profile = AdvisoryProfile.default_for("alice")
        await store.write_profile("alice", profile)

        loaded = await store.read_profile("alice")
        loaded.preferred_sectors.append("Energy")

        assert (await store.read_profile("alice")).preferred_sectors == profile.preferred_sectors
