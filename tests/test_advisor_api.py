"""
Unit tests for advisor API endpoints.

Runs the real routers and session registry against scripted completions and
in-memory stores.
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import ScriptedLLM, text_round, tool_round
from stock_advisor.agent.session_manager import AdvisorSessionManager
from stock_advisor.agent.state import SessionPhase
from stock_advisor.api.advisor import router as advisor_router
from stock_advisor.database.kv_store import InMemoryKeyValueStore
from stock_advisor.main import create_orchestrator_factory, register_exception_handlers
from stock_advisor.services.conversation_store import InMemoryConversationStore

# ===== Fixtures =====


@pytest.fixture
def chat_llm():
    return ScriptedLLM(summary="Talked about ETFs.")


@pytest.fixture
def conversation_store():
    return InMemoryConversationStore()


@pytest.fixture
def session_manager(settings, chat_llm, conversation_store):
    factory = create_orchestrator_factory(
        settings, chat_llm, chat_llm, conversation_store, InMemoryKeyValueStore()
    )
    return AdvisorSessionManager(factory)


@pytest.fixture
def client(session_manager, conversation_store):
    """Test client with app state wired to in-memory services."""
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(advisor_router)
    app.state.session_manager = session_manager
    app.state.conversation_store = conversation_store

    with TestClient(app) as test_client:
        yield test_client


def create_session(client) -> dict:
    response = client.post("/api/advisor/sessions")
    assert response.status_code == 200
    return response.json()


def parse_sse(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


# ===== Session Lifecycle Tests =====


class TestSessions:
    """Test session creation, login and logout"""

    def test_create_session_greets_default_user(self, client):
        data = create_session(client)

        assert data["session_id"].startswith("adv_")
        assert data["user_id"] == "user1"
        assert data["greeting"].startswith("Hello!")
        assert [turn["role"] for turn in data["history"]] == ["assistant"]

    def test_returning_client_restores_identity(self, client):
        session_id = create_session(client)["session_id"]
        client.post(f"/api/advisor/sessions/{session_id}/login", json={"user_id": "alice"})
        client.delete(f"/api/advisor/sessions/{session_id}")

        response = client.post("/api/advisor/sessions", json={"session_id": session_id})

        assert response.status_code == 200
        assert response.json()["session_id"] == session_id
        assert response.json()["user_id"] == "alice"

    def test_live_session_id_reuses_session(self, client, session_manager):
        session_id = create_session(client)["session_id"]
        client.post(f"/api/advisor/sessions/{session_id}/login", json={"user_id": "alice"})

        data = client.post("/api/advisor/sessions", json={"session_id": session_id}).json()

        assert data["user_id"] == "alice"
        assert session_manager.get_session_count() == 1

    def test_unknown_session_id_starts_default_user(self, client):
        data = client.post("/api/advisor/sessions", json={"session_id": "adv_new"}).json()

        assert data["session_id"] == "adv_new"
        assert data["user_id"] == "user1"

    def test_malformed_session_id_rejected(self, client):
        response = client.post("/api/advisor/sessions", json={"session_id": "not valid!"})

        assert response.status_code == 422

    def test_unknown_session_is_404(self, client):
        response = client.get("/api/advisor/sessions/missing/history")

        assert response.status_code == 404
        assert response.json()["error_type"] == "not_found_error"

    def test_login_switches_user(self, client):
        session_id = create_session(client)["session_id"]

        response = client.post(
            f"/api/advisor/sessions/{session_id}/login", json={"user_id": "alice"}
        )

        assert response.status_code == 200
        assert response.json()["user_id"] == "alice"
        assert response.json()["history"] == []

    def test_login_requires_user_id(self, client):
        session_id = create_session(client)["session_id"]

        response = client.post(f"/api/advisor/sessions/{session_id}/login", json={})

        assert response.status_code == 422

    def test_logout_returns_to_default_user(self, client):
        session_id = create_session(client)["session_id"]
        client.post(f"/api/advisor/sessions/{session_id}/login", json={"user_id": "alice"})

        response = client.post(f"/api/advisor/sessions/{session_id}/logout")

        assert response.status_code == 200
        assert response.json()["user_id"] == "user1"

    def test_delete_session(self, client, session_manager):
        session_id = create_session(client)["session_id"]

        assert client.delete(f"/api/advisor/sessions/{session_id}").status_code == 200
        assert session_manager.get_session_count() == 0
        assert client.delete(f"/api/advisor/sessions/{session_id}").status_code == 404


# ===== Message Stream Tests =====


class TestMessages:
    """Test the SSE message stream"""

    def test_stream_chunks_then_done(self, client, chat_llm):
        chat_llm.rounds.append(text_round("Hello", " Alice"))
        session_id = create_session(client)["session_id"]

        response = client.post(
            f"/api/advisor/sessions/{session_id}/messages", json={"message": "Hi"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)
        assert events == [
            {"type": "chunk", "content": "Hello"},
            {"type": "chunk", "content": " Alice"},
            {
                "type": "done",
                "message": "Hello Alice",
                "profile_updated": False,
                "failed": False,
            },
        ]

        history = client.get(f"/api/advisor/sessions/{session_id}/history").json()
        assert [turn["content"] for turn in history["turns"]][1:] == ["Hi", "Hello Alice"]

    def test_profile_update_reported(self, client, chat_llm):
        chat_llm.rounds.extend(
            [tool_round({"preferred_sectors": ["Energy"]}), text_round("Added Energy.")]
        )
        session_id = create_session(client)["session_id"]

        response = client.post(
            f"/api/advisor/sessions/{session_id}/messages",
            json={"message": "I like oil companies"},
        )

        done = parse_sse(response.text)[-1]
        assert done["profile_updated"] is True
        assert done["message"] == "Added Energy."

        profile = client.get(f"/api/advisor/sessions/{session_id}/profile").json()
        assert "Energy" in profile["preferredSectors"]

    def test_generation_failure_is_apology(self, client, chat_llm):
        chat_llm.rounds.append(RuntimeError("down"))
        session_id = create_session(client)["session_id"]

        response = client.post(
            f"/api/advisor/sessions/{session_id}/messages", json={"message": "Hi"}
        )

        done = parse_sse(response.text)[-1]
        assert response.status_code == 200
        assert done["failed"] is True
        assert done["message"].startswith("Sorry")

    def test_concurrent_send_is_409(self, client, session_manager):
        session_id = create_session(client)["session_id"]
        session_manager.get_session(session_id).phase = SessionPhase.GENERATING

        response = client.post(
            f"/api/advisor/sessions/{session_id}/messages", json={"message": "Hi"}
        )

        assert response.status_code == 409
        assert response.json()["error_type"] == "generation_in_progress"

    def test_empty_message_rejected(self, client):
        session_id = create_session(client)["session_id"]

        response = client.post(
            f"/api/advisor/sessions/{session_id}/messages", json={"message": ""}
        )

        assert response.status_code == 422


# ===== Conversation End and Profile Tests =====


class TestEndAndProfile:
    """Test summaries and profile endpoints"""

    def test_end_conversation_returns_summary(self, client, chat_llm, conversation_store):
        chat_llm.rounds.append(text_round("ETFs spread risk."))
        session_id = create_session(client)["session_id"]
        client.post(f"/api/advisor/sessions/{session_id}/messages", json={"message": "ETFs?"})

        response = client.post(f"/api/advisor/sessions/{session_id}/end")

        assert response.status_code == 200
        assert response.json() == {"summary": "Talked about ETFs."}

    def test_put_profile(self, client):
        session_id = create_session(client)["session_id"]

        response = client.put(
            f"/api/advisor/sessions/{session_id}/profile",
            json={
                "risk_tolerance": "low",
                "investment_goals": "Retirement Planning",
                "preferred_sectors": ["Utilities", "Utilities"],
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "userId": "user1",
            "riskTolerance": "low",
            "investmentGoals": "Retirement Planning",
            "preferredSectors": ["Utilities"],
        }

    def test_put_profile_rejects_unknown_risk(self, client):
        session_id = create_session(client)["session_id"]

        response = client.put(
            f"/api/advisor/sessions/{session_id}/profile",
            json={"risk_tolerance": "yolo", "investment_goals": "x"},
        )

        assert response.status_code == 422

    def test_profile_options(self, client):
        response = client.get("/api/advisor/profile-options")

        data = response.json()
        assert data["risk_tolerance"] == {"1": "low", "2": "medium", "3": "high"}
        assert data["sectors"]["10"] == "Utilities"
        assert len(data["investment_goals"]) == 5
