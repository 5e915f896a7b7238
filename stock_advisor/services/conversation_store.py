"""
Persistence gateway for conversation turns, summaries and advisory profiles.

The document store is an external HTTP service:
- POST /api/conversations                      append turn
- GET  /api/conversations/{userId}             list turns (ascending timestamp)
- POST /api/conversations/{userId}/summary     append summary
- GET  /api/conversations/{userId}/summary     latest summary (404 if none)
- GET  /api/profiles/{userId}                  read profile (404 if none)
- PUT  /api/profiles/{userId}                  write profile
- POST /api/test-mongodb                       connectivity probe

Every failure surfaces as PersistenceUnavailableError. Callers treat the
gateway as best-effort; the in-memory conversation is authoritative.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from ..agent.state import TurnRole
from ..core.exceptions import PersistenceUnavailableError
from ..models.conversation import StoredSummary, StoredTurn
from ..models.profile import AdvisoryProfile

logger = structlog.get_logger()


class PersistenceGateway(ABC):
    """Durable storage for conversations, consumed by the orchestrator."""

    @abstractmethod
    async def append_turn(
        self,
        user_id: str,
        role: TurnRole,
        content: str,
        timestamp: datetime,
        sequence: int | None = None,
    ) -> str | None:
        """Store one turn. Returns the store's message id if it reports one."""

    @abstractmethod
    async def list_turns(self, user_id: str) -> list[StoredTurn]:
        """All stored turns for a user, ascending by timestamp."""

    @abstractmethod
    async def append_summary(
        self, user_id: str, text: str, timestamp: datetime
    ) -> str | None:
        """Append a write-once summary."""

    @abstractmethod
    async def latest_summary(self, user_id: str) -> str | None:
        """Text of the summary with the greatest timestamp, or None."""

    @abstractmethod
    async def read_profile(self, user_id: str) -> AdvisoryProfile | None:
        """Stored profile, or None on first contact."""

    @abstractmethod
    async def write_profile(self, user_id: str, profile: AdvisoryProfile) -> None:
        """Overwrite the stored profile (last write wins)."""

    @abstractmethod
    async def probe(self) -> dict[str, Any]:
        """Connectivity check against the backing database."""

    async def close(self) -> None:
        """Release resources held by the gateway."""


class HttpConversationStore(PersistenceGateway):
    """Gateway backed by the conversation store's REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the HTTP gateway.

        Args:
            base_url: Store root URL (e.g. http://localhost:3001)
            timeout: Per-request timeout in seconds
            client: Optional httpx AsyncClient for connection pooling
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

        logger.info("Conversation store gateway initialized", base_url=self.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _user_path(user_id: str) -> str:
        return quote(user_id, safe="")

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        """
        Send one request and return its JSON body.

        Returns None for a 404 when allow_not_found is set.

        Raises:
            PersistenceUnavailableError: On transport errors, non-2xx status,
                non-JSON bodies or an explicit {"success": false}
        """
        client = await self._get_client()
        url = f"{self.base_url}{path}"

        try:
            response = await client.request(method, url, json=json)
        except httpx.HTTPError as e:
            raise PersistenceUnavailableError(
                f"Conversation store unreachable: {e}",
                operation=operation,
                error_type_name=type(e).__name__,
            ) from e

        if allow_not_found and response.status_code == 404:
            return None

        try:
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise PersistenceUnavailableError(
                f"Conversation store returned {response.status_code}",
                operation=operation,
                status_code=response.status_code,
            ) from e
        except ValueError as e:
            raise PersistenceUnavailableError(
                "Conversation store returned a non-JSON body",
                operation=operation,
            ) from e

        if not isinstance(body, dict) or body.get("success") is False:
            raise PersistenceUnavailableError(
                "Conversation store reported failure", operation=operation
            )
        return body

    async def append_turn(
        self,
        user_id: str,
        role: TurnRole,
        content: str,
        timestamp: datetime,
        sequence: int | None = None,
    ) -> str | None:
        stored = StoredTurn(
            user_id=user_id,
            message=content,
            sender=role.value,
            timestamp=timestamp,
            sequence=sequence,
        )
        body = await self._request(
            "POST", "/api/conversations", "append_turn", json=stored.to_document()
        )
        message_id = body.get("messageId") if body else None
        logger.debug("Turn persisted", user_id=user_id, role=role.value)
        return str(message_id) if message_id is not None else None

    async def list_turns(self, user_id: str) -> list[StoredTurn]:
        body = await self._request(
            "GET", f"/api/conversations/{self._user_path(user_id)}", "list_turns"
        )
        raw_messages = (body or {}).get("messages") or []

        turns: list[StoredTurn] = []
        for raw in raw_messages:
            try:
                turns.append(StoredTurn.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping malformed stored message",
                    user_id=user_id,
                    errors=e.error_count(),
                )

        turns.sort(key=lambda turn: turn.timestamp)
        logger.info("Stored turns loaded", user_id=user_id, count=len(turns))
        return turns

    async def append_summary(
        self, user_id: str, text: str, timestamp: datetime
    ) -> str | None:
        body = await self._request(
            "POST",
            f"/api/conversations/{self._user_path(user_id)}/summary",
            "append_summary",
            json={"summary": text, "timestamp": timestamp.isoformat()},
        )
        summary_id = body.get("summaryId") if body else None
        logger.info("Summary persisted", user_id=user_id, summary_chars=len(text))
        return str(summary_id) if summary_id is not None else None

    async def latest_summary(self, user_id: str) -> str | None:
        body = await self._request(
            "GET",
            f"/api/conversations/{self._user_path(user_id)}/summary",
            "latest_summary",
            allow_not_found=True,
        )
        if body is None:
            return None
        summary = body.get("summary")
        return summary if isinstance(summary, str) and summary else None

    async def read_profile(self, user_id: str) -> AdvisoryProfile | None:
        body = await self._request(
            "GET",
            f"/api/profiles/{self._user_path(user_id)}",
            "read_profile",
            allow_not_found=True,
        )
        if body is None or not body.get("profile"):
            return None
        try:
            return AdvisoryProfile.model_validate(body["profile"])
        except PydanticValidationError as e:
            raise PersistenceUnavailableError(
                "Stored profile is malformed",
                operation="read_profile",
                errors=e.error_count(),
            ) from e

    async def write_profile(self, user_id: str, profile: AdvisoryProfile) -> None:
        await self._request(
            "PUT",
            f"/api/profiles/{self._user_path(user_id)}",
            "write_profile",
            json=profile.to_document(),
        )
        logger.debug("Profile persisted", user_id=user_id)

    async def probe(self) -> dict[str, Any]:
        body = await self._request("POST", "/api/test-mongodb", "probe", json={})
        return body or {}


class InMemoryConversationStore(PersistenceGateway):
    """
    Process-local gateway.

    Used when no store URL is configured, and in tests. Nothing survives a
    restart.
    """

    def __init__(self) -> None:
        self._turns: dict[str, list[StoredTurn]] = {}
        self._summaries: dict[str, list[StoredSummary]] = {}
        self._profiles: dict[str, AdvisoryProfile] = {}

    async def append_turn(
        self,
        user_id: str,
        role: TurnRole,
        content: str,
        timestamp: datetime,
        sequence: int | None = None,
    ) -> str | None:
        self._turns.setdefault(user_id, []).append(
            StoredTurn(
                user_id=user_id,
                message=content,
                sender=role.value,
                timestamp=timestamp,
                sequence=sequence,
            )
        )
        return f"msg_{uuid.uuid4().hex[:12]}"

    async def list_turns(self, user_id: str) -> list[StoredTurn]:
        return sorted(self._turns.get(user_id, []), key=lambda turn: turn.timestamp)

    async def append_summary(
        self, user_id: str, text: str, timestamp: datetime
    ) -> str | None:
        self._summaries.setdefault(user_id, []).append(
            StoredSummary(user_id=user_id, text=text, created_at=timestamp)
        )
        return f"sum_{uuid.uuid4().hex[:12]}"

    async def latest_summary(self, user_id: str) -> str | None:
        summaries = self._summaries.get(user_id)
        if not summaries:
            return None
        return max(summaries, key=lambda summary: summary.created_at).text

    async def read_profile(self, user_id: str) -> AdvisoryProfile | None:
        profile = self._profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def write_profile(self, user_id: str, profile: AdvisoryProfile) -> None:
        self._profiles[user_id] = profile.model_copy(deep=True)

    async def probe(self) -> dict[str, Any]:
        return {"success": True, "message": "In-memory conversation store"}
