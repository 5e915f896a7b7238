"""
In-memory registry of advisor sessions with TTL-based cleanup.

Each client session owns one ChatOrchestrator. The registry lives on the
application state; there is no process-wide instance.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from .chat_orchestrator import ChatOrchestrator
from .state import utcnow

logger = structlog.get_logger()

OrchestratorFactory = Callable[[str], ChatOrchestrator]


class AdvisorSessionManager:
    """
    Session store with automatic TTL cleanup.

    Safe for a single worker process. The cleanup loop flushes pending
    writes of expired sessions before dropping them.
    """

    def __init__(
        self,
        factory: OrchestratorFactory,
        ttl_minutes: int = 30,
        cleanup_interval_seconds: int = 60,
    ):
        """
        Initialize session manager.

        Args:
            factory: Builds the orchestrator for a new session id
            ttl_minutes: Session expiration time in minutes
            cleanup_interval_seconds: How often to run cleanup task
        """
        self._factory = factory
        self._sessions: dict[str, ChatOrchestrator] = {}
        self._access_times: dict[str, datetime] = {}
        self._ttl = timedelta(minutes=ttl_minutes)
        self._cleanup_interval = cleanup_interval_seconds
        self._cleanup_task: asyncio.Task | None = None
        self._closing: set[asyncio.Task] = set()

        logger.info(
            "AdvisorSessionManager initialized",
            ttl_minutes=ttl_minutes,
            cleanup_interval=cleanup_interval_seconds,
        )

    async def start(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Session cleanup task started")

    async def stop(self) -> None:
        """Stop background cleanup task and flush every session."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Session cleanup task stopped")

        for session_id in list(self._sessions):
            await self.delete_session(session_id)

        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    async def create_session(
        self, session_id: str | None = None
    ) -> tuple[str, ChatOrchestrator]:
        """
        Create and initialize an advisor session.

        Args:
            session_id: Id a returning client presents to restore the identity
                bound under it; a fresh id is generated when omitted

        Returns:
            (session_id, orchestrator) with the identity already restored
        """
        session_id = session_id or f"adv_{uuid.uuid4().hex[:16]}"
        return session_id, await self.open_session(session_id)

    async def open_session(self, session_id: str) -> ChatOrchestrator:
        """Return the live orchestrator for session_id, creating it if needed."""
        orchestrator = self.get_session(session_id)
        if orchestrator is not None:
            return orchestrator

        orchestrator = self._factory(session_id)
        await orchestrator.initialize()

        self._sessions[session_id] = orchestrator
        self._access_times[session_id] = utcnow()

        logger.info(
            "Session created", session_id=session_id, user_id=orchestrator.user_id
        )
        return orchestrator

    def get_session(self, session_id: str) -> ChatOrchestrator | None:
        """
        Retrieve session by ID, updating access time.

        Returns:
            ChatOrchestrator if found and not expired, None otherwise
        """
        if session_id not in self._sessions:
            logger.debug("Session not found", session_id=session_id)
            return None

        if self._is_expired(session_id):
            logger.info("Session expired", session_id=session_id)
            expired = self._pop_session(session_id)
            if expired is not None:
                self._schedule_close(session_id, expired)
            return None

        self._access_times[session_id] = utcnow()
        return self._sessions[session_id]

    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session after flushing its pending writes.

        Returns:
            True if deleted, False if not found
        """
        orchestrator = self._pop_session(session_id)
        if orchestrator is None:
            return False
        await orchestrator.close()
        logger.debug("Session deleted", session_id=session_id)
        return True

    def get_session_count(self) -> int:
        """Get current number of active sessions."""
        return len(self._sessions)

    def _is_expired(self, session_id: str) -> bool:
        last_access = self._access_times.get(session_id)
        if last_access is None:
            return True
        return utcnow() > last_access + self._ttl

    def _pop_session(self, session_id: str) -> ChatOrchestrator | None:
        self._access_times.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def _schedule_close(self, session_id: str, orchestrator: ChatOrchestrator) -> None:
        """Flush an expired session in the background; stop() waits for it."""
        task = asyncio.create_task(orchestrator.close())
        self._closing.add(task)

        def on_done(done: asyncio.Task) -> None:
            self._closing.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.error(
                    "Failed to close expired session",
                    session_id=session_id,
                    error=str(done.exception()),
                )

        task.add_done_callback(on_done)

    async def _cleanup_loop(self) -> None:
        """Background task to clean up expired sessions."""
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                await self._cleanup_expired_sessions()
            except asyncio.CancelledError:
                logger.info("Cleanup loop cancelled")
                break
            except Exception as e:
                logger.error("Error in cleanup loop", error=str(e))

    async def _cleanup_expired_sessions(self) -> None:
        expired_sessions = [
            session_id for session_id in list(self._sessions) if self._is_expired(session_id)
        ]

        for session_id in expired_sessions:
            await self.delete_session(session_id)

        if expired_sessions:
            logger.info(
                "Cleanup completed",
                expired_count=len(expired_sessions),
                active_count=len(self._sessions),
            )
