"""
Dependencies for advisor API endpoints.
"""

from fastapi import Request

from ...agent.chat_orchestrator import ChatOrchestrator
from ...agent.session_manager import AdvisorSessionManager
from ...core.exceptions import NotFoundError
from ...services.conversation_store import PersistenceGateway


def get_session_manager(request: Request) -> AdvisorSessionManager:
    """Get the advisor session registry from app state."""
    session_manager: AdvisorSessionManager = request.app.state.session_manager
    return session_manager


def get_conversation_store(request: Request) -> PersistenceGateway:
    """Get the conversation store gateway from app state."""
    gateway: PersistenceGateway = request.app.state.conversation_store
    return gateway


def require_orchestrator(
    session_manager: AdvisorSessionManager, session_id: str
) -> ChatOrchestrator:
    """
    Look up a live session.

    Raises:
        NotFoundError: If the session does not exist or has expired
    """
    orchestrator = session_manager.get_session(session_id)
    if orchestrator is None:
        raise NotFoundError("Advisor session not found", session_id=session_id)
    return orchestrator
