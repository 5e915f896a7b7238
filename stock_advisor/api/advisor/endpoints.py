"""
Advisor session endpoints.

A client creates a session once, then logs in/out, sends messages (streamed
back as SSE) and ends conversations against that session id.
"""

from collections.abc import AsyncGenerator, AsyncIterator

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ...agent.chat_orchestrator import ChatOrchestrator, ReplyCompleted
from ...agent.response_assembler import StreamToken
from ...agent.session_manager import AdvisorSessionManager
from ...core.exceptions import NotFoundError
from ...models.profile import (
    AVAILABLE_SECTORS,
    INVESTMENT_GOALS_OPTIONS,
    RISK_TOLERANCE_OPTIONS,
    AdvisoryProfile,
)
from ..dependencies.advisor_deps import get_session_manager, require_orchestrator
from ..schemas.advisor_models import (
    CreateSessionRequest,
    EndConversationResponse,
    HistoryResponse,
    LoginRequest,
    MessageRequest,
    ProfileOptionsResponse,
    ProfileSetupRequest,
    SessionResponse,
    TurnResponse,
)
from .helpers import create_chunk_event, create_done_event, create_error_event

logger = structlog.get_logger()

router = APIRouter()


def _session_response(
    session_id: str, orchestrator: ChatOrchestrator, greeting: str | None = None
) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        user_id=orchestrator.user_id or "",
        greeting=greeting,
        history=[TurnResponse.from_turn(turn) for turn in orchestrator.get_history()],
    )


# ===== Session Lifecycle =====


@router.post("/sessions", response_model=SessionResponse)
async def create_session(
    request: CreateSessionRequest | None = None,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> SessionResponse:
    """
    Create a session, restore its identity and greet.

    A returning client sends its previous `session_id`; the identity bound
    under it is restored while still fresh. Without one a new id is issued.

    **Response:**
    ```json
    {"session_id": "adv_...", "user_id": "user1", "greeting": "Hello! ...", "history": [...]}
    ```
    """
    requested_id = request.session_id if request else None
    session_id, orchestrator = await session_manager.create_session(requested_id)
    greeting = orchestrator.greet()
    return _session_response(session_id, orchestrator, greeting)


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> dict[str, bool]:
    """Drop a session after flushing its pending writes."""
    deleted = await session_manager.delete_session(session_id)
    if not deleted:
        raise NotFoundError("Advisor session not found", session_id=session_id)
    return {"success": True}


@router.post("/sessions/{session_id}/login", response_model=SessionResponse)
async def login(
    session_id: str,
    request: LoginRequest,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> SessionResponse:
    """Bind an authenticated user and restore their conversation."""
    orchestrator = require_orchestrator(session_manager, session_id)
    await orchestrator.handle_login(request.user_id)
    logger.info("Advisor login", session_id=session_id, user_id=request.user_id)
    return _session_response(session_id, orchestrator)


@router.post("/sessions/{session_id}/logout", response_model=SessionResponse)
async def logout(
    session_id: str,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> SessionResponse:
    """End the conversation, forget the identity and return to the default user."""
    orchestrator = require_orchestrator(session_manager, session_id)
    previous_user_id = orchestrator.user_id
    await orchestrator.handle_logout()
    logger.info(
        "Advisor logout", session_id=session_id, previous_user_id=previous_user_id
    )
    return _session_response(session_id, orchestrator)


@router.post("/sessions/{session_id}/end", response_model=EndConversationResponse)
async def end_conversation(
    session_id: str,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> EndConversationResponse:
    """Summarize the conversation and store the summary."""
    orchestrator = require_orchestrator(session_manager, session_id)
    summary = await orchestrator.end_conversation()
    return EndConversationResponse(summary=summary)


# ===== Conversation =====


@router.post("/sessions/{session_id}/messages")
async def send_message(
    session_id: str,
    request: MessageRequest,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> StreamingResponse:
    """
    Stream the advisor's reply as Server-Sent Events.

    Events:
    - `{"type": "chunk", "content": "..."}` per token
    - `{"type": "done", "message": "...", "profile_updated": false, "failed": false}`

    Returns 409 if a reply is already being generated for this session.
    """
    orchestrator = require_orchestrator(session_manager, session_id)
    stream = orchestrator.stream_message(request.message)

    # Advance to the first event here so a concurrent send fails with 409
    # before the response starts.
    first_event = await anext(stream)

    return StreamingResponse(
        _sse_events(session_id, first_event, stream),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _sse_events(
    session_id: str,
    first_event: StreamToken | ReplyCompleted,
    stream: AsyncIterator[StreamToken | ReplyCompleted],
) -> AsyncGenerator[str, None]:
    try:
        yield _format_event(first_event)
        async for event in stream:
            yield _format_event(event)
    except Exception as e:
        logger.error(
            "Advisor stream failed",
            session_id=session_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        yield create_error_event("Failed to generate reply", "internal_error")


def _format_event(event: StreamToken | ReplyCompleted) -> str:
    if isinstance(event, StreamToken):
        return create_chunk_event(event.text)
    return create_done_event(event)


@router.get("/sessions/{session_id}/history", response_model=HistoryResponse)
async def get_history(
    session_id: str,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> HistoryResponse:
    """Buffered turns, oldest first, plus the running summary."""
    orchestrator = require_orchestrator(session_manager, session_id)
    state = orchestrator.state
    return HistoryResponse(
        session_id=session_id,
        user_id=orchestrator.user_id or "",
        running_summary=state.running_summary if state else None,
        turns=[TurnResponse.from_turn(turn) for turn in orchestrator.get_history()],
    )


# ===== Profile =====


@router.get("/sessions/{session_id}/profile", response_model=AdvisoryProfile)
async def get_profile(
    session_id: str,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> AdvisoryProfile:
    orchestrator = require_orchestrator(session_manager, session_id)
    return orchestrator.get_profile()


@router.put("/sessions/{session_id}/profile", response_model=AdvisoryProfile)
async def setup_profile(
    session_id: str,
    request: ProfileSetupRequest,
    session_manager: AdvisorSessionManager = Depends(get_session_manager),
) -> AdvisoryProfile:
    """Replace the whole advisory profile."""
    orchestrator = require_orchestrator(session_manager, session_id)
    return orchestrator.setup_profile(
        request.risk_tolerance, request.investment_goals, request.preferred_sectors
    )


@router.get("/profile-options", response_model=ProfileOptionsResponse)
async def get_profile_options() -> ProfileOptionsResponse:
    """Option catalogs for the profile setup form."""
    return ProfileOptionsResponse(
        risk_tolerance=dict(RISK_TOLERANCE_OPTIONS),
        investment_goals=dict(INVESTMENT_GOALS_OPTIONS),
        sectors=dict(AVAILABLE_SECTORS),
    )
