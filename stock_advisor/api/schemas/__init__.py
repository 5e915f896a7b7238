"""API request/response schemas."""

from .advisor_models import (
    EndConversationResponse,
    HistoryResponse,
    LoginRequest,
    MessageRequest,
    ProfileOptionsResponse,
    ProfileSetupRequest,
    SessionResponse,
    TurnResponse,
)

__all__ = [
    "EndConversationResponse",
    "HistoryResponse",
    "LoginRequest",
    "MessageRequest",
    "ProfileOptionsResponse",
    "ProfileSetupRequest",
    "SessionResponse",
    "TurnResponse",
]
