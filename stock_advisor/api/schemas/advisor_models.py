"""
Request/Response models for advisor API endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ...agent.state import Turn
from ...models.profile import RiskTolerance

# ===== Request Models =====


class CreateSessionRequest(BaseModel):
    """Optional id of an earlier session whose bound identity should be restored."""

    session_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_-]+$",
    )


class LoginRequest(BaseModel):
    """Bind an authenticated user to an advisor session."""

    user_id: str = Field(..., min_length=1, max_length=200)


class MessageRequest(BaseModel):
    """Message from the user."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=10000,
        description="User message sent to the advisor",
    )


class ProfileSetupRequest(BaseModel):
    """Full advisory profile chosen during explicit setup."""

    risk_tolerance: RiskTolerance
    investment_goals: str = Field(..., min_length=1, max_length=500)
    preferred_sectors: list[str] = Field(default_factory=list)


# ===== Response Models =====


class TurnResponse(BaseModel):
    """One buffered turn."""

    role: str
    content: str
    timestamp: datetime

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnResponse":
        return cls(role=turn.role.value, content=turn.content, timestamp=turn.timestamp)


class SessionResponse(BaseModel):
    """State of an advisor session after creation or an identity change."""

    session_id: str
    user_id: str
    greeting: str | None = None
    history: list[TurnResponse] = Field(default_factory=list)


class HistoryResponse(BaseModel):
    session_id: str
    user_id: str
    running_summary: str | None = None
    turns: list[TurnResponse]


class EndConversationResponse(BaseModel):
    summary: str | None = None


class ProfileOptionsResponse(BaseModel):
    """Catalogs offered by the profile setup form."""

    risk_tolerance: dict[str, str]
    investment_goals: dict[str, str]
    sectors: dict[str, str]
