"""
Conversation state for a single bound identity.

A Turn is a closed tagged union over TurnRole: user, assistant, or the
synthetic system turn produced by compaction.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models.profile import AdvisoryProfile
    from ..services.turn_buffer import TurnBuffer


def utcnow() -> datetime:
    return datetime.now(UTC)


class TurnRole(str, Enum):
    """Who produced a turn."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"  # Compaction summary, never produced by a person or the model


class SessionPhase(str, Enum):
    """Lifecycle of a ChatOrchestrator for its bound identity."""

    UNINITIALIZED = "uninitialized"
    RESTORING = "restoring"
    READY = "ready"
    GENERATING = "generating"


@dataclass(frozen=True)
class Turn:
    """Single immutable message in a conversation."""

    role: TurnRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def is_summary(self) -> bool:
        return self.role is TurnRole.SYSTEM

    def serialize(self) -> str:
        """Render as "<role>: <content>" for summaries and token estimates."""
        return f"{self.role.value}: {self.content}"


@dataclass
class ConversationState:
    """
    Everything remembered about one identity's conversation.

    Owned by exactly one ChatOrchestrator. Switching identity replaces the
    whole object rather than mutating it, so an in-flight exchange can detect
    that its state is no longer current.
    """

    user_id: str
    turns: "TurnBuffer"
    profile: "AdvisoryProfile"
    session_id: str = field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:12]}")
    running_summary: str | None = None
    next_sequence: int = 0  # Write order for persisted turns
    unsummarized_exchanges: int = 0  # Recorded since restore or the last end summary
    created_at: datetime = field(default_factory=utcnow)

    @property
    def token_budget(self) -> int:
        return self.turns.token_budget

    def take_sequence(self) -> int:
        """Reserve the next persistence sequence number."""
        sequence = self.next_sequence
        self.next_sequence += 1
        return sequence
