"""
Wire models for documents exchanged with the conversation store.

Field names follow the store's JSON contract (userId, message, sender, timestamp).
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

USER_SENDERS = frozenset({"user", "human"})
ASSISTANT_SENDERS = frozenset({"assistant", "bot", "ai"})


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class StoredTurn(BaseModel):
    """One persisted conversation message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(..., alias="userId")
    message: str = ""
    sender: str
    timestamp: datetime
    sequence: int | None = Field(
        default=None,
        description="Per-conversation write order, breaks timestamp ties on restore",
    )

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def is_user(self) -> bool:
        return self.sender.lower() in USER_SENDERS

    @property
    def is_assistant(self) -> bool:
        return self.sender.lower() in ASSISTANT_SENDERS

    def to_document(self) -> dict:
        document = {
            "userId": self.user_id,
            "message": self.message,
            "sender": self.sender,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.sequence is not None:
            document["sequence"] = self.sequence
        return document


class StoredSummary(BaseModel):
    """A write-once conversation digest. The latest one has the max created_at."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    text: str = Field(..., alias="summary")
    created_at: datetime = Field(..., alias="timestamp")

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)
