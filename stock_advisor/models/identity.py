"""
Identity record bound to a client session.
"""

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """Which user a conversation belongs to, and when they last authenticated."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(..., alias="userId")
    last_authenticated_at: datetime = Field(..., alias="lastAuthenticatedAt")

    def is_fresh(self, now: datetime, window: timedelta) -> bool:
        """True while `now` is within `window` of the last authentication."""
        return now - self.last_authenticated_at <= window
