"""
Advisory profile model and the option catalogs offered during profile setup.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

RiskTolerance = Literal["low", "medium", "high"]

RISK_TOLERANCE_OPTIONS: dict[str, RiskTolerance] = {
    "1": "low",
    "2": "medium",
    "3": "high",
}

INVESTMENT_GOALS_OPTIONS: dict[str, str] = {
    "1": "Conservative Income (Focus on stable, dividend-paying investments)",
    "2": "Balanced Growth (Mix of growth and income)",
    "3": "Aggressive Growth (Focus on capital appreciation)",
    "4": "Retirement Planning",
    "5": "Short-term Trading",
}

AVAILABLE_SECTORS: dict[str, str] = {
    "1": "Technology",
    "2": "Healthcare",
    "3": "Financial Services",
    "4": "Consumer Goods",
    "5": "Energy",
    "6": "Real Estate",
    "7": "Industrial",
    "8": "Communications",
    "9": "Materials",
    "10": "Utilities",
}

DEFAULT_RISK_TOLERANCE: RiskTolerance = "medium"
DEFAULT_INVESTMENT_GOALS = INVESTMENT_GOALS_OPTIONS["2"]
DEFAULT_PREFERRED_SECTORS = ["Technology", "Healthcare", "Financial Services"]


def merge_sectors(existing: list[str], additions: list[str]) -> list[str]:
    """Union two sector lists, keeping first-seen order and dropping duplicates."""
    merged: list[str] = []
    for sector in [*existing, *additions]:
        if sector not in merged:
            merged.append(sector)
    return merged


class AdvisoryProfile(BaseModel):
    """
    A user's advisory profile.

    Serialized with camelCase aliases to match the conversation store's
    document shape (userId, riskTolerance, investmentGoals, preferredSectors).
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    risk_tolerance: RiskTolerance = Field(
        DEFAULT_RISK_TOLERANCE, alias="riskTolerance"
    )
    investment_goals: str = Field(DEFAULT_INVESTMENT_GOALS, alias="investmentGoals")
    preferred_sectors: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PREFERRED_SECTORS),
        alias="preferredSectors",
        description="Accumulated sectors of interest, deduplicated, first-seen order",
    )

    @field_validator("preferred_sectors")
    @classmethod
    def dedupe_sectors(cls, value: list[str]) -> list[str]:
        return merge_sectors([], value)

    @classmethod
    def default_for(cls, user_id: str) -> "AdvisoryProfile":
        """Profile assigned on first contact with a user."""
        return cls(user_id=user_id)

    def to_document(self) -> dict:
        """Serialize with store field names."""
        return self.model_dump(by_alias=True)
