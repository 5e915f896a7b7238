"""
Pydantic models for identities, advisory profiles and stored conversation documents.
"""

from .conversation import StoredSummary, StoredTurn
from .identity import Identity
from .profile import (
    AVAILABLE_SECTORS,
    INVESTMENT_GOALS_OPTIONS,
    RISK_TOLERANCE_OPTIONS,
    AdvisoryProfile,
    RiskTolerance,
    merge_sectors,
)

__all__ = [
    "AdvisoryProfile",
    "RiskTolerance",
    "merge_sectors",
    "RISK_TOLERANCE_OPTIONS",
    "INVESTMENT_GOALS_OPTIONS",
    "AVAILABLE_SECTORS",
    "Identity",
    "StoredTurn",
    "StoredSummary",
]
