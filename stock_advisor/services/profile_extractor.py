"""
Applies update_profile tool calls from the completion service to a profile.
"""

from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..agent.tools import ToolInvocation
from ..core.exceptions import MalformedToolArgumentsError
from ..models.profile import AdvisoryProfile, RiskTolerance, merge_sectors

logger = structlog.get_logger()


class ProfileUpdateArguments(BaseModel):
    """Arguments of update_profile. Every field is optional."""

    model_config = ConfigDict(extra="ignore")

    risk_tolerance: RiskTolerance | None = None
    investment_goals: str | None = None
    preferred_sectors: list[str] | None = None

    @field_validator("risk_tolerance", mode="before")
    @classmethod
    def lowercase_risk(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("preferred_sectors")
    @classmethod
    def strip_sectors(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [sector.strip() for sector in value if sector.strip()]


class ToolCallProfileExtractor:
    """Interprets update_profile invocations. Stateless."""

    def parse_arguments(self, call: ToolInvocation) -> ProfileUpdateArguments:
        """
        Parse and validate raw tool-call JSON.

        Raises:
            MalformedToolArgumentsError: If the JSON is invalid or fields have wrong types
        """
        try:
            return ProfileUpdateArguments.model_validate_json(call.arguments or "{}")
        except PydanticValidationError as e:
            raise MalformedToolArgumentsError(
                "update_profile arguments could not be parsed",
                tool=call.name,
                errors=e.error_count(),
            ) from e

    def apply(
        self, profile: AdvisoryProfile, arguments: ProfileUpdateArguments
    ) -> AdvisoryProfile:
        """
        Return an updated copy of the profile.

        risk_tolerance and investment_goals overwrite; preferred_sectors are
        unioned in, deduplicated. Absent fields are left untouched, so applying
        the same arguments twice yields the same profile.
        """
        updates: dict[str, Any] = {}
        if arguments.risk_tolerance is not None:
            updates["risk_tolerance"] = arguments.risk_tolerance
        if arguments.investment_goals is not None:
            updates["investment_goals"] = arguments.investment_goals
        if arguments.preferred_sectors is not None:
            updates["preferred_sectors"] = merge_sectors(
                profile.preferred_sectors, arguments.preferred_sectors
            )

        if not updates:
            logger.debug("update_profile carried no fields", user_id=profile.user_id)
            return profile

        logger.info(
            "Profile updated from tool call",
            user_id=profile.user_id,
            fields=sorted(updates),
        )
        return profile.model_copy(update=updates)
