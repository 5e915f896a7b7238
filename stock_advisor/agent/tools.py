"""
Tool schema exposed to the completion service, and the invocation it emits.
"""

from dataclasses import dataclass

UPDATE_PROFILE_TOOL_NAME = "update_profile"

# No field is required so the model can send partial updates
UPDATE_PROFILE_TOOL = {
    "name": UPDATE_PROFILE_TOOL_NAME,
    "description": "Update the user's financial profile based on their input.",
    "parameters": {
        "type": "object",
        "properties": {
            "risk_tolerance": {
                "type": "string",
                "enum": ["low", "medium", "high"],
                "description": "User's risk tolerance level",
            },
            "investment_goals": {
                "type": "string",
                "description": "User's investment goals (e.g., growth, income)",
            },
            "preferred_sectors": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Sectors the user is interested in (e.g., tech, healthcare)",
            },
        },
        "required": [],
    },
}


@dataclass(frozen=True)
class ToolInvocation:
    """A structured function call emitted by the completion service."""

    name: str
    arguments: str  # Raw JSON text, parsed by the profile extractor
    call_id: str | None = None
