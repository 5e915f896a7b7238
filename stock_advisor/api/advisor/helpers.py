"""
SSE formatting helpers for the advisor message stream.
"""

import json
from typing import Any

from ...agent.chat_orchestrator import ReplyCompleted


def format_sse_event(event_data: dict[str, Any]) -> str:
    """
    Format a dictionary as an SSE (Server-Sent Events) event.

    Args:
        event_data: Dictionary containing event data

    Returns:
        SSE-formatted string with 'data: ' prefix and double newline
    """
    return f"data: {json.dumps(event_data)}\n\n"


def create_chunk_event(content: str) -> str:
    """SSE chunk event carrying one streamed token."""
    return format_sse_event({"type": "chunk", "content": content})


def create_done_event(reply: ReplyCompleted, **extra_data: Any) -> str:
    """
    Create a formatted SSE completion event.

    Args:
        reply: Final reply of the exchange
        **extra_data: Additional data to include in the event (e.g., user_id)
    """
    event_data = {
        "type": "done",
        "message": reply.text,
        "profile_updated": reply.profile_updated,
        "failed": reply.failed,
        **extra_data,
    }
    return format_sse_event(event_data)


def create_error_event(error_message: str, error_code: str) -> str:
    """
    Create a formatted SSE error event.

    Args:
        error_message: Human-readable error message
        error_code: Error code identifier (e.g., 'internal_error')
    """
    return format_sse_event(
        {"type": "error", "error": error_message, "error_code": error_code}
    )
