"""
Custom exception hierarchy for proper error categorization and HTTP status mapping.

Distinguishes:
- User errors (400-level): Client sent bad data or called out of turn
- Server errors (500-level): Our configuration failed
- External errors (503): Completion service or conversation store failed

Only GenerationError ever reaches the person chatting, and only as an apology
message. Persistence and tool-argument failures degrade to in-memory behavior.

Usage:
    from stock_advisor.core.exceptions import PersistenceUnavailableError

    raise PersistenceUnavailableError(
        "Conversation store returned 500", operation="append_turn"
    )
"""

from typing import Any


class AppError(Exception):
    """
    Base application error with HTTP status mapping.

    All custom exceptions inherit from this to enable consistent error handling.
    """

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, **context: Any):
        """
        Initialize error with message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional key-value pairs for logging (e.g., user_id)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON response and structured logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            **self.context,
        }


# ===== 400-level: Client Errors =====


class ValidationError(AppError):
    """User provided invalid input."""

    status_code = 400
    error_type = "validation_error"


class NotFoundError(AppError):
    """Requested resource does not exist."""

    status_code = 404
    error_type = "not_found_error"


class ConflictError(AppError):
    """Request conflicts with the current state of the resource."""

    status_code = 409
    error_type = "conflict_error"


class MalformedToolArgumentsError(ValidationError):
    """Tool-call arguments emitted by the completion service could not be parsed."""

    error_type = "malformed_tool_arguments"


class GenerationInProgressError(ConflictError):
    """A generation is already in flight for this conversation."""

    error_type = "generation_in_progress"


# ===== 500-level: Server Errors =====


class ConfigurationError(AppError):
    """
    Application misconfigured (e.g., missing env vars, invalid settings).

    Should be caught during startup, not during request handling.
    """

    status_code = 500
    error_type = "configuration_error"


# ===== 502/503: External Service Errors =====


class ExternalServiceError(AppError):
    """
    External service unavailable or returned error.

    Maps to 503 Service Unavailable (third-party problem, retry may help).
    """

    status_code = 503
    error_type = "external_service_error"

    def __init__(self, message: str, service: str, **context: Any):
        """
        Initialize with service name for easier debugging.

        Args:
            message: Error description
            service: Service identifier (e.g., "conversation_store", "dashscope")
            **context: Additional context (e.g., operation, user_id)
        """
        super().__init__(message, service=service, **context)


class PersistenceUnavailableError(ExternalServiceError):
    """Conversation store call failed (transport error, non-2xx, bad body)."""

    error_type = "persistence_unavailable"

    def __init__(self, message: str, **context: Any):
        super().__init__(message, service="conversation_store", **context)


class GenerationError(ExternalServiceError):
    """Completion service call failed while generating a reply."""

    error_type = "generation_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message, service="completion", **context)
