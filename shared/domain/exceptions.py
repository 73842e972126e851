"""
Rich Domain Exceptions

Exception hierarchy for the booking lifecycle engine.
Supports structured error information, error codes, and context.
"""

from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for domain exceptions."""

    # Domain errors
    DOMAIN_VALIDATION_ERROR = "DOMAIN_VALIDATION_ERROR"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"

    # Scheduling errors
    INVALID_INTERVAL = "INVALID_INTERVAL"
    SCHEDULE_CONFLICT = "SCHEDULE_CONFLICT"

    # Authorization
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"

    # External service errors
    EXTERNAL_SERVICE_TIMEOUT = "EXTERNAL_SERVICE_TIMEOUT"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # System errors
    DATABASE_ERROR = "DATABASE_ERROR"


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Provides structured error information with error codes, context, and metadata.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize domain exception.

        Args:
            message: Human-readable error message
            error_code: Standard error code
            status_code: HTTP status code (default: 500)
            context: Additional context data
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        self.cause = cause

        logger.warning(
            "Domain exception raised",
            error_code=error_code.value,
            message=message,
            status_code=status_code,
            context=context,
            exception_type=type(self).__name__,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error": self.error_code.value,
            "message": self.message,
            "type": type(self).__name__,
        }
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(DomainException):
    """Raised when domain validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)

        super().__init__(
            message=message,
            error_code=ErrorCode.DOMAIN_VALIDATION_ERROR,
            status_code=400,
            context=context,
            **kwargs
        )


class InvalidIntervalError(DomainException):
    """Raised for a malformed or past-dated reservation window."""

    def __init__(self, message: str, start: Any = None, end: Any = None, **kwargs):
        context = kwargs.pop("context", {})
        if start is not None:
            context["start"] = str(start)
        if end is not None:
            context["end"] = str(end)

        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_INTERVAL,
            status_code=400,
            context=context,
            **kwargs
        )


class SchedulingConflictError(DomainException):
    """Raised when a reservation overlaps an active reservation of the same device."""

    def __init__(
        self,
        device_id: Any,
        conflicting_ids: list[Any] | None = None,
        message: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        context["device_id"] = str(device_id)
        context["conflicting_reservations"] = [str(c) for c in conflicting_ids or []]

        super().__init__(
            message=message or "Requested interval overlaps an existing reservation",
            error_code=ErrorCode.SCHEDULE_CONFLICT,
            status_code=409,
            context=context,
            **kwargs
        )
        self.device_id = device_id
        self.conflicting_ids = list(conflicting_ids or [])


class InvalidTransitionError(DomainException):
    """Raised when a state machine edge is not allowed from the persisted state."""

    def __init__(
        self,
        entity_type: str,
        current: Any,
        requested: Any,
        message: str | None = None,
        **kwargs
    ):
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)

        context = kwargs.pop("context", {})
        context["entity_type"] = entity_type
        context["current"] = str(current_value)
        context["requested"] = str(requested_value)

        super().__init__(
            message=message
            or f"Cannot move {entity_type} from {current_value} to {requested_value}",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            context=context,
            **kwargs
        )


class EntityNotFoundError(DomainException):
    """Raised when an entity is not found."""

    def __init__(
        self,
        entity_type: str,
        entity_id: Any | None = None,
        **kwargs
    ):
        message = kwargs.pop("message", None) or f"{entity_type} not found"
        if entity_id:
            message += f" (ID: {entity_id})"

        context = kwargs.pop("context", {})
        context["entity_type"] = entity_type
        if entity_id:
            context["entity_id"] = str(entity_id)

        super().__init__(
            message=message,
            error_code=ErrorCode.ENTITY_NOT_FOUND,
            status_code=404,
            context=context,
            **kwargs
        )


class AuthorizationError(DomainException):
    """Raised when the actor lacks the role required for an operation."""

    def __init__(
        self,
        message: str = "Authorization denied",
        actor_id: Any | None = None,
        action: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if actor_id:
            context["actor_id"] = str(actor_id)
        if action:
            context["action"] = action

        super().__init__(
            message=message,
            error_code=ErrorCode.AUTHORIZATION_DENIED,
            status_code=403,
            context=context,
            **kwargs
        )


class ExternalServiceError(DomainException):
    """Raised when an external service call fails."""

    def __init__(
        self,
        service_name: str,
        message: str | None = None,
        timeout: bool = False,
        **kwargs
    ):
        error_code = ErrorCode.EXTERNAL_SERVICE_TIMEOUT if timeout else ErrorCode.EXTERNAL_SERVICE_ERROR
        default_message = f"{service_name} service {'timed out' if timeout else 'returned an error'}"

        context = kwargs.pop("context", {})
        context["service_name"] = service_name
        context["timeout"] = timeout

        super().__init__(
            message=message or default_message,
            error_code=error_code,
            status_code=503,
            context=context,
            **kwargs
        )
        self.service_name = service_name
        self.timeout = timeout


class DatabaseError(DomainException):
    """Raised when a database operation fails."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation

        super().__init__(
            message=message,
            error_code=ErrorCode.DATABASE_ERROR,
            status_code=500,
            context=context,
            **kwargs
        )
