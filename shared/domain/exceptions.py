"""
Rich Domain Exceptions

Exception hierarchy for domain-specific errors.
Supports structured error information, error codes, and context so that
callers can translate failures to a transport status without re-deriving them.
"""

from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for domain exceptions."""

    # Domain errors
    DOMAIN_VALIDATION_ERROR = "DOMAIN_VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"

    # Authorization
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    EXTERNAL_SERVICE_TIMEOUT = "EXTERNAL_SERVICE_TIMEOUT"

    # System errors
    DATABASE_ERROR = "DATABASE_ERROR"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


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
            status_code: Suggested transport status code (default: 500)
            context: Additional context data
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        self.cause = cause

        log = logger.warning if status_code < 500 else logger.error
        log(
            "Domain exception raised",
            error_code=error_code.value,
            message=message,
            status_code=status_code,
            context=self.context,
            exception_type=type(self).__name__,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: dict[str, Any] = {
            "error": self.error_code.value,
            "message": self.message,
            "type": type(self).__name__,
        }
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(DomainException):
    """Raised when input is malformed or out of range."""

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
        self.field = field


class ConflictError(DomainException):
    """Raised when a state invariant blocks a well-formed request."""

    def __init__(
        self,
        reason: str,
        reasons: list[str] | None = None,
        error_code: ErrorCode = ErrorCode.CONFLICT,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        context["reason"] = reason
        if reasons:
            context["reasons"] = reasons

        super().__init__(
            message=reason,
            error_code=error_code,
            status_code=409,
            context=context,
            **kwargs
        )
        self.reason = reason
        self.reasons = reasons or []


class InvalidStateTransitionError(ConflictError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(
        self,
        entity_type: str,
        from_state: str,
        to_state: str,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        context["entity_type"] = entity_type
        context["from_state"] = from_state
        context["to_state"] = to_state

        super().__init__(
            f"{entity_type} cannot transition from {from_state} to {to_state}",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            context=context,
            **kwargs
        )
        self.from_state = from_state
        self.to_state = to_state


class NotFoundError(DomainException):
    """Raised when a referenced entity does not exist."""

    def __init__(
        self,
        entity_type: str,
        entity_id: Any | None = None,
        **kwargs
    ):
        message = kwargs.pop("message", None) or f"{entity_type} not found"
        if entity_id is not None:
            message += f" (ID: {entity_id})"

        context = kwargs.pop("context", {})
        context["entity_type"] = entity_type
        if entity_id is not None:
            context["entity_id"] = str(entity_id)

        super().__init__(
            message=message,
            error_code=ErrorCode.ENTITY_NOT_FOUND,
            status_code=404,
            context=context,
            **kwargs
        )
        self.entity_type = entity_type


class AuthorizationError(DomainException):
    """Raised when the caller lacks the role or ownership for an action."""

    def __init__(
        self,
        message: str = "Authorization denied",
        resource: str | None = None,
        action: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if resource:
            context["resource"] = resource
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
    """Raised when an external collaborator call fails."""

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
    """Raised when a persistence operation fails unexpectedly."""

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


class InvariantViolationError(DomainException):
    """Raised when internal state breaks an invariant; a programming error, not bad input."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVARIANT_VIOLATION,
            status_code=500,
            **kwargs
        )
