"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the REST API and the WebSocket channel
- Machine-readable error codes for client handling
- A single place where each error kind is bound to its HTTP status

Exception Hierarchy:
    BaseApplicationError (base, 500)
    ├── ValidationError - Malformed input, invalid state transitions (400)
    ├── AuthenticationError - No trusted identity for the caller (401)
    ├── ForbiddenError - Identity present but lacks rights (403)
    ├── NotFoundError - Resource not found (404)
    ├── ConflictError - Duplicates, lost races on unique rows (409)
    └── NotImplementedFeatureError - Intentionally unsupported operation (501)

Usage:
    from core.exceptions import ForbiddenError, ValidationError

    # Raise with message only
    raise ForbiddenError("You are not a participant in this conversation")

    # Raise with error code for client handling
    raise ValidationError("Message content cannot be empty", error_code="EMPTY_CONTENT")

    # Raise with additional details
    raise ValidationError(
        "Invalid status transition",
        error_code="INVALID_STATUS_TRANSITION",
        details={"current": "READ", "requested": "SENT"},
    )

    # Convert to dict for API response (done by core.handlers for DRF views)
    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.status_code)

Note:
    These exceptions are for domain/business logic errors raised by services.
    DRF handles API-layer exceptions (serializer input, missing JWT, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Provides a consistent interface for error handling across the application.
    All custom exceptions should inherit from this class.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)
        status_code: HTTP status used when the error reaches the API boundary

    Example:
        try:
            message = MessageService.edit_message(message_id, editor, content)
        except ForbiddenError as e:
            logger.warning(f"Edit rejected: {e.error_code}")
            return Response(e.to_dict(), status=e.status_code)
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and (when present) details keys

        Example:
            {
                "error": "Conversation not found",
                "error_code": "CONVERSATION_NOT_FOUND",
                "details": {"conversation_id": 123}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input or a requested state change is invalid.

    Use for:
    - Blank or oversized message content
    - Empty member lists, blank group names
    - Replies whose parent lives in another conversation
    - Backward message status transitions

    Example:
        raise ValidationError(
            "Reply target must belong to the same conversation",
            error_code="INVALID_REPLY_TARGET",
            details={"reply_to_id": reply_to_id},
        )

    Note:
        For DRF serializer validation, use DRF's built-in validation.
        Use this for service-layer validation logic.
    """

    default_error_code: str = "VALIDATION_ERROR"
    status_code: int = 400


class AuthenticationError(BaseApplicationError):
    """
    Raised when no trusted identity is attached to the caller.

    The identity itself is resolved by simplejwt (HTTP) or the socket
    middleware; services raise this when handed an anonymous caller.
    """

    default_error_code: str = "AUTHENTICATION_REQUIRED"
    status_code: int = 401


class ForbiddenError(BaseApplicationError):
    """
    Raised when an authenticated user lacks rights over a resource.

    Use for:
    - Acting on a conversation the caller does not participate in
    - Editing or attaching files to someone else's message
    - Group administration by a plain member

    Example:
        if not participant:
            raise ForbiddenError(
                "You are not a participant in this conversation",
                error_code="NOT_PARTICIPANT",
                details={"conversation_id": conversation_id},
            )
    """

    default_error_code: str = "FORBIDDEN"
    status_code: int = 403


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        message = Message.objects.filter(id=message_id).first()
        if not message:
            raise NotFoundError(
                f"Message {message_id} not found",
                error_code="MESSAGE_NOT_FOUND",
                details={"message_id": message_id},
            )

    Note:
        List queries return empty results instead of raising.
    """

    default_error_code: str = "NOT_FOUND"
    status_code: int = 404


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Adding a user who is already a conversation participant
    - Unique constraint violations that cannot be resolved by re-reading

    Note:
        Callers that only need the end state (e.g. "user is a member") may
        treat this as success.
    """

    default_error_code: str = "CONFLICT"
    status_code: int = 409


class NotImplementedFeatureError(BaseApplicationError):
    """
    Raised for operations the service deliberately does not support.

    Message deletion and parts of group management (leave, remove
    participant, update info) fall in this category.

    Named so it does not shadow Python's builtin NotImplementedError.
    """

    default_error_code: str = "NOT_IMPLEMENTED"
    status_code: int = 501
