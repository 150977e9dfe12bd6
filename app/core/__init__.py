"""
Core Application - Infrastructure & Base Classes

Shared building blocks used by the domain apps (authentication, chat):

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Services (import from core.services):
    - BaseService: Base class for service layer (logging, transactions,
      identity checks)

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes and HTTP status
    - ValidationError: Input validation failures (400)
    - AuthenticationError: No trusted identity (401)
    - ForbiddenError: Authenticated but lacking rights (403)
    - NotFoundError: Resource not found (404)
    - ConflictError: State conflicts such as duplicates (409)
    - NotImplementedFeatureError: Intentionally unsupported operation (501)

Handlers (import from core.handlers):
    - api_exception_handler: DRF EXCEPTION_HANDLER mapping the hierarchy above
      to JSON error responses

Usage:
    from core.models import BaseModel
    from core.services import BaseService
    from core.exceptions import ForbiddenError, NotFoundError

Note:
    Django models are NOT imported here to avoid AppRegistryNotReady.
"""

from .exceptions import (
    AuthenticationError,
    BaseApplicationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    NotImplementedFeatureError,
    ValidationError,
)
from .services import BaseService

__all__ = [
    "AuthenticationError",
    "BaseApplicationError",
    "BaseService",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "NotImplementedFeatureError",
    "ValidationError",
]
