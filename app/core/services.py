"""
Base service layer patterns for business logic encapsulation.

Services encapsulate business logic separate from views and models.
Views handle HTTP concerns, consumers handle socket concerns, models hold
data, services hold the rules both transports share.

Error Handling:
    Services raise core.exceptions subclasses for expected failures
    (ForbiddenError, ValidationError, ...). The REST layer maps them to HTTP
    responses via core.handlers.api_exception_handler; the WebSocket consumer
    turns them into "error" events. Unexpected exceptions propagate.

Usage:
    from core.services import BaseService

    class ConversationService(BaseService):
        @classmethod
        def toggle_pin(cls, conversation_id: int, user) -> Participant:
            cls.require_authenticated(user)
            with cls.atomic():
                participant = ...
            cls.get_logger().info(f"User {user.id} toggled pin on {conversation_id}")
            return participant

Related:
    - core.exceptions: Error hierarchy raised by services
    - core.handlers: HTTP mapping of that hierarchy
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

from core.exceptions import AuthenticationError

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Identity checks for callers handed in by the transport layer

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Raise core.exceptions for expected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.

        Example:
            class MessageService(BaseService):
                @classmethod
                def send_message(cls, ...):
                    cls.get_logger().info(f"Message {message.id} sent")
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back. Nested use creates a savepoint.

        Example:
            with cls.atomic():
                message = Message.objects.create(...)
                Message.objects.filter(id=parent_id).update(
                    reply_count=F("reply_count") + 1
                )
        """
        with transaction.atomic():
            yield

    @classmethod
    def require_authenticated(cls, user) -> None:
        """
        Reject callers without a trusted identity.

        Args:
            user: The caller as resolved by the identity layer (may be None
                or AnonymousUser)

        Raises:
            AuthenticationError: If no authenticated user is present
        """
        if user is None or not getattr(user, "is_authenticated", False):
            raise AuthenticationError("Authentication credentials were not provided")
