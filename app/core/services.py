"""
Base service layer patterns for business logic encapsulation.

Services hold the business rules. Views deal with HTTP and consumers with
WebSocket frames; both call into stateless service classmethods that raise
core.exceptions errors for expected failures.

Usage:
    from core.services import BaseService

    class ConversationService(BaseService):
        @classmethod
        def get_conversation(cls, conversation_id: int) -> Conversation:
            with cls.atomic():
                ...
            cls.get_logger().info(f"Loaded conversation {conversation_id}")
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Use @classmethod (no instance state)
        - Raise core.exceptions errors for expected failures
        - Keep transaction boundaries inside the service
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        The logger is named after the service class (for example
        ``chat.services.MessageService``) so it can be filtered in LOGGING.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around django.db.transaction.atomic(). Nested use creates
        a savepoint, so an IntegrityError inside can be caught without
        poisoning the outer transaction.
        """
        with transaction.atomic():
            yield
