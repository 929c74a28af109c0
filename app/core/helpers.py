"""
Helper functions for request-edge infrastructure.

Usage:
    from core.helpers import retry_transient

    messages = retry_transient(MessageService.list_messages, conversation_id)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import close_old_connections

from .exceptions import TransientStoreError

if TYPE_CHECKING:
    from typing import Any, Callable

logger = logging.getLogger(__name__)


def retry_transient(func: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Call func, retrying exactly once on TransientStoreError.

    Stale connections are discarded before the second attempt so it gets a
    fresh one. A second failure propagates to the caller.

    Example:
        summaries = retry_transient(
            ConversationService.list_conversations_for_user, request.user.id
        )
    """
    try:
        return func(*args, **kwargs)
    except TransientStoreError as exc:
        logger.warning(f"Retrying {getattr(func, '__qualname__', func)} after: {exc}")
        close_old_connections()
        return func(*args, **kwargs)
