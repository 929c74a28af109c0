"""
Decorators shared by the service layer.

Usage:
    from core.decorators import translate_store_errors

    class MessageService(BaseService):
        @classmethod
        @translate_store_errors
        def list_messages(cls, conversation_id):
            ...
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from django.db import InterfaceError, OperationalError

from .exceptions import TransientStoreError

logger = logging.getLogger(__name__)


def translate_store_errors(func: Callable):
    """
    Re-raise database connectivity failures as TransientStoreError.

    Only OperationalError and InterfaceError are translated. IntegrityError
    and friends describe the data, not the connection, and keep propagating
    unchanged so the service can handle them.

    The decorated function is never retried here.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            logger.warning(
                f"Transient store error in {func.__qualname__}: {exc}"
            )
            raise TransientStoreError(
                "The message store is temporarily unavailable",
                details={"operation": func.__name__},
            ) from exc

    return wrapper
