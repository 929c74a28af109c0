"""
Application error hierarchy and its HTTP rendering.

Service code raises these exceptions for expected domain failures. Views
never build error responses by hand; DRF routes every raised
BaseApplicationError through api_exception_handler, which renders it with
the status code the exception class declares.

Exception Hierarchy:
    BaseApplicationError (base, 500)
    ├── ValidationError - Rejected input (400)
    ├── NotFoundError - Unknown conversation or user (404)
    ├── PermissionDeniedError - Caller is not a participant (403)
    ├── ConflictError - Lost a uniqueness race that could not be resolved (409)
    └── TransientStoreError - Database temporarily unavailable (503)

Usage:
    from core.exceptions import ValidationError

    raise ValidationError("Message is empty", error_code="EMPTY_MESSAGE")

    try:
        ...
    except BaseApplicationError as e:
        await self.send_json({"type": "error", **e.to_dict()})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, ids, limits)
        status_code: HTTP status used when the error reaches a view
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API and WebSocket responses.

        Example:
            {
                "error": "Conversation not found",
                "error_code": "CONVERSATION_NOT_FOUND",
                "details": {"conversation_id": 12}
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
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input is rejected by a service.

    Example:
        raise ValidationError(
            "Attachment exceeds the size limit",
            error_code="ATTACHMENT_TOO_LARGE",
            details={"file_name": name, "max_bytes": limit},
        )

    Note:
        DRF serializers still handle shape validation (missing fields,
        wrong types). Use this for rules the service layer owns.
    """

    default_error_code: str = "VALIDATION_ERROR"
    status_code: int = 400


class NotFoundError(BaseApplicationError):
    """Raised when a conversation or user id does not resolve."""

    default_error_code: str = "NOT_FOUND"
    status_code: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller may not act on a conversation.

    For authentication failures (missing or invalid token) DRF's
    AuthenticationFailed applies instead.
    """

    default_error_code: str = "PERMISSION_DENIED"
    status_code: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with concurrent state.

    Example:
        raise ConflictError(
            "Conversation was created concurrently but could not be loaded",
            error_code="CONVERSATION_CONFLICT",
        )
    """

    default_error_code: str = "CONFLICT"
    status_code: int = 409


class TransientStoreError(BaseApplicationError):
    """
    Raised when the database is temporarily unreachable.

    Produced by core.decorators.translate_store_errors from driver-level
    OperationalError and InterfaceError. Callers at the edge (views and
    the WebSocket consumer) may retry once via core.helpers.retry_transient.
    """

    default_error_code: str = "STORE_UNAVAILABLE"
    status_code: int = 503


def api_exception_handler(exc, context):
    """
    DRF exception handler that understands BaseApplicationError.

    Configured as REST_FRAMEWORK["EXCEPTION_HANDLER"]. Anything that is not
    an application error falls through to DRF's default handler.
    """
    from rest_framework.response import Response
    from rest_framework.views import exception_handler

    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        log_level = logging.WARNING if exc.status_code >= 500 else logging.INFO
        logger.log(
            log_level,
            f"{exc.__class__.__name__} in {view.__class__.__name__}: {exc}",
        )
        return Response(exc.to_dict(), status=exc.status_code)

    return exception_handler(exc, context)
