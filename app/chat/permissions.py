"""
Permission checks for the chat API and live channel.

- IsConversationParticipant: Object permission on a Conversation
- IsRequestingUser: The user_id in the URL is the caller
- ensure_acting_as: Reject a client-claimed user id that is not the caller

Design Decisions:
    - The authenticated user is the only identity the server trusts; ids
      supplied in request bodies or frames are cross-checked, never used
      in its place
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

from core.exceptions import PermissionDeniedError

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView

    from chat.models import Conversation


class IsConversationParticipant(permissions.BasePermission):
    """Allows access only to the two participants of the conversation."""

    message = "You are not a participant in this conversation."

    def has_object_permission(
        self, request: Request, view: APIView, obj: Conversation
    ) -> bool:
        if not request.user.is_authenticated:
            return False
        return obj.has_participant(request.user.id)


class IsRequestingUser(permissions.BasePermission):
    """
    Allows access only when the URL's user_id is the caller.

    Used for per-user listings addressed by id.
    """

    message = "You can only view your own conversations."

    def has_permission(self, request: Request, view: APIView) -> bool:
        if not request.user.is_authenticated:
            return False
        return view.kwargs.get("user_id") == request.user.id


def ensure_acting_as(user_id: int, claimed_user_id: int | None) -> None:
    """
    Raise if a client-supplied user id differs from the authenticated one.

    A missing claim is accepted.

    Raises:
        PermissionDeniedError: SENDER_MISMATCH
    """
    if claimed_user_id is not None and claimed_user_id != user_id:
        raise PermissionDeniedError(
            "You can only act as yourself",
            error_code="SENDER_MISMATCH",
            details={"user_id": claimed_user_id},
        )
