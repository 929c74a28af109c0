"""
Chat system service layer.

This module provides the business logic for one-to-one chat.

Services:
    ConversationService: Conversation registry (get-or-create, summaries)
    MessageService: Message store (append, list, send with live publish)
    ReadStateService: Read-state tracking (mark read, unread counts)

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures raise core.exceptions errors; the DRF exception
      handler and the WebSocket consumer render them
    - Database connectivity failures surface as TransientStoreError and are
      never retried here
    - Live publish happens only after the message's transaction commits

Usage:
    from chat.services import ConversationService, MessageService

    conversation, created = ConversationService.get_or_create_conversation(
        request.user.id, recipient_id
    )
    message = MessageService.send_message(
        conversation_id=conversation.id,
        sender_id=request.user.id,
        text="See you at the library?",
    )
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Count, F, IntegerField, OuterRef, Q, Subquery, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.decorators import translate_store_errors
from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.services import BaseService

from chat.constants import ATTACHMENT_CONFIG, MESSAGE_CONFIG
from chat.models import Conversation, Message, MessageAttachment

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True)
class AttachmentPayload:
    """
    An attachment as received from a client, before it is stored.

    content_type may be empty; it is then guessed from the file name.
    """

    file_name: str
    data: bytes
    content_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    def resolved_content_type(self) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.file_name)
        return guessed or ATTACHMENT_CONFIG.DEFAULT_CONTENT_TYPE


@dataclass(frozen=True)
class ConversationSummary:
    """One row of a user's conversation list."""

    conversation_id: int
    counterpart_id: int
    counterpart_name: str
    last_message: str | None
    last_message_at: datetime | None
    unread_count: int
    created_at: datetime


class ConversationService(BaseService):
    """
    Service for the conversation registry.

    Methods:
        get_or_create_conversation: The unique conversation for a user pair
        list_conversations_for_user: Summaries with unread counts
        get_conversation: Lookup by id
        require_participant: Lookup by id, restricted to participants
    """

    @classmethod
    @translate_store_errors
    def get_or_create_conversation(
        cls,
        user_a_id: int,
        user_b_id: int,
    ) -> tuple[Conversation, bool]:
        """
        Return the conversation between two users, creating it if needed.

        Argument order does not matter: (a, b) and (b, a) resolve to the
        same row. Two callers racing on the same new pair both get the
        single row that won the unique constraint.

        Implementation:
            1. Reject a pair of identical users
            2. Canonicalize order (lower user id first)
            3. Return the existing row if there is one
            4. Insert inside a savepoint; on IntegrityError re-read the winner

        Returns:
            (conversation, created)

        Error codes:
            SAME_USER: Both ids are the same user
            USER_NOT_FOUND: Either user does not exist
            CONVERSATION_CONFLICT: Insert lost a race but no row was found
        """
        if user_a_id == user_b_id:
            raise ValidationError(
                "Cannot start a conversation with yourself",
                error_code="SAME_USER",
                details={"user_id": user_a_id},
            )

        user_lower_id, user_higher_id = Conversation.canonical_pair(user_a_id, user_b_id)

        existing = cls._find_conversation(user_lower_id, user_higher_id)
        if existing is not None:
            return existing, False

        found_ids = set(
            get_user_model()
            .objects.filter(id__in=[user_lower_id, user_higher_id])
            .values_list("id", flat=True)
        )
        missing = sorted({user_lower_id, user_higher_id} - found_ids)
        if missing:
            raise NotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_ids": missing},
            )

        try:
            with cls.atomic():
                conversation = Conversation.objects.create(
                    user_lower_id=user_lower_id,
                    user_higher_id=user_higher_id,
                )
        except IntegrityError:
            conversation = Conversation.objects.filter(
                user_lower_id=user_lower_id,
                user_higher_id=user_higher_id,
            ).first()
            if conversation is None:
                raise ConflictError(
                    "Conversation was created concurrently but could not be loaded",
                    error_code="CONVERSATION_CONFLICT",
                    details={"user_ids": [user_lower_id, user_higher_id]},
                )
            cls.get_logger().debug(
                f"Lost creation race for users {user_lower_id} and {user_higher_id}; "
                f"using conversation {conversation.id}"
            )
            return conversation, False

        cls.get_logger().info(
            f"Created conversation {conversation.id} "
            f"between users {user_lower_id} and {user_higher_id}"
        )
        return conversation, True

    @classmethod
    def _find_conversation(
        cls, user_lower_id: int, user_higher_id: int
    ) -> Conversation | None:
        return Conversation.objects.filter(
            user_lower_id=user_lower_id,
            user_higher_id=user_higher_id,
        ).first()

    @classmethod
    @translate_store_errors
    def list_conversations_for_user(cls, user_id: int) -> list[ConversationSummary]:
        """
        List every conversation the user takes part in.

        Ordered by most recent activity; conversations without messages
        come last, newest first.

        unread_count counts messages from the counterpart that the user
        has not read yet.
        """
        newest_message = Message.objects.filter(
            conversation=OuterRef("pk")
        ).order_by("-sent_at", "-id")

        unread_messages = (
            Message.objects.filter(conversation=OuterRef("pk"), is_read=False)
            .exclude(sender_id=user_id)
            .order_by()
            .values("conversation")
            .annotate(total=Count("id"))
            .values("total")
        )

        conversations = (
            Conversation.objects.filter(
                Q(user_lower_id=user_id) | Q(user_higher_id=user_id)
            )
            .select_related("user_lower__profile", "user_higher__profile")
            .annotate(
                last_message_text=Subquery(newest_message.values("text")[:1]),
                unread=Coalesce(
                    Subquery(unread_messages, output_field=IntegerField()),
                    Value(0),
                ),
            )
            .order_by(
                F("last_message_at").desc(nulls_last=True),
                "-created_at",
                "-id",
            )
        )

        summaries = []
        for conversation in conversations:
            counterpart = (
                conversation.user_higher
                if conversation.user_lower_id == user_id
                else conversation.user_lower
            )
            summaries.append(
                ConversationSummary(
                    conversation_id=conversation.id,
                    counterpart_id=counterpart.id,
                    counterpart_name=counterpart.get_full_name(),
                    last_message=conversation.last_message_text,
                    last_message_at=conversation.last_message_at,
                    unread_count=conversation.unread,
                    created_at=conversation.created_at,
                )
            )
        return summaries

    @classmethod
    @translate_store_errors
    def get_conversation(cls, conversation_id: int) -> Conversation:
        """
        Raises:
            NotFoundError: CONVERSATION_NOT_FOUND
        """
        conversation = Conversation.objects.filter(pk=conversation_id).first()
        if conversation is None:
            raise NotFoundError(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
                details={"conversation_id": conversation_id},
            )
        return conversation

    @classmethod
    def require_participant(cls, conversation_id: int, user_id: int) -> Conversation:
        """
        Load a conversation the user takes part in.

        Raises:
            NotFoundError: CONVERSATION_NOT_FOUND
            PermissionDeniedError: NOT_PARTICIPANT
        """
        conversation = cls.get_conversation(conversation_id)
        if not conversation.has_participant(user_id):
            raise PermissionDeniedError(
                "You are not a participant in this conversation",
                error_code="NOT_PARTICIPANT",
                details={"conversation_id": conversation_id},
            )
        return conversation


class MessageService(BaseService):
    """
    Service for the message store.

    Methods:
        append_message: Validate and persist a message
        send_message: append_message, then publish to live subscribers on commit
        list_messages: Conversation history in order
    """

    @classmethod
    def validate_content(
        cls, text: str | None, attachments: list[AttachmentPayload]
    ) -> str:
        """
        Check message content against the limits in chat.constants.

        Returns the text with surrounding whitespace stripped.

        Raises:
            ValidationError: EMPTY_MESSAGE, TEXT_TOO_LONG, TOO_MANY_ATTACHMENTS,
                INVALID_ATTACHMENT or ATTACHMENT_TOO_LARGE
        """
        text = (text or "").strip()
        if not text and not attachments:
            raise ValidationError(
                "Message must contain text or at least one attachment",
                error_code="EMPTY_MESSAGE",
            )
        if len(text) > MESSAGE_CONFIG.MAX_TEXT_LENGTH:
            raise ValidationError(
                "Message text is too long",
                error_code="TEXT_TOO_LONG",
                details={"max_length": MESSAGE_CONFIG.MAX_TEXT_LENGTH},
            )
        if len(attachments) > ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValidationError(
                "Too many attachments",
                error_code="TOO_MANY_ATTACHMENTS",
                details={"max_attachments": ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE},
            )
        for attachment in attachments:
            if not attachment.file_name.strip():
                raise ValidationError(
                    "Attachment file name is required",
                    error_code="INVALID_ATTACHMENT",
                )
            if len(attachment.file_name) > ATTACHMENT_CONFIG.MAX_FILE_NAME_LENGTH:
                raise ValidationError(
                    "Attachment file name is too long",
                    error_code="INVALID_ATTACHMENT",
                    details={"max_length": ATTACHMENT_CONFIG.MAX_FILE_NAME_LENGTH},
                )
            if attachment.size > ATTACHMENT_CONFIG.MAX_ATTACHMENT_SIZE_BYTES:
                raise ValidationError(
                    "Attachment exceeds the size limit",
                    error_code="ATTACHMENT_TOO_LARGE",
                    details={
                        "file_name": attachment.file_name,
                        "max_bytes": ATTACHMENT_CONFIG.MAX_ATTACHMENT_SIZE_BYTES,
                    },
                )
        return text

    @classmethod
    @translate_store_errors
    def append_message(
        cls,
        conversation_id: int,
        sender_id: int,
        text: str | None,
        attachments: Iterable[AttachmentPayload] | None = None,
    ) -> Message:
        """
        Persist a new message.

        The conversation row is locked for the duration of the insert so
        sent_at never goes backwards within a conversation, even when two
        senders race or the clock steps back. The message, its attachments
        and the conversation's last_message_at commit together.

        Args:
            conversation_id: Target conversation
            sender_id: Sending user (must be a participant)
            text: Message text; surrounding whitespace is stripped
            attachments: Optional AttachmentPayload items

        Returns:
            The stored Message

        Error codes:
            EMPTY_MESSAGE: No text after stripping and no attachments
            TEXT_TOO_LONG / TOO_MANY_ATTACHMENTS / ATTACHMENT_TOO_LARGE /
            INVALID_ATTACHMENT: Limits in chat.constants
            CONVERSATION_NOT_FOUND: Unknown conversation
            NOT_PARTICIPANT: Sender is not in the conversation
        """
        attachments = list(attachments or [])
        text = cls.validate_content(text, attachments)

        with cls.atomic():
            conversation = (
                Conversation.objects.select_for_update()
                .filter(pk=conversation_id)
                .first()
            )
            if conversation is None:
                raise NotFoundError(
                    "Conversation not found",
                    error_code="CONVERSATION_NOT_FOUND",
                    details={"conversation_id": conversation_id},
                )
            if not conversation.has_participant(sender_id):
                raise PermissionDeniedError(
                    "You are not a participant in this conversation",
                    error_code="NOT_PARTICIPANT",
                    details={"conversation_id": conversation_id},
                )

            sent_at = timezone.now()
            if conversation.last_message_at and conversation.last_message_at > sent_at:
                sent_at = conversation.last_message_at

            message = Message.objects.create(
                conversation=conversation,
                sender_id=sender_id,
                text=text,
                sent_at=sent_at,
            )
            if attachments:
                MessageAttachment.objects.bulk_create(
                    [
                        MessageAttachment(
                            message=message,
                            file_name=attachment.file_name,
                            content_type=attachment.resolved_content_type(),
                            size=attachment.size,
                            data=attachment.data,
                        )
                        for attachment in attachments
                    ]
                )

            conversation.last_message_at = sent_at
            conversation.save(update_fields=["last_message_at", "updated_at"])

        cls.get_logger().debug(
            f"User {sender_id} appended message {message.id} "
            f"to conversation {conversation_id} "
            f"({len(attachments)} attachment(s))"
        )
        return message

    @classmethod
    def send_message(
        cls,
        conversation_id: int,
        sender_id: int,
        text: str | None,
        attachments: Iterable[AttachmentPayload] | None = None,
    ) -> Message:
        """
        Append a message and publish it to the conversation's live group.

        The publish is registered with transaction.on_commit, so it runs
        only once the message is durable. If an outer transaction rolls
        back, nothing is published.
        """
        message = cls.append_message(conversation_id, sender_id, text, attachments)
        transaction.on_commit(lambda: cls._publish(message))
        return message

    @classmethod
    def _publish(cls, message: Message) -> int:
        from chat.broadcast import get_registry
        from chat.serializers import message_received_event

        reached = get_registry().publish(
            message.conversation_id, message_received_event(message)
        )
        cls.get_logger().debug(
            f"Published message {message.id} to {reached} live connection(s)"
        )
        return reached

    @classmethod
    @translate_store_errors
    def list_messages(cls, conversation_id: int) -> list[Message]:
        """
        Return a conversation's messages ordered by (sent_at, id).

        Raises:
            NotFoundError: CONVERSATION_NOT_FOUND
        """
        if not Conversation.objects.filter(pk=conversation_id).exists():
            raise NotFoundError(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
                details={"conversation_id": conversation_id},
            )
        return list(
            Message.objects.filter(conversation_id=conversation_id)
            .prefetch_related("attachments")
            .order_by("sent_at", "id")
        )


class ReadStateService(BaseService):
    """
    Service for read-state tracking.

    Methods:
        mark_read: Mark the counterpart's unread messages as read
        unread_count: Count the counterpart's unread messages
    """

    @classmethod
    @translate_store_errors
    def mark_read(cls, conversation_id: int, user_id: int) -> int:
        """
        Mark every unread message from the other participant as read.

        A single UPDATE, so concurrent calls cannot double-count. Calling it
        again when nothing is unread changes nothing and is not an error.

        Returns:
            Number of messages that changed from unread to read

        Error codes:
            CONVERSATION_NOT_FOUND: Unknown conversation
            NOT_PARTICIPANT: User is not in the conversation
        """
        ConversationService.require_participant(conversation_id, user_id)

        now = timezone.now()
        updated = (
            Message.objects.filter(conversation_id=conversation_id, is_read=False)
            .exclude(sender_id=user_id)
            .update(is_read=True, read_at=now, updated_at=now)
        )

        cls.get_logger().debug(
            f"User {user_id} marked {updated} message(s) read "
            f"in conversation {conversation_id}"
        )
        return updated

    @classmethod
    @translate_store_errors
    def unread_count(cls, conversation_id: int, user_id: int) -> int:
        """
        Count messages from the other participant the user has not read.

        Error codes:
            CONVERSATION_NOT_FOUND: Unknown conversation
            NOT_PARTICIPANT: User is not in the conversation
        """
        ConversationService.require_participant(conversation_id, user_id)
        return (
            Message.objects.filter(conversation_id=conversation_id, is_read=False)
            .exclude(sender_id=user_id)
            .count()
        )
