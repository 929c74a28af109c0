"""
Chat system models.

This module defines the persisted state of one-to-one chat:

Models:
    Conversation: The single thread between an unordered pair of users
    Message: Individual message within a conversation, with read state
    MessageAttachment: File payload carried by a message

Design Decisions:
    - A pair of users has at most one conversation. The pair is stored in
      canonical order (lower user id first) and protected by a unique
      constraint, so concurrent creators converge on one row.
    - Conversations are created lazily (first contact) and never deleted.
    - Message order is (sent_at, id). sent_at is assigned by the server
      under a row lock on the conversation and never moves backwards.
    - Unread counts are derived from Message.is_read, never stored.
    - Group membership for live delivery is not persisted (see chat.broadcast).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from core.models import BaseModel


class Conversation(BaseModel):
    """
    A direct conversation between exactly two users.

    Fields:
        user_lower: Participant with the lower user id
        user_higher: Participant with the higher user id
        last_message_at: sent_at of the newest message (None until first send)

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One conversation per pair
        - CheckConstraint(user_lower_id < user_higher_id): Canonical order,
          which also rules out a conversation with oneself

    Usage:
        lower, higher = Conversation.canonical_pair(a_id, b_id)
        Conversation.objects.filter(user_lower_id=lower, user_higher_id=higher)
    """

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="Participant with the lower user id",
    )
    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="Participant with the higher user id",
    )
    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of the newest message, for summary ordering",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="conversation_user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        return f"Conversation({self.pk}: {self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical_pair(user_a_id: int, user_b_id: int) -> tuple[int, int]:
        """Return the pair ordered (lower, higher)."""
        return (user_a_id, user_b_id) if user_a_id < user_b_id else (user_b_id, user_a_id)

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.user_lower_id, self.user_higher_id)

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def counterpart_id(self, user_id: int) -> int:
        """
        Return the other participant's id.

        Raises:
            ValueError: If user_id is not a participant
        """
        if user_id == self.user_lower_id:
            return self.user_higher_id
        if user_id == self.user_higher_id:
            return self.user_lower_id
        raise ValueError(f"User {user_id} is not in conversation {self.pk}")


class Message(BaseModel):
    """
    A message within a conversation.

    Fields:
        conversation: Conversation this message belongs to
        sender: User who sent the message
        text: Stripped message text (empty only when attachments exist)
        sent_at: Server-assigned send time, non-decreasing per conversation
        is_read: Whether the recipient has read it
        read_at: When it was marked read (set iff is_read)

    Constraints:
        - CheckConstraint: read_at is set exactly when is_read is true

    Ordering:
        Chronological by (sent_at, id); id breaks ties for equal timestamps.
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_messages",
        help_text="User who sent this message",
    )
    text = models.TextField(
        blank=True,
        default="",
        help_text="Message text (may be empty when attachments are present)",
    )
    sent_at = models.DateTimeField(
        db_index=True,
        help_text="Server-assigned send timestamp",
    )
    is_read = models.BooleanField(
        default=False,
        help_text="Whether the recipient has read this message",
    )
    read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the recipient read this message",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["sent_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(is_read=True, read_at__isnull=False)
                    | Q(is_read=False, read_at__isnull=True)
                ),
                name="message_read_at_matches_is_read",
            ),
        ]
        indexes = [
            # History listing
            models.Index(
                fields=["conversation", "sent_at", "id"],
                name="chat_msg_conv_sent_idx",
            ),
            # Unread counting
            models.Index(
                fields=["conversation", "is_read", "sender"],
                name="chat_msg_conv_unread_idx",
            ),
        ]

    def __str__(self) -> str:
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"Message({self.pk}) by {self.sender_id}: {preview}"


class MessageAttachment(BaseModel):
    """
    A file carried by a message.

    Fields:
        message: Message this attachment belongs to
        file_name: Original client-side file name
        content_type: MIME type
        size: Payload size in bytes
        data: Raw payload
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="attachments",
        help_text="Message this attachment belongs to",
    )
    file_name = models.CharField(
        max_length=255,
        help_text="Original file name",
    )
    content_type = models.CharField(
        max_length=127,
        help_text="MIME type of the payload",
    )
    size = models.PositiveIntegerField(
        help_text="Payload size in bytes",
    )
    data = models.BinaryField(
        help_text="Raw file bytes",
    )

    class Meta:
        db_table = "chat_message_attachment"
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.file_name} ({self.size} bytes) on message {self.message_id}"
