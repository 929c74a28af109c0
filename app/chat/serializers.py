"""
Serializers for the chat API and live channel.

Serializer Hierarchy:
    AttachmentSerializer: Stored attachment, payload as base64
    MessageSerializer: Message with read state and attachments
    ConversationSerializer: Conversation row (get-or-create response)
    ConversationSummarySerializer: One entry of a user's conversation list

    MessageCreateSerializer: HTTP send (JSON or multipart upload)
    Base64AttachmentSerializer: Attachment inside a WebSocket frame
    ConversationCreateSerializer: Get-or-create request
    MarkReadSerializer: Mark-read request

Design Decisions:
    - Read and write serializers are separate
    - The same MessageSerializer output is used for HTTP history and for
      live message_received frames, so clients parse one shape
"""

from __future__ import annotations

import base64
import binascii
from typing import TYPE_CHECKING

from drf_spectacular.utils import extend_schema_field
from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import LIVE_CONFIG
from chat.models import Conversation, Message, MessageAttachment
from chat.services import AttachmentPayload

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Read Serializers
# =============================================================================


class AttachmentSerializer(serializers.ModelSerializer):
    """Stored attachment with its bytes base64-encoded."""

    data = serializers.SerializerMethodField(help_text="Base64-encoded payload")

    class Meta:
        model = MessageAttachment
        fields = ["id", "file_name", "content_type", "size", "data"]
        read_only_fields = fields

    def get_data(self, obj: MessageAttachment) -> str:
        # BinaryField comes back as memoryview on some backends
        return base64.b64encode(bytes(obj.data)).decode("ascii")


class MessageSerializer(serializers.ModelSerializer):
    """Full message representation for history and live delivery."""

    conversation_id = serializers.IntegerField(read_only=True)
    sender = serializers.IntegerField(
        source="sender_id",
        read_only=True,
        help_text="Id of the sending user",
    )
    attachments = AttachmentSerializer(many=True, read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "text",
            "sent_at",
            "is_read",
            "read_at",
            "attachments",
        ]
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    """Conversation row, as returned by get-or-create."""

    user_ids = serializers.SerializerMethodField()
    participants = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = ["id", "user_ids", "participants", "last_message_at", "created_at"]
        read_only_fields = fields

    def get_user_ids(self, obj: Conversation) -> list[int]:
        return list(obj.participant_ids)

    @extend_schema_field(UserSerializer(many=True))
    def get_participants(self, obj: Conversation) -> list[dict[str, Any]]:
        return UserSerializer([obj.user_lower, obj.user_higher], many=True).data


class ConversationSummarySerializer(serializers.Serializer):
    """Serializes chat.services.ConversationSummary."""

    conversation_id = serializers.IntegerField()
    counterpart_id = serializers.IntegerField()
    counterpart_name = serializers.CharField()
    last_message = serializers.CharField(allow_null=True)
    last_message_at = serializers.DateTimeField(allow_null=True)
    unread_count = serializers.IntegerField()
    created_at = serializers.DateTimeField()


def message_received_event(message: Message) -> dict[str, Any]:
    """Build the live frame pushed to a conversation's group."""
    return {
        "type": LIVE_CONFIG.FRAME_MESSAGE_RECEIVED,
        "message": dict(MessageSerializer(message).data),
    }


# =============================================================================
# Write Serializers
# =============================================================================


class MessageCreateSerializer(serializers.Serializer):
    """
    Serializer for sending a message over HTTP.

    Exactly one of conversation_id or recipient_id is required. With
    recipient_id the conversation is created on first contact.

    sender is optional; when given it must match the authenticated user.
    Attachments arrive as multipart file parts under the same key.
    """

    conversation_id = serializers.IntegerField(required=False, min_value=1)
    recipient_id = serializers.IntegerField(required=False, min_value=1)
    sender = serializers.IntegerField(required=False)
    text = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        trim_whitespace=False,
    )
    attachments = serializers.ListField(
        child=serializers.FileField(allow_empty_file=True),
        required=False,
        default=list,
    )

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        has_conversation = attrs.get("conversation_id") is not None
        has_recipient = attrs.get("recipient_id") is not None
        if has_conversation == has_recipient:
            raise serializers.ValidationError(
                "Provide exactly one of conversation_id or recipient_id."
            )
        return attrs

    def attachment_payloads(self) -> list[AttachmentPayload]:
        return [
            AttachmentPayload(
                file_name=upload.name,
                data=upload.read(),
                content_type=getattr(upload, "content_type", "") or "",
            )
            for upload in self.validated_data["attachments"]
        ]


class Base64AttachmentSerializer(serializers.Serializer):
    """Attachment embedded in a WebSocket message frame."""

    file_name = serializers.CharField(max_length=255)
    content_type = serializers.CharField(
        max_length=127, required=False, allow_blank=True, default=""
    )
    data = serializers.CharField(help_text="Base64-encoded payload")

    def validate_data(self, value: str) -> bytes:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise serializers.ValidationError("Attachment data is not valid base64.")

    def to_payload(self) -> AttachmentPayload:
        return AttachmentPayload(**self.validated_data)


class ConversationCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(
        min_value=1,
        help_text="The other participant",
    )


class MarkReadSerializer(serializers.Serializer):
    """
    Mark-read request.

    user_id is optional; when given it must be the authenticated user.
    """

    conversation_id = serializers.IntegerField(min_value=1)
    user_id = serializers.IntegerField(required=False)
