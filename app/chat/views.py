"""
API views for chat.

URL Structure:
    /api/v1/chat/conversations/                      GET, POST
    /api/v1/chat/conversations/{user_id}/            GET
    /api/v1/chat/messages/                           POST
    /api/v1/chat/messages/read/                      POST
    /api/v1/chat/messages/{conversation_id}/         GET

Design Decisions:
    - Views are thin: validate the request shape, call the service layer,
      serialize the result
    - Service errors (core.exceptions) propagate to the DRF exception
      handler, which renders them with their status code
    - Store calls are retried once on a transient database failure
    - Live publish of a sent message happens in the service, after commit
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.helpers import retry_transient

from chat.permissions import (
    IsConversationParticipant,
    IsRequestingUser,
    ensure_acting_as,
)
from chat.serializers import (
    ConversationCreateSerializer,
    ConversationSerializer,
    ConversationSummarySerializer,
    MarkReadSerializer,
    MessageCreateSerializer,
    MessageSerializer,
)
from chat.services import ConversationService, MessageService, ReadStateService


# =============================================================================
# Conversations
# =============================================================================


class ConversationListView(APIView):
    """
    GET  /api/v1/chat/conversations/
        The caller's conversation summaries, most recent first.

    POST /api/v1/chat/conversations/
        Get or create the conversation with another user.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        description=(
            "Conversation summaries for the current user: counterpart, last "
            "message, unread count. Ordered by last activity; conversations "
            "without messages come last."
        ),
        responses={200: ConversationSummarySerializer(many=True)},
        tags=["Chat - Conversations"],
    )
    def get(self, request):
        summaries = retry_transient(
            ConversationService.list_conversations_for_user, request.user.id
        )
        return Response(ConversationSummarySerializer(summaries, many=True).data)

    @extend_schema(
        operation_id="get_or_create_conversation",
        summary="Get or create conversation",
        request=ConversationCreateSerializer,
        responses={
            200: OpenApiResponse(
                response=ConversationSerializer,
                description="Conversation already existed",
            ),
            201: OpenApiResponse(
                response=ConversationSerializer,
                description="Conversation created",
            ),
            400: OpenApiResponse(description="Same user on both sides"),
            404: OpenApiResponse(description="Other user does not exist"),
        },
        tags=["Chat - Conversations"],
    )
    def post(self, request):
        serializer = ConversationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        conversation, created = retry_transient(
            ConversationService.get_or_create_conversation,
            request.user.id,
            serializer.validated_data["user_id"],
        )
        return Response(
            ConversationSerializer(conversation).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class UserConversationListView(APIView):
    """
    GET /api/v1/chat/conversations/{user_id}/

    Conversation summaries addressed by user id. Only the user themselves
    may read them.
    """

    permission_classes = [IsAuthenticated, IsRequestingUser]

    @extend_schema(
        operation_id="list_user_conversations",
        summary="List conversations for a user",
        responses={
            200: ConversationSummarySerializer(many=True),
            403: OpenApiResponse(description="user_id is not the current user"),
        },
        tags=["Chat - Conversations"],
    )
    def get(self, request, user_id: int):
        summaries = retry_transient(
            ConversationService.list_conversations_for_user, request.user.id
        )
        return Response(ConversationSummarySerializer(summaries, many=True).data)


# =============================================================================
# Messages
# =============================================================================


class MessageListView(APIView):
    """
    GET /api/v1/chat/messages/{conversation_id}/

    Full message history in order (sent_at, then id).
    """

    permission_classes = [IsAuthenticated, IsConversationParticipant]

    @extend_schema(
        operation_id="list_messages",
        summary="List messages",
        responses={
            200: MessageSerializer(many=True),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Conversation not found"),
        },
        tags=["Chat - Messages"],
    )
    def get(self, request, conversation_id: int):
        conversation = retry_transient(
            ConversationService.get_conversation, conversation_id
        )
        self.check_object_permissions(request, conversation)

        messages = retry_transient(MessageService.list_messages, conversation.id)
        return Response(MessageSerializer(messages, many=True).data)


class MessageSendView(APIView):
    """
    POST /api/v1/chat/messages/

    Send a message. Accepts JSON or multipart (for file attachments).
    Passing recipient_id instead of conversation_id starts the
    conversation on first contact.
    """

    permission_classes = [IsAuthenticated]
    parser_classes = [JSONParser, MultiPartParser, FormParser]

    @extend_schema(
        operation_id="send_message",
        summary="Send message",
        request={
            "application/json": MessageCreateSerializer,
            "multipart/form-data": MessageCreateSerializer,
        },
        responses={
            201: MessageSerializer,
            400: OpenApiResponse(description="Empty message or limits exceeded"),
            403: OpenApiResponse(description="Not a participant or sender mismatch"),
            404: OpenApiResponse(description="Conversation or recipient not found"),
        },
        tags=["Chat - Messages"],
    )
    def post(self, request):
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        ensure_acting_as(request.user.id, data.get("sender"))
        attachments = serializer.attachment_payloads()
        # A rejected send must not open a conversation with the recipient
        MessageService.validate_content(data["text"], attachments)

        conversation_id = data.get("conversation_id")
        if conversation_id is None:
            conversation, _ = retry_transient(
                ConversationService.get_or_create_conversation,
                request.user.id,
                data["recipient_id"],
            )
            conversation_id = conversation.id

        message = retry_transient(
            MessageService.send_message,
            conversation_id=conversation_id,
            sender_id=request.user.id,
            text=data["text"],
            attachments=attachments,
        )
        return Response(
            MessageSerializer(message).data,
            status=status.HTTP_201_CREATED,
        )


class MarkReadView(APIView):
    """
    POST /api/v1/chat/messages/read/

    Mark the other participant's messages in a conversation as read.
    Repeating the call is harmless.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        request=MarkReadSerializer,
        responses={
            204: OpenApiResponse(description="Marked as read"),
            403: OpenApiResponse(description="Not a participant or user mismatch"),
            404: OpenApiResponse(description="Conversation not found"),
        },
        tags=["Chat - Messages"],
    )
    def post(self, request):
        serializer = MarkReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        ensure_acting_as(request.user.id, data.get("user_id"))

        retry_transient(
            ReadStateService.mark_read, data["conversation_id"], request.user.id
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
