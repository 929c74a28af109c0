"""
WebSocket consumer for live chat.

One connection per client at ws/chat/. The client joins the conversations
it is viewing and receives every message sent to them while joined.

Authentication:
    chat.middleware.JWTAuthMiddleware resolves the token to scope["user"].
    Anonymous connections are closed with 4001.

Groups:
    Joining a conversation adds the consumer's channel_name to that
    conversation's channel-layer group (chat.broadcast). Stored messages
    arrive as chat.message_received layer events.

Frames (from client):
    {"type": "join", "conversation_id": 7}
    {"type": "leave", "conversation_id": 7}
    {"type": "message", "conversation_id": 7, "text": "hi",
     "attachments": [{"file_name": "a.png", "content_type": "image/png",
                      "data": "<base64>"}],
     "sender_id": 3, "client_message_id": "c-1"}
    {"type": "read", "conversation_id": 7}

Frames (to client):
    joined / left: membership confirmation
    ack: message stored (message_id, client_message_id)
    read: mark-read result (updated count)
    message_received: a message sent to a joined conversation
    error: error_code + message; the connection stays open
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from core.exceptions import BaseApplicationError, ValidationError
from core.helpers import retry_transient

from chat.broadcast import get_registry
from chat.constants import LIVE_CONFIG
from chat.permissions import ensure_acting_as
from chat.serializers import Base64AttachmentSerializer
from chat.services import ConversationService, MessageService, ReadStateService

if TYPE_CHECKING:
    from typing import Any

    from chat.services import AttachmentPayload

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat.

    Handles:
        - Connection authentication
        - Joining/leaving conversation groups (participants only)
        - Sending messages (persist, then publish to the group)
        - Marking conversations read
    """

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            logger.warning("Rejected unauthenticated chat connection")
            await self.close(code=LIVE_CONFIG.CLOSE_UNAUTHENTICATED)
            return

        self.user = user
        await self.accept()
        logger.info(f"User {user.id} connected as {self.channel_name}")

    async def disconnect(self, close_code):
        left = await get_registry().unregister(self.channel_name)
        if left:
            logger.info(
                f"User {self.user.id} disconnected ({close_code}); "
                f"left {len(left)} conversation group(s)"
            )

    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        """Decode a frame, answering malformed ones with an error frame."""
        content = None
        if text_data:
            try:
                content = await self.decode_json(text_data)
            except ValueError:
                content = None

        if not isinstance(content, dict):
            await self._send_error(
                ValidationError(
                    "Frames must be JSON objects", error_code="INVALID_FRAME"
                )
            )
            return
        await self.receive_json(content, **kwargs)

    async def receive_json(self, content, **kwargs):
        handlers = {
            LIVE_CONFIG.FRAME_JOIN: self._handle_join,
            LIVE_CONFIG.FRAME_LEAVE: self._handle_leave,
            LIVE_CONFIG.FRAME_MESSAGE: self._handle_message,
            LIVE_CONFIG.FRAME_READ: self._handle_read,
        }
        frame_type = content.get("type")
        handler = handlers.get(frame_type)

        try:
            if handler is None:
                raise ValidationError(
                    f"Unknown frame type: {frame_type}",
                    error_code="UNKNOWN_FRAME",
                )
            await handler(content)
        except BaseApplicationError as exc:
            logger.info(f"Frame {frame_type!r} from user {self.user.id} failed: {exc}")
            await self._send_error(exc)

    # -------------------------------------------------------------------------
    # Frame handlers
    # -------------------------------------------------------------------------

    async def _handle_join(self, content: dict[str, Any]) -> None:
        conversation_id = self._int_field(content, "conversation_id")
        await self._call_store(
            ConversationService.require_participant, conversation_id, self.user.id
        )
        await get_registry().join(self.channel_name, conversation_id)
        await self.send_json(
            {"type": LIVE_CONFIG.FRAME_JOINED, "conversation_id": conversation_id}
        )

    async def _handle_leave(self, content: dict[str, Any]) -> None:
        conversation_id = self._int_field(content, "conversation_id")
        await get_registry().leave(self.channel_name, conversation_id)
        await self.send_json(
            {"type": LIVE_CONFIG.FRAME_LEFT, "conversation_id": conversation_id}
        )

    async def _handle_message(self, content: dict[str, Any]) -> None:
        conversation_id = self._int_field(content, "conversation_id")
        ensure_acting_as(
            self.user.id, self._int_field(content, "sender_id", required=False)
        )
        text = content.get("text") or ""
        if not isinstance(text, str):
            raise ValidationError("text must be a string", error_code="INVALID_FRAME")
        attachments = self._attachments(content.get("attachments") or [])

        message = await self._call_store(
            MessageService.send_message,
            conversation_id=conversation_id,
            sender_id=self.user.id,
            text=text,
            attachments=attachments,
        )
        await self.send_json(
            {
                "type": LIVE_CONFIG.FRAME_ACK,
                "conversation_id": conversation_id,
                "message_id": message.id,
                "client_message_id": content.get("client_message_id"),
                "sent_at": message.sent_at.isoformat(),
            }
        )

    async def _handle_read(self, content: dict[str, Any]) -> None:
        conversation_id = self._int_field(content, "conversation_id")
        updated = await self._call_store(
            ReadStateService.mark_read, conversation_id, self.user.id
        )
        await self.send_json(
            {
                "type": LIVE_CONFIG.FRAME_READ_DONE,
                "conversation_id": conversation_id,
                "updated": updated,
            }
        )

    # -------------------------------------------------------------------------
    # Channel layer handlers
    # -------------------------------------------------------------------------

    async def chat_message_received(self, event):
        """
        Handle chat.message_received events from the channel layer.

        Sends the stored message frame to the WebSocket client.
        """
        await self.send_json(event["event"])

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _call_store(self, func, *args, **kwargs):
        return await database_sync_to_async(retry_transient)(func, *args, **kwargs)

    async def _send_error(self, exc: BaseApplicationError) -> None:
        frame = {
            "type": LIVE_CONFIG.FRAME_ERROR,
            "error_code": exc.error_code,
            "message": exc.message,
        }
        if exc.details:
            frame["details"] = exc.details
        await self.send_json(frame)

    @staticmethod
    def _int_field(content: dict[str, Any], key: str, required: bool = True) -> int | None:
        value = content.get(key)
        if value is None and not required:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(
                f"{key} must be an integer",
                error_code="INVALID_FRAME",
                details={"field": key},
            )
        return value

    @staticmethod
    def _attachments(items: Any) -> list[AttachmentPayload]:
        if not isinstance(items, list):
            raise ValidationError(
                "attachments must be a list", error_code="INVALID_ATTACHMENT"
            )
        payloads = []
        for item in items:
            serializer = Base64AttachmentSerializer(data=item)
            if not serializer.is_valid():
                raise ValidationError(
                    "Invalid attachment",
                    error_code="INVALID_ATTACHMENT",
                    details=serializer.errors,
                )
            payloads.append(serializer.to_payload())
        return payloads
