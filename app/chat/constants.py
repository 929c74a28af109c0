"""
Constants and configuration for the chat module.

This module centralizes configuration values for:
- Message content limits
- Attachment limits
- Live channel frame types and close codes

Import example:
    from chat.constants import MESSAGE_CONFIG, ATTACHMENT_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Applied to the stripped text
    MAX_TEXT_LENGTH: Final[int] = 10000  # Characters


# =============================================================================
# Attachment Configuration
# =============================================================================


class ATTACHMENT_CONFIG:
    """
    Configuration for message attachments.

    Attachment bytes are stored alongside the message row and travel
    base64-encoded on the wire.
    """

    MAX_ATTACHMENTS_PER_MESSAGE: Final[int] = 10
    MAX_ATTACHMENT_SIZE_BYTES: Final[int] = 5 * 1024 * 1024  # 5 MiB
    MAX_FILE_NAME_LENGTH: Final[int] = 255

    # Used when neither the client nor the file extension names a type
    DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"


# =============================================================================
# Live Channel Configuration
# =============================================================================


class LIVE_CONFIG:
    """Frame types and close codes for the chat WebSocket."""

    # Client -> server
    FRAME_JOIN: Final[str] = "join"
    FRAME_LEAVE: Final[str] = "leave"
    FRAME_MESSAGE: Final[str] = "message"
    FRAME_READ: Final[str] = "read"

    # Server -> client
    FRAME_JOINED: Final[str] = "joined"
    FRAME_LEFT: Final[str] = "left"
    FRAME_ACK: Final[str] = "ack"
    FRAME_READ_DONE: Final[str] = "read"
    FRAME_MESSAGE_RECEIVED: Final[str] = "message_received"
    FRAME_ERROR: Final[str] = "error"

    # WebSocket close codes (4000-4999 are application-defined)
    CLOSE_UNAUTHENTICATED: Final[int] = 4001
