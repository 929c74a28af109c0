"""
Chat application configuration.

This app provides one-to-one chat with:
- Lazily created conversations, one per user pair
- Ordered, persistent message history with attachments
- Read tracking and unread counts
- Live delivery over WebSocket
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
