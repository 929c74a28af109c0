"""
Chat app for real-time messaging between community members.

This app handles:
- Conversations between two users (created on first contact)
- Message sending and history
- Read state and unread counts
- WebSocket live delivery (process-local broadcast registry)

Related apps:
    - authentication: User model for participants

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See broadcast.py for conversation group fan-out.

Usage:
    from chat.services import ConversationService, MessageService

    conversation, _ = ConversationService.get_or_create_conversation(a.id, b.id)
    MessageService.send_message(conversation.id, a.id, "Hello!")
"""
