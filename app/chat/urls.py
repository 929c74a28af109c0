"""
URL configuration for chat API.

Mounted at /api/v1/chat/ by config.urls.
"""

from django.urls import path

from chat.views import (
    ConversationListView,
    MarkReadView,
    MessageListView,
    MessageSendView,
    UserConversationListView,
)

app_name = "chat"

urlpatterns = [
    path(
        "conversations/",
        ConversationListView.as_view(),
        name="conversation-list",
    ),
    path(
        "conversations/<int:user_id>/",
        UserConversationListView.as_view(),
        name="user-conversation-list",
    ),
    path(
        "messages/",
        MessageSendView.as_view(),
        name="message-send",
    ),
    path(
        "messages/read/",
        MarkReadView.as_view(),
        name="message-mark-read",
    ),
    path(
        "messages/<int:conversation_id>/",
        MessageListView.as_view(),
        name="message-list",
    ),
]
