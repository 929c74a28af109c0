"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation browsing
- Message moderation (read-only attachments)
"""

from django.contrib import admin

from chat.models import Conversation, Message, MessageAttachment


class MessageAttachmentInline(admin.TabularInline):
    model = MessageAttachment
    extra = 0
    fields = ["file_name", "content_type", "size", "created_at"]
    readonly_fields = fields


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = ["id", "user_lower", "user_higher", "last_message_at", "created_at"]
    search_fields = ["user_lower__email", "user_higher__email"]
    raw_id_fields = ["user_lower", "user_higher"]
    readonly_fields = ["last_message_at", "created_at", "updated_at"]
    ordering = ["-last_message_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = ["id", "conversation", "sender", "sent_at", "is_read"]
    list_filter = ["is_read", "sent_at"]
    search_fields = ["text", "sender__email"]
    raw_id_fields = ["conversation", "sender"]
    readonly_fields = ["sent_at", "read_at", "created_at", "updated_at"]
    inlines = [MessageAttachmentInline]
