"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation management (with participants inline)
- Participant viewing
- Message moderation (with attachments and reactions inline)

Message status is read-only here: it only changes through the FSM
transitions in the service layer.
"""

from django.contrib import admin

from chat.models import (
    Conversation,
    DirectConversationPair,
    Message,
    MessageAttachment,
    MessageReaction,
    Participant,
)


class ParticipantInline(admin.TabularInline):
    """Inline display of participants in conversation admin."""

    model = Participant
    fk_name = "conversation"
    extra = 0
    readonly_fields = ["created_at", "last_read_at"]
    raw_id_fields = ["user", "added_by"]


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = [
        "id",
        "conversation_type",
        "name",
        "buyer",
        "seller",
        "product_ref",
        "created_at",
        "last_message_at",
    ]
    list_filter = ["conversation_type", "created_at"]
    search_fields = ["name", "product_ref", "id"]
    readonly_fields = ["created_at", "updated_at", "last_message_at"]
    raw_id_fields = ["created_by", "buyer", "seller"]
    inlines = [ParticipantInline]
    ordering = ["-created_at"]


@admin.register(DirectConversationPair)
class DirectConversationPairAdmin(admin.ModelAdmin):
    """Admin interface for DirectConversationPair model."""

    list_display = ["conversation", "user_lower", "user_higher", "product_ref"]
    raw_id_fields = ["conversation", "user_lower", "user_higher"]


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    """Admin interface for Participant model."""

    list_display = [
        "id",
        "conversation",
        "user",
        "role",
        "is_pinned",
        "is_archived",
        "last_read_at",
    ]
    list_filter = ["role", "is_pinned", "is_archived"]
    search_fields = ["user__email", "conversation__name"]
    readonly_fields = ["created_at", "updated_at"]
    raw_id_fields = ["conversation", "user", "added_by"]
    ordering = ["-created_at"]


class MessageAttachmentInline(admin.TabularInline):
    model = MessageAttachment
    extra = 0
    readonly_fields = ["created_at"]


class MessageReactionInline(admin.TabularInline):
    model = MessageReaction
    extra = 0
    readonly_fields = ["created_at"]
    raw_id_fields = ["user"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "status",
        "content_preview",
        "reply_count",
        "created_at",
    ]
    list_filter = ["status", "created_at"]
    search_fields = ["content", "sender__email"]
    readonly_fields = ["status", "created_at", "updated_at", "edited_at", "reply_count"]
    raw_id_fields = ["conversation", "sender", "reply_to"]
    inlines = [MessageAttachmentInline, MessageReactionInline]
    ordering = ["-created_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated content for list display."""
        max_length = 50
        if len(obj.content) > max_length:
            return obj.content[:max_length] + "..."
        return obj.content
