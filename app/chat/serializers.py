"""
Serializers for chat API.

This module provides serializers for the chat system:
- Output serializers for conversations, participants and messages
- Input serializers validating REST request bodies and query strings

Serializer Hierarchy:
    ConversationSerializer: Conversation summary with the caller's own state
    ParticipantSerializer: Participant with user info

    MessageSerializer: Message with attachments and reactions
    MessageAttachmentSerializer: Attachment metadata
    MessageReactionSerializer: A single reaction

    DirectConversationCreateSerializer: {otherUserId, productId?}
    GroupConversationCreateSerializer: {name, memberIds, description?, groupAvatar?}
    ConversationActionSerializer: {action, userIds?, role?}
    MessageCreateSerializer: {conversationId, content, attachments?, replyToId?}
    ... one input serializer per message mutation

Design Decisions:
    - Read and write serializers are separate for clarity
    - Request fields are camelCase (as clients send them) and mapped to
      snake_case service arguments with source=
    - Responses use snake_case field names
    - Business rules (participant checks, blank names, reply targets) live in
      the services; serializers only check shape and types
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import MESSAGE_CONFIG, REACTION_CONFIG
from chat.models import (
    Conversation,
    Message,
    MessageAttachment,
    MessageReaction,
    MessageStatus,
    Participant,
    ParticipantRole,
)


# =============================================================================
# Message Serializers
# =============================================================================


class MessageAttachmentSerializer(serializers.ModelSerializer):
    """Attachment metadata as returned to clients."""

    class Meta:
        model = MessageAttachment
        fields = [
            "id",
            "message_id",
            "url",
            "file_name",
            "file_size",
            "file_type",
            "mime_type",
            "thumbnail_url",
            "created_at",
        ]
        read_only_fields = fields


class MessageReactionSerializer(serializers.ModelSerializer):
    """One emoji reaction by one user."""

    class Meta:
        model = MessageReaction
        fields = [
            "id",
            "user_id",
            "emoji",
            "created_at",
        ]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message representation.

    Used by REST responses, search results and socket events, so the
    client parses a single message shape everywhere.
    """

    sender = UserSerializer(read_only=True)
    status = serializers.CharField(read_only=True)
    is_edited = serializers.BooleanField(read_only=True)
    attachments = MessageAttachmentSerializer(many=True, read_only=True)
    reactions = MessageReactionSerializer(many=True, read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "content",
            "status",
            "reply_to_id",
            "reply_count",
            "attachments",
            "reactions",
            "is_edited",
            "edited_at",
            "created_at",
        ]
        read_only_fields = fields


def message_payload(message: Message) -> dict:
    """Serialize a message for a socket event."""
    return dict(MessageSerializer(message).data)


# =============================================================================
# Conversation Serializers
# =============================================================================


class ParticipantSerializer(serializers.ModelSerializer):
    """Participant with embedded public user info."""

    user = UserSerializer(read_only=True)
    joined_at = serializers.DateTimeField(source="created_at", read_only=True)
    is_online = serializers.SerializerMethodField()

    class Meta:
        model = Participant
        fields = [
            "user",
            "role",
            "joined_at",
            "is_online",
        ]
        read_only_fields = fields

    def get_is_online(self, obj) -> bool:
        from chat.services import PresenceService

        return PresenceService.is_online(obj.user_id)


class ConversationSerializer(serializers.ModelSerializer):
    """
    Conversation summary from the point of view of the requesting user.

    The per-user fields (is_pinned, is_archived, last_read_at, unread_count)
    and last_message are attached to the instance by
    ConversationService (viewer_participant, unread_count, last_message).
    """

    participants = ParticipantSerializer(many=True, read_only=True)
    is_pinned = serializers.SerializerMethodField()
    is_archived = serializers.SerializerMethodField()
    last_read_at = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            "id",
            "conversation_type",
            "name",
            "description",
            "avatar_url",
            "created_by_id",
            "buyer_id",
            "seller_id",
            "product_ref",
            "participants",
            "is_pinned",
            "is_archived",
            "last_read_at",
            "unread_count",
            "last_message",
            "last_message_at",
            "created_at",
        ]
        read_only_fields = fields

    def _viewer(self, obj: Conversation) -> Participant | None:
        return getattr(obj, "viewer_participant", None)

    def get_is_pinned(self, obj: Conversation) -> bool:
        viewer = self._viewer(obj)
        return bool(viewer and viewer.is_pinned)

    def get_is_archived(self, obj: Conversation) -> bool:
        viewer = self._viewer(obj)
        return bool(viewer and viewer.is_archived)

    def get_last_read_at(self, obj: Conversation) -> str | None:
        viewer = self._viewer(obj)
        if viewer is None or viewer.last_read_at is None:
            return None
        return serializers.DateTimeField().to_representation(viewer.last_read_at)

    def get_unread_count(self, obj: Conversation) -> int:
        return getattr(obj, "unread_count", 0)

    def get_last_message(self, obj: Conversation) -> dict | None:
        message = getattr(obj, "last_message", None)
        if message is None:
            return None
        return MessageSerializer(message).data


# =============================================================================
# Conversation Input Serializers
# =============================================================================


class DirectConversationCreateSerializer(serializers.Serializer):
    """Body of POST /conversations for a direct conversation."""

    otherUserId = serializers.IntegerField(source="other_user_id")
    productId = serializers.CharField(
        source="product_ref",
        max_length=100,
        allow_blank=True,
        default="",
    )


class GroupConversationCreateSerializer(serializers.Serializer):
    """Body of POST /conversations?type=group."""

    name = serializers.CharField(max_length=255, allow_blank=True)
    memberIds = serializers.ListField(
        source="member_ids",
        child=serializers.IntegerField(),
    )
    description = serializers.CharField(allow_blank=True, default="")
    groupAvatar = serializers.URLField(
        source="avatar_url",
        max_length=1000,
        allow_blank=True,
        default="",
    )


class ConversationActionSerializer(serializers.Serializer):
    """
    Body of PATCH /conversations/{id}.

    action is validated by the view so that known-but-unsupported actions
    can answer 501 instead of 400.
    """

    action = serializers.CharField()
    userIds = serializers.ListField(
        source="user_ids",
        child=serializers.IntegerField(),
        required=False,
    )
    role = serializers.ChoiceField(
        choices=ParticipantRole.choices,
        default=ParticipantRole.MEMBER,
    )


# =============================================================================
# Message Input Serializers
# =============================================================================


class AttachmentInputSerializer(serializers.Serializer):
    """File metadata supplied by the client after uploading the file."""

    url = serializers.URLField(max_length=1000)
    fileName = serializers.CharField(source="file_name", max_length=255)
    fileSize = serializers.IntegerField(source="file_size", min_value=0)
    fileType = serializers.CharField(source="file_type", max_length=100)
    mimeType = serializers.CharField(
        source="mime_type",
        max_length=100,
        allow_blank=True,
        default="",
    )
    thumbnailUrl = serializers.URLField(
        source="thumbnail_url",
        max_length=1000,
        allow_blank=True,
        default="",
    )


class MessageCreateSerializer(serializers.Serializer):
    """Body of POST /messages."""

    conversationId = serializers.IntegerField(source="conversation_id")
    content = serializers.CharField(
        allow_blank=True,
        default="",
        trim_whitespace=False,
    )
    attachments = AttachmentInputSerializer(
        many=True,
        required=False,
        max_length=MESSAGE_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE,
    )
    replyToId = serializers.IntegerField(
        source="reply_to_id",
        required=False,
        allow_null=True,
    )


class AttachmentCreateSerializer(AttachmentInputSerializer):
    """Body of POST /messages?type=attachment."""

    messageId = serializers.IntegerField(source="message_id")


class ReactionToggleSerializer(serializers.Serializer):
    """Body of POST /messages?type=reaction."""

    messageId = serializers.IntegerField(source="message_id")
    emoji = serializers.CharField(max_length=REACTION_CONFIG.MAX_EMOJI_LENGTH)


class MessageStatusUpdateSerializer(serializers.Serializer):
    """Body of PATCH /messages?type=status."""

    messageId = serializers.IntegerField(source="message_id")
    status = serializers.ChoiceField(choices=MessageStatus.choices)


class MarkReadSerializer(serializers.Serializer):
    """Body of PATCH /messages?type=read."""

    conversationId = serializers.IntegerField(source="conversation_id")


class MessageEditSerializer(serializers.Serializer):
    """Body of PATCH /messages?type=edit."""

    messageId = serializers.IntegerField(source="message_id")
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)


class MessageListQuerySerializer(serializers.Serializer):
    """Query string of GET /messages."""

    conversationId = serializers.IntegerField(source="conversation_id", required=False)
    threadId = serializers.IntegerField(source="thread_id", required=False)
    limit = serializers.IntegerField(min_value=1, required=False)
    before = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        if "conversation_id" not in attrs and "thread_id" not in attrs:
            raise serializers.ValidationError(
                "Either conversationId or threadId is required"
            )
        return attrs


class MessageSearchQuerySerializer(serializers.Serializer):
    """Query string of GET /search/messages."""

    query = serializers.CharField(min_length=1)
    conversationId = serializers.IntegerField(source="conversation_id", required=False)
    limit = serializers.IntegerField(min_value=1, required=False)
