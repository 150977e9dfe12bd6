"""
Chat system models.

This module defines the data models for buyer/seller messaging:
- Direct conversations between two users, optionally about one product
- Group conversations with role-based membership

Models:
    Conversation: Container for messages between participants
    DirectConversationPair: Uniqueness guard for direct conversations
    Participant: A user's membership plus per-user state (pin, archive, read marker)
    Message: A message with a forward-only delivery status
    MessageAttachment: File metadata owned by a message
    MessageReaction: One emoji reaction by one user on one message

Design Decisions:
    - Direct conversations are found-or-created through DirectConversationPair,
      whose unique constraint makes concurrent first contact safe
    - Conversations are never hard-deleted; archiving is per participant
    - Read state is a per-participant "read up to" timestamp, not per-message receipts
    - Message.status is a django-fsm state machine; transitions only move forward
      (or to FAILED), never back
    - Replies reference a parent in the same conversation; the parent keeps a
      denormalized reply_count updated in the same transaction as the insert
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django_fsm import FSMField, transition

from core.models import BaseModel


class ConversationType(models.TextChoices):
    """
    Type of conversation.

    DIRECT: Exactly two participants (buyer and seller), optional product
    GROUP: Named conversation with an owner and role-based membership
    """

    DIRECT = "DIRECT", "Direct"
    GROUP = "GROUP", "Group"


class ParticipantRole(models.TextChoices):
    """
    Role within a conversation.

    Hierarchy: OWNER > ADMIN > MODERATOR > MEMBER

    OWNER: Creator of a group
    ADMIN: Can add members to a group
    MODERATOR: Reserved for moderation tooling, same rights as MEMBER here
    MEMBER: Can read and send messages (both direct participants are MEMBER)
    """

    OWNER = "OWNER", "Owner"
    ADMIN = "ADMIN", "Admin"
    MODERATOR = "MODERATOR", "Moderator"
    MEMBER = "MEMBER", "Member"


class MessageStatus(models.TextChoices):
    """
    Delivery status of a message.

    Forward order: SENDING < SENT < DELIVERED < READ.
    FAILED is reachable from any non-terminal status. READ and FAILED are terminal.
    """

    SENDING = "SENDING", "Sending"
    SENT = "SENT", "Sent"
    DELIVERED = "DELIVERED", "Delivered"
    READ = "READ", "Read"
    FAILED = "FAILED", "Failed"


# Roles allowed to add members to a group conversation
GROUP_MANAGER_ROLES = (ParticipantRole.OWNER, ParticipantRole.ADMIN)


class Conversation(BaseModel):
    """
    A conversation between two or more users.

    Conversation Types:
        DIRECT: buyer and seller are set; product_ref optionally links the
            listing the conversation is about. name/description are empty.
        GROUP: name is required; description, avatar_url optional;
            created_by is the OWNER.

    Fields:
        conversation_type: DIRECT or GROUP
        name: Group display name
        description: Group description
        avatar_url: Group avatar
        created_by: User who created the conversation
        buyer: DIRECT initiator
        seller: DIRECT counterpart
        product_ref: External product id for DIRECT conversations ("" if none)
        last_message_at: Timestamp of the most recent message (activity sort key)
    """

    conversation_type = models.CharField(
        max_length=10,
        choices=ConversationType.choices,
        db_index=True,
        help_text="Type of conversation: direct or group",
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Group name (empty for direct conversations)",
    )
    description = models.TextField(
        blank=True,
        default="",
        help_text="Group description",
    )
    avatar_url = models.URLField(
        max_length=1000,
        blank=True,
        default="",
        help_text="Group avatar URL",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_conversations",
        help_text="User who created this conversation",
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="buyer_conversations",
        help_text="Initiating user of a direct conversation",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="seller_conversations",
        help_text="Counterpart user of a direct conversation",
    )
    product_ref = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Product the direct conversation is about (empty if none)",
    )
    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of the most recent message",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-created_at"]

    def __str__(self) -> str:
        """Return human-readable representation."""
        if self.conversation_type == ConversationType.GROUP:
            return f"Group: {self.name}"
        return f"Direct: {self.buyer_id} -> {self.seller_id}"

    @property
    def is_group(self) -> bool:
        """Whether this is a group conversation."""
        return self.conversation_type == ConversationType.GROUP

    def get_participant_for_user(self, user_id) -> Participant | None:
        """Return the participant record of a user, or None."""
        return self.participants.filter(user_id=user_id).first()


class DirectConversationPair(models.Model):
    """
    Enforces uniqueness of direct conversations.

    The pair is stored in canonical order (lower user id first) so the
    lookup is independent of who initiates. product_ref is part of the key:
    the same two users get one conversation per product plus one general one.

    Constraints:
        - UniqueConstraint(user_lower, user_higher, product_ref)
        - CheckConstraint(user_lower_id < user_higher_id)
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The direct conversation this pair represents",
    )
    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this conversation pair",
    )
    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this conversation pair",
    )
    product_ref = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Product reference, empty for a general conversation",
    )

    class Meta:
        db_table = "chat_direct_conversation_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher", "product_ref"],
                name="unique_direct_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id}, {self.product_ref!r})"

    @staticmethod
    def canonical_ids(user_a_id: int, user_b_id: int) -> tuple[int, int]:
        """Return the two user ids in (lower, higher) order."""
        return (user_a_id, user_b_id) if user_a_id < user_b_id else (user_b_id, user_a_id)


class Participant(BaseModel):
    """
    A user's membership in a conversation and their private state.

    Only the owning user mutates is_archived, is_pinned and last_read_at.

    Read State:
        A message is read by this participant iff
        message.created_at <= last_read_at.
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="The conversation",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_participations",
        help_text="The participating user",
    )
    role = models.CharField(
        max_length=10,
        choices=ParticipantRole.choices,
        default=ParticipantRole.MEMBER,
        help_text="Role within the conversation",
    )
    added_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who added this participant (null for creators)",
    )
    is_archived = models.BooleanField(
        default=False,
        help_text="Conversation archived by this participant",
    )
    is_pinned = models.BooleanField(
        default=False,
        help_text="Conversation pinned by this participant",
    )
    last_read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Messages created at or before this time are read",
    )

    class Meta:
        db_table = "chat_participant"
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                name="unique_conversation_participant",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "conversation"], name="chat_participant_user_idx"),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Participant({self.user_id} in {self.conversation_id}, {self.role})"

    @property
    def can_manage_members(self) -> bool:
        """Whether this participant may add members to a group."""
        return self.role in GROUP_MANAGER_ROLES

    def has_read(self, message: Message) -> bool:
        """Whether the given message is read by this participant."""
        return self.last_read_at is not None and message.created_at <= self.last_read_at


class Message(BaseModel):
    """
    A message within a conversation.

    Status Machine (django-fsm):
        SENDING -> SENT -> DELIVERED -> READ
        SENT -> READ (read without a delivery ack)
        SENDING | SENT | DELIVERED -> FAILED

    Threading:
        reply_to points at a message in the same conversation; the parent's
        reply_count is incremented with the reply insert.
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="The conversation this message belongs to",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_messages",
        help_text="User who sent this message",
    )
    content = models.TextField(
        help_text="Message text",
    )
    status = FSMField(
        default=MessageStatus.SENDING,
        choices=MessageStatus.choices,
        db_index=True,
        protected=True,
        help_text="Delivery status",
    )
    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Parent message for thread replies",
    )
    reply_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of replies referencing this message",
    )
    edited_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the content was last edited",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["conversation", "created_at"],
                name="chat_message_conv_created_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Message({self.id} in {self.conversation_id}, {self.status})"

    @property
    def is_edited(self) -> bool:
        """Whether the message content was edited."""
        return self.edited_at is not None

    # -------------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------------

    @transition(field=status, source=MessageStatus.SENDING, target=MessageStatus.SENT)
    def mark_sent(self):
        """Message durably stored."""

    @transition(field=status, source=MessageStatus.SENT, target=MessageStatus.DELIVERED)
    def mark_delivered(self):
        """Message reached a recipient's device."""

    @transition(
        field=status,
        source=[MessageStatus.SENT, MessageStatus.DELIVERED],
        target=MessageStatus.READ,
    )
    def mark_read(self):
        """Message read by a recipient."""

    @transition(
        field=status,
        source=[MessageStatus.SENDING, MessageStatus.SENT, MessageStatus.DELIVERED],
        target=MessageStatus.FAILED,
    )
    def mark_failed(self):
        """Message could not be sent."""


# Transition method for each target status
STATUS_TRANSITIONS = {
    MessageStatus.SENT: "mark_sent",
    MessageStatus.DELIVERED: "mark_delivered",
    MessageStatus.READ: "mark_read",
    MessageStatus.FAILED: "mark_failed",
}


class MessageAttachment(BaseModel):
    """
    File metadata attached to a message.

    The file itself lives in external storage; only its URL and metadata
    are stored. Attachments are created with their message or appended
    later by the message's sender.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="attachments",
        help_text="Owning message",
    )
    url = models.URLField(
        max_length=1000,
        help_text="Location of the uploaded file",
    )
    file_name = models.CharField(
        max_length=255,
        help_text="Original file name",
    )
    file_size = models.PositiveBigIntegerField(
        help_text="File size in bytes",
    )
    file_type = models.CharField(
        max_length=100,
        help_text="Coarse file type (image, document, ...)",
    )
    mime_type = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="MIME type",
    )
    thumbnail_url = models.URLField(
        max_length=1000,
        blank=True,
        default="",
        help_text="Preview image URL",
    )

    class Meta:
        db_table = "chat_message_attachment"
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Attachment({self.file_name} on {self.message_id})"


class MessageReaction(BaseModel):
    """
    An emoji reaction by a user on a message.

    (message, user, emoji) is unique; reacting again with the same emoji
    removes the reaction.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="reactions",
        help_text="Message reacted to",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_reactions",
        help_text="Reacting user",
    )
    emoji = models.CharField(
        max_length=32,
        help_text="Emoji character sequence",
    )

    class Meta:
        db_table = "chat_message_reaction"
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user", "emoji"],
                name="unique_message_user_emoji",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Reaction({self.emoji} by {self.user_id} on {self.message_id})"
