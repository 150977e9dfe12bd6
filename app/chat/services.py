"""
Chat system service layer.

This module provides the business logic for the chat system, shared by the
REST views and the WebSocket consumer.

Services:
    ConversationService: Direct find-or-create, groups, membership, pin/archive
    MessageService: Send, edit, list, threads, attachments
    ReactionService: Emoji reaction toggle
    ReadStatusService: Read markers and message delivery status
    MessageSearchService: Content search over the caller's conversations
    PresenceService: Online tracking by open socket count

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures raise core.exceptions (ForbiddenError, ...)
    - Unexpected failures propagate and become a generic 500 at the boundary
    - Writes run in a transaction; real-time pushes are queued with
      transaction.on_commit (see chat.realtime) so they follow the commit
    - Callers are the authenticated user objects handed in by the transport

Usage:
    from chat.services import ConversationService, MessageService

    # Buyer contacts a seller about a product
    conversation, created = ConversationService.get_or_create_direct(
        initiator=buyer,
        other_user_id=seller.id,
        product_ref="sku-123",
    )

    # Send a message
    message = MessageService.send_message(
        conversation_id=conversation.id,
        sender=buyer,
        content="Is this still available?",
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db.models import Count, F, OuterRef, Q, Subquery
from django.db.models.functions import Coalesce
from django.utils import timezone
from django_fsm import can_proceed

from core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    NotImplementedFeatureError,
    ValidationError,
)
from core.services import BaseService

from chat import realtime
from chat.constants import (
    CHAT_EVENTS,
    MESSAGE_CONFIG,
    PRESENCE_CONFIG,
    REACTION_CONFIG,
)
from chat.models import (
    STATUS_TRANSITIONS,
    Conversation,
    ConversationType,
    DirectConversationPair,
    Message,
    MessageAttachment,
    MessageReaction,
    MessageStatus,
    Participant,
    ParticipantRole,
)
from chat.serializers import message_payload

if TYPE_CHECKING:
    from datetime import datetime

    from authentication.models import User


# =============================================================================
# Shared helpers
# =============================================================================


def _get_conversation(conversation_id) -> Conversation:
    conversation = Conversation.objects.filter(id=conversation_id).first()
    if conversation is None:
        raise NotFoundError(
            "Conversation not found",
            error_code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": conversation_id},
        )
    return conversation


def _require_participant(conversation_id, user) -> Participant:
    """
    Return the caller's participant row for a conversation.

    Raises:
        NotFoundError: Conversation does not exist
        ForbiddenError: Caller is not a participant
    """
    participant = (
        Participant.objects.select_related("conversation")
        .filter(conversation_id=conversation_id, user_id=user.id)
        .first()
    )
    if participant is not None:
        return participant

    _get_conversation(conversation_id)
    raise ForbiddenError(
        "You are not a participant in this conversation",
        error_code="NOT_PARTICIPANT",
        details={"conversation_id": conversation_id},
    )


def _get_message(message_id, *, for_update: bool = False) -> Message:
    queryset = Message.objects.select_related("sender")
    if for_update:
        queryset = queryset.select_for_update()
    message = queryset.filter(id=message_id).first()
    if message is None:
        raise NotFoundError(
            "Message not found",
            error_code="MESSAGE_NOT_FOUND",
            details={"message_id": message_id},
        )
    return message


def _clean_content(content: str | None, *, allow_empty: bool = False) -> str:
    content = (content or "").strip()
    if not content and not allow_empty:
        raise ValidationError(
            "Message content cannot be empty",
            error_code="EMPTY_CONTENT",
        )
    if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"Message content exceeds {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
            error_code="CONTENT_TOO_LONG",
            details={"max_length": MESSAGE_CONFIG.MAX_CONTENT_LENGTH},
        )
    return content


def _message_queryset():
    return Message.objects.select_related("sender").prefetch_related(
        "attachments", "reactions"
    )


# =============================================================================
# Conversation Service
# =============================================================================


class ConversationService(BaseService):
    """
    Service for conversation lifecycle and membership.

    Methods:
        get_or_create_direct: Idempotent direct conversation lookup-or-insert
        create_group: Create a group with its owner and members
        add_group_member: Add one user to a group
        list_for_user: Caller's conversations, pinned first then by activity
        get_for_participant: One conversation summary for a participant
        toggle_archive: Flip the caller's archived flag
        toggle_pin: Flip the caller's pinned flag
        reject_unsupported_action: Group actions that are not implemented
    """

    UNSUPPORTED_ACTIONS = ("leave", "removeParticipant", "updateGroupInfo")

    @classmethod
    def _find_direct(cls, user_lower_id: int, user_higher_id: int, product_ref: str):
        pair = (
            DirectConversationPair.objects.select_related("conversation")
            .filter(
                user_lower_id=user_lower_id,
                user_higher_id=user_higher_id,
                product_ref=product_ref,
            )
            .first()
        )
        return pair.conversation if pair else None

    @classmethod
    def get_or_create_direct(
        cls,
        initiator: User,
        other_user_id: int,
        product_ref: str = "",
    ) -> tuple[Conversation, bool]:
        """
        Find or create the direct conversation between two users.

        The lookup is independent of who initiates: the pair is stored in
        canonical order in DirectConversationPair. On creation the initiator
        becomes the buyer and the other user the seller.

        Implementation:
            1. Validate the other user exists and is not the caller
            2. Look up an existing pair for (lower, higher, product_ref)
            3. Otherwise insert conversation + pair + two MEMBER participants
               in one transaction
            4. If the insert loses a race (IntegrityError on the pair's
               unique constraint), return the row the winner created

        Args:
            initiator: The caller (buyer)
            other_user_id: The counterpart (seller)
            product_ref: Optional product reference ("" for none)

        Returns:
            (conversation, created)

        Raises:
            ValidationError: Caller tried to message themself
            NotFoundError: Other user does not exist or is inactive
        """
        cls.require_authenticated(initiator)
        product_ref = (product_ref or "").strip()

        if initiator.id == other_user_id:
            raise ValidationError(
                "Cannot create a direct conversation with yourself",
                error_code="SAME_USER",
            )

        user_model = get_user_model()
        if not user_model.objects.filter(id=other_user_id, is_active=True).exists():
            raise NotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": other_user_id},
            )

        user_lower_id, user_higher_id = DirectConversationPair.canonical_ids(
            initiator.id, other_user_id
        )

        existing = cls._find_direct(user_lower_id, user_higher_id, product_ref)
        if existing is not None:
            cls.get_logger().debug(
                f"Found existing direct conversation {existing.id} "
                f"between users {user_lower_id} and {user_higher_id}"
            )
            return existing, False

        try:
            with cls.atomic():
                conversation = Conversation.objects.create(
                    conversation_type=ConversationType.DIRECT,
                    created_by=initiator,
                    buyer=initiator,
                    seller_id=other_user_id,
                    product_ref=product_ref,
                )
                DirectConversationPair.objects.create(
                    conversation=conversation,
                    user_lower_id=user_lower_id,
                    user_higher_id=user_higher_id,
                    product_ref=product_ref,
                )
                Participant.objects.bulk_create(
                    [
                        Participant(conversation=conversation, user_id=initiator.id),
                        Participant(conversation=conversation, user_id=other_user_id),
                    ]
                )
        except IntegrityError:
            # Concurrent first contact: the other request committed first
            pair = (
                DirectConversationPair.objects.select_related("conversation")
                .filter(
                    user_lower_id=user_lower_id,
                    user_higher_id=user_higher_id,
                    product_ref=product_ref,
                )
                .first()
            )
            if pair is None:
                raise ConflictError(
                    "Direct conversation could not be created",
                    error_code="DIRECT_CONVERSATION_CONFLICT",
                )
            cls.get_logger().info(
                f"Lost direct conversation race for users {user_lower_id} and "
                f"{user_higher_id}, using {pair.conversation_id}"
            )
            return pair.conversation, False

        realtime.subscribe_user(initiator.id, conversation.id)
        realtime.subscribe_user(other_user_id, conversation.id)

        cls.get_logger().info(
            f"Created direct conversation {conversation.id} "
            f"between users {user_lower_id} and {user_higher_id}"
        )
        return conversation, True

    @classmethod
    def create_group(
        cls,
        creator: User,
        name: str,
        member_ids: list[int],
        description: str = "",
        avatar_url: str = "",
    ) -> Conversation:
        """
        Create a new group conversation.

        The creator is always a participant with the OWNER role. Members
        are deduplicated and added as MEMBER.

        Args:
            creator: User creating the group (becomes owner)
            name: Required group name
            member_ids: Users to add; must not be empty
            description: Optional description
            avatar_url: Optional avatar URL

        Raises:
            ValidationError: Blank name, empty member list, unknown members
        """
        cls.require_authenticated(creator)

        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required", error_code="NAME_REQUIRED")
        if not member_ids:
            raise ValidationError(
                "A group needs at least one member",
                error_code="MEMBERS_REQUIRED",
            )

        # dict preserves the caller's order while removing duplicates
        unique_ids = [uid for uid in dict.fromkeys(member_ids) if uid != creator.id]
        user_model = get_user_model()
        found = set(
            user_model.objects.filter(id__in=unique_ids, is_active=True).values_list(
                "id", flat=True
            )
        )
        missing = [uid for uid in unique_ids if uid not in found]
        if missing:
            raise ValidationError(
                "Some members do not exist",
                error_code="INVALID_MEMBERS",
                details={"user_ids": missing},
            )

        with cls.atomic():
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.GROUP,
                name=name,
                description=(description or "").strip(),
                avatar_url=avatar_url or "",
                created_by=creator,
            )
            participants = [
                Participant(
                    conversation=conversation,
                    user_id=creator.id,
                    role=ParticipantRole.OWNER,
                )
            ]
            participants.extend(
                Participant(
                    conversation=conversation,
                    user_id=uid,
                    role=ParticipantRole.MEMBER,
                    added_by=creator,
                )
                for uid in unique_ids
            )
            Participant.objects.bulk_create(participants)

            for participant in participants:
                realtime.subscribe_user(participant.user_id, conversation.id)

        cls.get_logger().info(
            f"Created group conversation {conversation.id} "
            f"with {len(participants)} participants"
        )
        return conversation

    @classmethod
    def add_group_member(
        cls,
        conversation_id: int,
        user_id: int,
        added_by: User,
        role: str = ParticipantRole.MEMBER,
    ) -> Participant:
        """
        Add a user to a group conversation.

        Args:
            conversation_id: Target group
            user_id: User to add
            added_by: Caller; must be the group's OWNER or an ADMIN
            role: Role of the new participant (OWNER cannot be granted)

        Raises:
            NotFoundError: Conversation or user does not exist
            ValidationError: Not a group, or OWNER role requested
            ForbiddenError: Caller cannot manage members
            ConflictError: User is already a participant
        """
        cls.require_authenticated(added_by)
        conversation = _get_conversation(conversation_id)

        if not conversation.is_group:
            raise ValidationError(
                "Members can only be added to group conversations",
                error_code="NOT_GROUP",
            )
        if role == ParticipantRole.OWNER:
            raise ValidationError(
                "A group has exactly one owner",
                error_code="INVALID_ROLE",
            )

        adder = conversation.get_participant_for_user(added_by.id)
        if adder is None or not adder.can_manage_members:
            raise ForbiddenError(
                "Only the owner or an admin can add members",
                error_code="PERMISSION_DENIED",
            )

        if not get_user_model().objects.filter(id=user_id, is_active=True).exists():
            raise NotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": user_id},
            )

        if conversation.participants.filter(user_id=user_id).exists():
            raise ConflictError(
                "User is already a participant",
                error_code="ALREADY_PARTICIPANT",
                details={"user_id": user_id},
            )

        try:
            with cls.atomic():
                participant = Participant.objects.create(
                    conversation=conversation,
                    user_id=user_id,
                    role=role,
                    added_by=added_by,
                )
        except IntegrityError:
            raise ConflictError(
                "User is already a participant",
                error_code="ALREADY_PARTICIPANT",
                details={"user_id": user_id},
            )

        realtime.subscribe_user(user_id, conversation.id)
        realtime.broadcast_to_conversation(
            conversation.id,
            CHAT_EVENTS.CONVERSATION_UPDATED,
            {
                "conversation_id": conversation.id,
                "participant_added": {"user_id": user_id, "role": role},
            },
        )

        cls.get_logger().info(
            f"User {added_by.id} added user {user_id} to conversation "
            f"{conversation.id} as {role}"
        )
        return participant

    @classmethod
    def add_group_members(
        cls,
        conversation_id: int,
        user_ids: list[int],
        added_by: User,
        role: str = ParticipantRole.MEMBER,
    ) -> list[Participant]:
        """
        Add several users to a group, all or nothing.

        Raises:
            ValidationError: Empty user list
            (plus everything add_group_member raises, for the first failure)
        """
        if not user_ids:
            raise ValidationError(
                "userIds must not be empty",
                error_code="MEMBERS_REQUIRED",
            )
        with cls.atomic():
            return [
                cls.add_group_member(conversation_id, user_id, added_by, role)
                for user_id in dict.fromkeys(user_ids)
            ]

    @classmethod
    def _summaries(cls, participants) -> list[Conversation]:
        """
        Attach the caller's own state to each conversation.

        Sets viewer_participant, unread_count and last_message on each
        Conversation instance for ConversationSerializer.
        """
        participants = list(participants)
        last_ids = [p.last_message_id for p in participants if p.last_message_id]
        last_messages = _message_queryset().in_bulk(last_ids)

        conversations = []
        for participant in participants:
            conversation = participant.conversation
            conversation.viewer_participant = participant
            conversation.unread_count = participant.unread_count
            conversation.last_message = last_messages.get(participant.last_message_id)
            conversations.append(conversation)
        return conversations

    @classmethod
    def _participant_queryset(cls, user: User):
        unread_filter = ~Q(conversation__messages__sender_id=user.id) & (
            Q(last_read_at__isnull=True)
            | Q(conversation__messages__created_at__gt=F("last_read_at"))
        )
        last_message = Message.objects.filter(
            conversation_id=OuterRef("conversation_id")
        ).order_by("-created_at", "-id")

        return (
            Participant.objects.filter(user_id=user.id)
            .select_related("conversation")
            .prefetch_related("conversation__participants__user")
            .annotate(
                unread_count=Count("conversation__messages", filter=unread_filter),
                last_message_id=Subquery(last_message.values("id")[:1]),
            )
        )

    @classmethod
    def list_for_user(cls, user: User) -> list[Conversation]:
        """
        List the conversations a user participates in.

        Ordering: the caller's pinned conversations first, then by most
        recent activity (last message, or creation for empty ones), newest
        first. Archived conversations are included with is_archived set.

        Returns:
            Conversations with viewer_participant, unread_count and
            last_message attached
        """
        cls.require_authenticated(user)
        participants = cls._participant_queryset(user).order_by(
            "-is_pinned",
            Coalesce(
                "conversation__last_message_at", "conversation__created_at"
            ).desc(),
            "-conversation_id",
        )
        return cls._summaries(participants)

    @classmethod
    def get_for_participant(cls, conversation_id: int, user: User) -> Conversation:
        """
        Get one conversation summary for a participant.

        Raises:
            NotFoundError: Conversation does not exist
            ForbiddenError: Caller is not a participant
        """
        cls.require_authenticated(user)
        _require_participant(conversation_id, user)
        participants = cls._participant_queryset(user).filter(
            conversation_id=conversation_id
        )
        return cls._summaries(participants)[0]

    @classmethod
    def _toggle_flag(cls, conversation_id: int, user: User, flag: str) -> Participant:
        cls.require_authenticated(user)
        participant = _require_participant(conversation_id, user)

        setattr(participant, flag, not getattr(participant, flag))
        participant.save(update_fields=[flag, "updated_at"])

        # Other devices of the same user only
        realtime.send_to_user(
            user.id,
            CHAT_EVENTS.CONVERSATION_UPDATED,
            {
                "conversation_id": participant.conversation_id,
                "is_pinned": participant.is_pinned,
                "is_archived": participant.is_archived,
            },
        )
        cls.get_logger().debug(
            f"User {user.id} set {flag}={getattr(participant, flag)} "
            f"on conversation {conversation_id}"
        )
        return participant

    @classmethod
    def toggle_archive(cls, conversation_id: int, user: User) -> Participant:
        """Flip the caller's archived flag. Other participants are unaffected."""
        return cls._toggle_flag(conversation_id, user, "is_archived")

    @classmethod
    def toggle_pin(cls, conversation_id: int, user: User) -> Participant:
        """Flip the caller's pinned flag. Other participants are unaffected."""
        return cls._toggle_flag(conversation_id, user, "is_pinned")

    @classmethod
    def reject_unsupported_action(cls, conversation_id: int, user: User, action: str):
        """
        Answer group management actions that have no implementation.

        Membership is still checked first so non-participants get 403.

        Raises:
            NotImplementedFeatureError: Always
        """
        cls.require_authenticated(user)
        _require_participant(conversation_id, user)
        raise NotImplementedFeatureError(
            f"Conversation action '{action}' is not supported",
            error_code="ACTION_NOT_SUPPORTED",
            details={"action": action},
        )


# =============================================================================
# Message Service
# =============================================================================


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        send_message: Append a message (optionally a reply, with attachments)
        edit_message: Change the content of one's own message
        list_messages: Page through a conversation by timestamp cursor
        get_thread_replies: All replies to a message, oldest first
        add_attachment: Append file metadata to one's own message
        delete_message: Not supported
    """

    @classmethod
    def send_message(
        cls,
        conversation_id: int,
        sender: User,
        content: str,
        attachments: list[dict] | None = None,
        reply_to_id: int | None = None,
    ) -> Message:
        """
        Send a message to a conversation.

        The message row is inserted as SENDING and moved to SENT inside the
        same transaction, so no other reader can observe SENDING. A reply
        increments the parent's reply_count in that transaction too.

        Args:
            conversation_id: Target conversation
            sender: The caller
            content: Message text (may be empty only when attachments are given)
            attachments: Optional list of attachment metadata dicts
                (url, file_name, file_size, file_type, mime_type?, thumbnail_url?)
            reply_to_id: Optional parent message in the same conversation

        Returns:
            The stored message with status SENT

        Raises:
            NotFoundError: Conversation does not exist
            ForbiddenError: Sender is not a participant
            ValidationError: Empty content, bad reply target, too many attachments
        """
        cls.require_authenticated(sender)
        attachments = attachments or []
        content = _clean_content(content, allow_empty=bool(attachments))

        if len(attachments) > MESSAGE_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValidationError(
                f"At most {MESSAGE_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE} attachments per message",
                error_code="TOO_MANY_ATTACHMENTS",
            )

        participant = _require_participant(conversation_id, sender)
        conversation = participant.conversation

        with cls.atomic():
            if reply_to_id is not None:
                parent_exists = Message.objects.filter(
                    id=reply_to_id, conversation_id=conversation.id
                ).exists()
                if not parent_exists:
                    raise ValidationError(
                        "Reply target must be a message in the same conversation",
                        error_code="INVALID_REPLY_TARGET",
                        details={"reply_to_id": reply_to_id},
                    )

            message = Message.objects.create(
                conversation=conversation,
                sender=sender,
                content=content,
                reply_to_id=reply_to_id,
            )
            MessageAttachment.objects.bulk_create(
                [MessageAttachment(message=message, **data) for data in attachments]
            )
            message.mark_sent()
            message.save(update_fields=["status", "updated_at"])

            if reply_to_id is not None:
                Message.objects.filter(id=reply_to_id).update(
                    reply_count=F("reply_count") + 1
                )
            # Never move last_message_at backwards when sends commit out of order
            Conversation.objects.filter(
                Q(last_message_at__isnull=True)
                | Q(last_message_at__lt=message.created_at),
                id=conversation.id,
            ).update(last_message_at=message.created_at)

            message = _message_queryset().get(id=message.id)
            realtime.broadcast_to_conversation(
                conversation.id,
                CHAT_EVENTS.MESSAGE_NEW,
                message_payload(message),
            )

        cls.get_logger().info(
            f"User {sender.id} sent message {message.id} "
            f"to conversation {conversation.id}"
        )
        return message

    @classmethod
    def edit_message(cls, message_id: int, editor: User, content: str) -> Message:
        """
        Replace the content of a message.

        Raises:
            NotFoundError: Message does not exist
            ForbiddenError: Editor is not the sender
            ValidationError: New content is empty or too long
        """
        cls.require_authenticated(editor)
        message = _get_message(message_id)

        if message.sender_id != editor.id:
            raise ForbiddenError(
                "You can only edit your own messages",
                error_code="NOT_MESSAGE_OWNER",
            )

        message.content = _clean_content(content)
        message.edited_at = timezone.now()
        message.save(update_fields=["content", "edited_at", "updated_at"])

        message = _message_queryset().get(id=message.id)
        realtime.broadcast_to_conversation(
            message.conversation_id,
            CHAT_EVENTS.MESSAGE_UPDATED,
            message_payload(message),
        )
        cls.get_logger().info(f"User {editor.id} edited message {message.id}")
        return message

    @classmethod
    def list_messages(
        cls,
        conversation_id: int,
        user: User,
        limit: int | None = None,
        before: datetime | None = None,
    ) -> dict:
        """
        Page backwards through a conversation.

        Selects the newest `limit` messages created strictly before `before`
        (or the newest overall) and returns them oldest-first. To load older
        messages, pass the returned next_before as the next `before`.

        The cursor is a timestamp, so messages sharing the boundary
        created_at are never split across pages: when the row after the
        page ties with the oldest row on it, every message at that instant
        is included and the page may hold more than `limit` rows.

        Returns:
            {"results": [Message, ...], "has_more": bool, "next_before": datetime | None}

        Raises:
            NotFoundError: Conversation does not exist
            ForbiddenError: Caller is not a participant
        """
        cls.require_authenticated(user)
        _require_participant(conversation_id, user)

        limit = limit or settings.CHAT_MESSAGE_PAGE_SIZE
        limit = max(1, min(limit, settings.CHAT_MESSAGE_MAX_PAGE_SIZE))

        queryset = _message_queryset().filter(conversation_id=conversation_id)
        if before is not None:
            queryset = queryset.filter(created_at__lt=before)

        rows = list(queryset.order_by("-created_at", "-id")[: limit + 1])
        has_more = len(rows) > limit
        page = rows[:limit]

        if has_more and rows[limit].created_at == page[-1].created_at:
            boundary = page[-1].created_at
            page = [message for message in page if message.created_at > boundary]
            page.extend(queryset.filter(created_at=boundary).order_by("-id"))
            has_more = queryset.filter(created_at__lt=boundary).exists()

        page.reverse()

        return {
            "results": page,
            "has_more": has_more,
            "next_before": page[0].created_at if has_more else None,
        }

    @classmethod
    def get_thread_replies(cls, parent_message_id: int, user: User) -> list[Message]:
        """
        All messages replying to a parent, oldest first.

        Raises:
            NotFoundError: Parent message does not exist
            ForbiddenError: Caller is not a participant of its conversation
        """
        cls.require_authenticated(user)
        parent = _get_message(parent_message_id)
        _require_participant(parent.conversation_id, user)

        return list(
            _message_queryset()
            .filter(reply_to_id=parent.id)
            .order_by("created_at", "id")
        )

    @classmethod
    def add_attachment(
        cls,
        message_id: int,
        uploader: User,
        url: str,
        file_name: str,
        file_size: int,
        file_type: str,
        mime_type: str = "",
        thumbnail_url: str = "",
    ) -> MessageAttachment:
        """
        Append file metadata to an existing message.

        Raises:
            NotFoundError: Message does not exist
            ForbiddenError: Uploader is not the message's sender
            ValidationError: Message already has the maximum attachments
        """
        cls.require_authenticated(uploader)
        message = _get_message(message_id)

        if message.sender_id != uploader.id:
            raise ForbiddenError(
                "You can only attach files to your own messages",
                error_code="NOT_MESSAGE_OWNER",
            )
        if message.attachments.count() >= MESSAGE_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValidationError(
                f"At most {MESSAGE_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE} attachments per message",
                error_code="TOO_MANY_ATTACHMENTS",
            )

        attachment = MessageAttachment.objects.create(
            message=message,
            url=url,
            file_name=file_name,
            file_size=file_size,
            file_type=file_type,
            mime_type=mime_type or "",
            thumbnail_url=thumbnail_url or "",
        )

        realtime.broadcast_to_conversation(
            message.conversation_id,
            CHAT_EVENTS.MESSAGE_UPDATED,
            message_payload(_message_queryset().get(id=message.id)),
        )
        cls.get_logger().info(
            f"User {uploader.id} attached {attachment.id} to message {message.id}"
        )
        return attachment

    @classmethod
    def delete_message(cls, message_id: int, user: User):
        """
        Message deletion is not supported.

        Raises:
            NotImplementedFeatureError: Always
        """
        cls.require_authenticated(user)
        raise NotImplementedFeatureError(
            "Message deletion is not supported",
            error_code="DELETE_NOT_SUPPORTED",
            details={"message_id": message_id},
        )


# =============================================================================
# Reaction Service
# =============================================================================


@dataclass
class ReactionToggleResult:
    """Outcome of a reaction toggle."""

    added: bool
    reaction: MessageReaction | None = None


class ReactionService(BaseService):
    """
    Service for message reactions.

    (message, user, emoji) is unique. Toggling an existing triple removes
    it; otherwise the reaction is created.
    """

    @classmethod
    def toggle_reaction(cls, message_id: int, user: User, emoji: str) -> ReactionToggleResult:
        """
        Add or remove one reaction.

        Raises:
            NotFoundError: Message does not exist
            ForbiddenError: Caller is not a participant
            ValidationError: Emoji is blank or too long
            ConflictError: A concurrent toggle created the same reaction
        """
        cls.require_authenticated(user)
        emoji = (emoji or "").strip()
        if not emoji or len(emoji) > REACTION_CONFIG.MAX_EMOJI_LENGTH:
            raise ValidationError("Invalid emoji", error_code="INVALID_EMOJI")

        message = _get_message(message_id)
        _require_participant(message.conversation_id, user)

        existing = MessageReaction.objects.filter(
            message=message, user_id=user.id, emoji=emoji
        ).first()

        if existing is not None:
            existing.delete()
            result = ReactionToggleResult(added=False)
        else:
            try:
                with cls.atomic():
                    reaction = MessageReaction.objects.create(
                        message=message, user_id=user.id, emoji=emoji
                    )
            except IntegrityError:
                raise ConflictError(
                    "Reaction was changed concurrently",
                    error_code="REACTION_CONFLICT",
                )
            result = ReactionToggleResult(added=True, reaction=reaction)

        realtime.broadcast_to_conversation(
            message.conversation_id,
            CHAT_EVENTS.MESSAGE_REACTION,
            {
                "message_id": message.id,
                "conversation_id": message.conversation_id,
                "user_id": user.id,
                "emoji": emoji,
                "added": result.added,
            },
        )
        return result


# =============================================================================
# Read / Delivery Status Service
# =============================================================================


class ReadStatusService(BaseService):
    """
    Service for read markers and delivery status.

    Read state is per participant: a message is read by a user iff
    message.created_at <= participant.last_read_at. Message.status is the
    sender-facing delivery status and only moves forward.
    """

    @classmethod
    def mark_conversation_read(
        cls,
        conversation_id: int,
        user: User,
        up_to: datetime | None = None,
    ) -> Participant:
        """
        Advance the caller's read marker to `up_to` (default: now).

        Also moves messages from other senders created at or before the
        marker that are SENT or DELIVERED to READ. The marker never moves
        backwards; a call that would not advance it changes nothing and
        broadcasts nothing. Only the caller's participant row is modified.

        Raises:
            NotFoundError: Conversation does not exist
            ForbiddenError: Caller is not a participant
        """
        cls.require_authenticated(user)
        participant = _require_participant(conversation_id, user)
        now = timezone.now()
        read_at = up_to or now

        if participant.last_read_at is not None and read_at <= participant.last_read_at:
            return participant

        with cls.atomic():
            participant.last_read_at = read_at
            participant.save(update_fields=["last_read_at", "updated_at"])

            advanced = (
                Message.objects.filter(
                    conversation_id=conversation_id,
                    created_at__lte=read_at,
                    status__in=[MessageStatus.SENT, MessageStatus.DELIVERED],
                )
                .exclude(sender_id=user.id)
                .update(status=MessageStatus.READ, updated_at=now)
            )

            realtime.broadcast_to_conversation(
                conversation_id,
                CHAT_EVENTS.CONVERSATION_READ,
                {
                    "conversation_id": conversation_id,
                    "user_id": user.id,
                    "read_at": read_at.isoformat(),
                },
            )

        cls.get_logger().debug(
            f"User {user.id} read conversation {conversation_id}, "
            f"{advanced} messages moved to READ"
        )
        return participant

    @classmethod
    def update_message_status(cls, message_id: int, user: User, status: str) -> Message:
        """
        Move a message's delivery status forward.

        Allowed: SENDING -> SENT -> DELIVERED -> READ, SENT -> READ, and any
        non-terminal status -> FAILED. Requesting the current status is a
        no-op.

        Raises:
            NotFoundError: Message does not exist
            ForbiddenError: Caller is not a participant
            ForbiddenError: Sender marks their own message delivered or read
            ValidationError: Backward or otherwise invalid transition
        """
        cls.require_authenticated(user)

        with cls.atomic():
            message = _get_message(message_id, for_update=True)
            _require_participant(message.conversation_id, user)

            if (
                status in (MessageStatus.DELIVERED, MessageStatus.READ)
                and message.sender_id == user.id
            ):
                raise ForbiddenError(
                    "Only recipients can mark a message delivered or read",
                    error_code="SENDER_CANNOT_ACKNOWLEDGE",
                    details={"message_id": message.id, "requested": status},
                )

            if message.status == status:
                return message

            transition_name = STATUS_TRANSITIONS.get(status)
            transition = getattr(message, transition_name) if transition_name else None
            if transition is None or not can_proceed(transition):
                raise ValidationError(
                    f"Cannot change message status from {message.status} to {status}",
                    error_code="INVALID_STATUS_TRANSITION",
                    details={"current": message.status, "requested": status},
                )

            previous = message.status
            transition()
            message.save(update_fields=["status", "updated_at"])

            realtime.broadcast_to_conversation(
                message.conversation_id,
                CHAT_EVENTS.MESSAGE_STATUS_CHANGED,
                {
                    "message_id": message.id,
                    "conversation_id": message.conversation_id,
                    "status": message.status,
                },
            )

        cls.get_logger().info(
            f"Message {message.id} status {previous} -> {message.status} by user {user.id}"
        )
        return message


# =============================================================================
# Message Search Service
# =============================================================================


class MessageSearchService(BaseService):
    """
    Case-insensitive substring search over message content.

    Results are always restricted to conversations the caller participates
    in, newest first.
    """

    @classmethod
    def search(
        cls,
        user: User,
        query: str,
        conversation_id: int | None = None,
        limit: int | None = None,
    ) -> dict:
        """
        Search messages.

        Args:
            user: The caller
            query: Text to look for (at least one non-blank character)
            conversation_id: Optional - limit search to one conversation
            limit: Maximum results (default CHAT_SEARCH_DEFAULT_LIMIT,
                capped at CHAT_SEARCH_MAX_LIMIT)

        Returns:
            {"results": [Message, ...], "count": int, "query": str}

        Raises:
            ValidationError: Blank query
            NotFoundError: conversation_id does not exist
            ForbiddenError: Caller is not a participant of conversation_id
        """
        cls.require_authenticated(user)
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query is required", error_code="INVALID_QUERY")

        limit = limit or settings.CHAT_SEARCH_DEFAULT_LIMIT
        limit = max(1, min(limit, settings.CHAT_SEARCH_MAX_LIMIT))

        if conversation_id is not None:
            _require_participant(conversation_id, user)
            scope = Q(conversation_id=conversation_id)
        else:
            scope = Q(
                conversation_id__in=Participant.objects.filter(user_id=user.id).values(
                    "conversation_id"
                )
            )

        results = list(
            _message_queryset()
            .filter(scope, content__icontains=query)
            .order_by("-created_at", "-id")[:limit]
        )
        return {"results": results, "count": len(results), "query": query}


# =============================================================================
# Presence Service
# =============================================================================


class PresenceService(BaseService):
    """
    Cache-backed online tracking.

    A user is online while at least one of their sockets is open. The open
    socket count lives in the default cache (Redis via django-redis in
    deployment) so every ASGI worker sees the same count. The count carries
    a TTL so a worker that dies without running disconnect cannot keep a
    user online forever.

    Cache failures are logged and reported as "no change", so presence
    never blocks a socket from connecting.

    Usage:
        from chat.services import PresenceService

        if PresenceService.register_socket(user.id):
            ...  # first socket: announce user:online

        if PresenceService.unregister_socket(user.id):
            ...  # last socket closed: announce user:offline
    """

    @staticmethod
    def _get_cache():
        """Get Django cache backend (Redis)."""
        from django.core.cache import cache

        return cache

    @staticmethod
    def _socket_count_key(user_id) -> str:
        return f"{PRESENCE_CONFIG.KEY_PREFIX_USER_SOCKETS}:{user_id}"

    @classmethod
    def register_socket(cls, user_id) -> bool:
        """
        Count one more open socket for a user.

        Returns:
            True if this is the user's only open socket (user came online)
        """
        cache = cls._get_cache()
        key = cls._socket_count_key(user_id)
        ttl = PRESENCE_CONFIG.SOCKET_COUNT_TTL_SECONDS

        try:
            cache.add(key, 0, timeout=ttl)
            count = cache.incr(key)
            cache.touch(key, timeout=ttl)
        except Exception:
            cls.get_logger().exception(f"Failed to register socket for user {user_id}")
            return False

        return count == 1

    @classmethod
    def unregister_socket(cls, user_id) -> bool:
        """
        Count one less open socket for a user.

        Returns:
            True if no sockets remain (user went offline)
        """
        cache = cls._get_cache()
        key = cls._socket_count_key(user_id)

        try:
            count = cache.decr(key)
        except ValueError:
            # Count expired while the socket was open
            return True
        except Exception:
            cls.get_logger().exception(f"Failed to unregister socket for user {user_id}")
            return False

        if count <= 0:
            cache.delete(key)
            return True
        return False

    @classmethod
    def is_online(cls, user_id) -> bool:
        """Whether the user has at least one open socket."""
        try:
            return (cls._get_cache().get(cls._socket_count_key(user_id)) or 0) > 0
        except Exception:
            cls.get_logger().exception(f"Failed to read presence for user {user_id}")
            return False
