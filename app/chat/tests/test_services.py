"""
Tests for chat service layer business logic.

Test Organization:
    - Each service method has its own test class
    - Each test validates ONE specific behavior
    - Tests use descriptive names following: test_<scenario>_<expected_outcome>

Testing Philosophy:
    Tests focus on observable behavior, not implementation details:
    - Return values and database state changes
    - Error codes for specific failure modes
    - Real-time events pushed after commit
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from django.conf import settings
from django.core.cache import cache
from django.db import connection
from django.utils import timezone
from freezegun import freeze_time

from authentication.tests.factories import UserFactory
from chat.models import (
    Conversation,
    ConversationType,
    DirectConversationPair,
    Message,
    MessageReaction,
    MessageStatus,
    Participant,
    ParticipantRole,
)
from chat.services import (
    ConversationService,
    MessageSearchService,
    MessageService,
    PresenceService,
    ReactionService,
    ReadStatusService,
)
from chat.tests.factories import MessageFactory, ParticipantFactory
from core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    NotImplementedFeatureError,
    ValidationError,
)


# =============================================================================
# ConversationService.get_or_create_direct
# =============================================================================


class TestGetOrCreateDirect:
    """
    Tests for ConversationService.get_or_create_direct().

    Verifies:
    - Creation with buyer/seller roles and two participants
    - Idempotency for the same pair and product, in either direction
    - Separate conversations per product
    - Recovery from a lost insert race
    """

    def test_creates_conversation_with_two_participants(self, buyer, seller):
        conversation, created = ConversationService.get_or_create_direct(
            buyer, seller.id, product_ref="sku-1"
        )

        assert created is True
        assert conversation.conversation_type == ConversationType.DIRECT
        assert conversation.buyer_id == buyer.id
        assert conversation.seller_id == seller.id
        assert conversation.product_ref == "sku-1"
        assert set(conversation.participants.values_list("user_id", flat=True)) == {
            buyer.id,
            seller.id,
        }

    def test_second_call_returns_same_conversation(self, buyer, seller):
        first, _ = ConversationService.get_or_create_direct(buyer, seller.id, "sku-1")
        second, created = ConversationService.get_or_create_direct(
            buyer, seller.id, "sku-1"
        )

        assert created is False
        assert second.id == first.id
        assert Conversation.objects.count() == 1

    def test_lookup_is_independent_of_initiator(self, buyer, seller):
        first, _ = ConversationService.get_or_create_direct(buyer, seller.id)
        second, created = ConversationService.get_or_create_direct(seller, buyer.id)

        assert created is False
        assert second.id == first.id

    def test_different_products_get_different_conversations(self, buyer, seller):
        general, _ = ConversationService.get_or_create_direct(buyer, seller.id)
        about_product, created = ConversationService.get_or_create_direct(
            buyer, seller.id, "sku-1"
        )

        assert created is True
        assert about_product.id != general.id

    def test_product_ref_is_stripped(self, buyer, seller):
        first, _ = ConversationService.get_or_create_direct(buyer, seller.id, "sku-1")
        second, created = ConversationService.get_or_create_direct(
            buyer, seller.id, "  sku-1 "
        )

        assert created is False
        assert second.id == first.id

    def test_self_conversation_is_rejected(self, buyer):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.get_or_create_direct(buyer, buyer.id)

        assert exc_info.value.error_code == "SAME_USER"

    def test_unknown_user_is_not_found(self, buyer):
        with pytest.raises(NotFoundError) as exc_info:
            ConversationService.get_or_create_direct(buyer, 999999)

        assert exc_info.value.error_code == "USER_NOT_FOUND"

    def test_inactive_user_is_not_found(self, buyer):
        inactive = UserFactory(is_active=False)

        with pytest.raises(NotFoundError):
            ConversationService.get_or_create_direct(buyer, inactive.id)

    def test_lost_race_returns_winner(self, buyer, seller):
        """
        If the lookup misses but the insert hits the unique pair, the
        conversation created by the concurrent request is returned.
        """
        winner, _ = ConversationService.get_or_create_direct(buyer, seller.id)

        with patch.object(ConversationService, "_find_direct", return_value=None):
            conversation, created = ConversationService.get_or_create_direct(
                seller, buyer.id
            )

        assert created is False
        assert conversation.id == winner.id
        assert Conversation.objects.count() == 1
        assert DirectConversationPair.objects.count() == 1

    @pytest.mark.django_db(transaction=True)
    @pytest.mark.skipif(
        "postgresql" not in settings.DATABASES["default"]["ENGINE"],
        reason="Concurrent writers need row-level locking (PostgreSQL)",
    )
    def test_concurrent_requests_create_one_conversation(self, buyer, seller, pushed_events):
        """Parallel first contacts from both sides converge on one conversation."""
        workers = 6
        barrier = threading.Barrier(workers)

        def contact(index):
            initiator, other = (buyer, seller) if index % 2 else (seller, buyer)
            try:
                barrier.wait(timeout=5)
                return ConversationService.get_or_create_direct(initiator, other.id)
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(contact, range(workers)))

        assert len({conversation.id for conversation, _ in results}) == 1
        assert [created for _, created in results].count(True) == 1
        assert Conversation.objects.count() == 1
        assert DirectConversationPair.objects.count() == 1
        assert Participant.objects.count() == 2

    def test_creation_subscribes_both_users(
        self, buyer, seller, pushed_events, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            conversation, _ = ConversationService.get_or_create_direct(buyer, seller.id)

        assert sorted(pushed_events.subscriptions()) == sorted(
            [
                (f"user_{buyer.id}", conversation.id),
                (f"user_{seller.id}", conversation.id),
            ]
        )


# =============================================================================
# ConversationService.create_group / add_group_member
# =============================================================================


class TestCreateGroup:
    """Tests for ConversationService.create_group()."""

    def test_creator_is_owner_and_members_are_members(self, buyer, seller, outsider):
        conversation = ConversationService.create_group(
            buyer, "Pickup crew", [seller.id, outsider.id], description=" Weekly "
        )

        roles = dict(conversation.participants.values_list("user_id", "role"))
        assert roles == {
            buyer.id: ParticipantRole.OWNER,
            seller.id: ParticipantRole.MEMBER,
            outsider.id: ParticipantRole.MEMBER,
        }
        assert conversation.name == "Pickup crew"
        assert conversation.description == "Weekly"
        assert conversation.created_by_id == buyer.id

    def test_duplicate_and_creator_ids_are_ignored(self, buyer, seller):
        conversation = ConversationService.create_group(
            buyer, "Team", [seller.id, seller.id, buyer.id]
        )

        assert conversation.participants.count() == 2

    def test_blank_name_is_rejected(self, buyer, seller):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.create_group(buyer, "   ", [seller.id])

        assert exc_info.value.error_code == "NAME_REQUIRED"

    def test_empty_members_is_rejected(self, buyer):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.create_group(buyer, "Team", [])

        assert exc_info.value.error_code == "MEMBERS_REQUIRED"

    def test_unknown_member_is_rejected_without_side_effects(self, buyer, seller):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.create_group(buyer, "Team", [seller.id, 999999])

        assert exc_info.value.error_code == "INVALID_MEMBERS"
        assert exc_info.value.details == {"user_ids": [999999]}
        assert not Conversation.objects.exists()


class TestAddGroupMember:
    """Tests for ConversationService.add_group_member(s)()."""

    def test_owner_adds_member(self, group_conversation, group_owner, outsider):
        participant = ConversationService.add_group_member(
            group_conversation.id, outsider.id, group_owner
        )

        assert participant.role == ParticipantRole.MEMBER
        assert participant.added_by_id == group_owner.id

    def test_admin_adds_moderator(self, group_conversation, group_admin, outsider):
        participant = ConversationService.add_group_member(
            group_conversation.id, outsider.id, group_admin, ParticipantRole.MODERATOR
        )

        assert participant.role == ParticipantRole.MODERATOR

    def test_member_cannot_add(self, group_conversation, group_member, outsider):
        with pytest.raises(ForbiddenError) as exc_info:
            ConversationService.add_group_member(
                group_conversation.id, outsider.id, group_member
            )

        assert exc_info.value.error_code == "PERMISSION_DENIED"

    def test_owner_role_cannot_be_granted(self, group_conversation, group_owner, outsider):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.add_group_member(
                group_conversation.id, outsider.id, group_owner, ParticipantRole.OWNER
            )

        assert exc_info.value.error_code == "INVALID_ROLE"

    def test_existing_participant_conflicts(
        self, group_conversation, group_owner, group_member
    ):
        with pytest.raises(ConflictError) as exc_info:
            ConversationService.add_group_member(
                group_conversation.id, group_member.id, group_owner
            )

        assert exc_info.value.error_code == "ALREADY_PARTICIPANT"

    def test_direct_conversation_rejects_members(self, direct_conversation, buyer, outsider):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.add_group_member(
                direct_conversation.id, outsider.id, buyer
            )

        assert exc_info.value.error_code == "NOT_GROUP"

    def test_add_many_is_all_or_nothing(self, group_conversation, group_owner, outsider):
        with pytest.raises(NotFoundError):
            ConversationService.add_group_members(
                group_conversation.id, [outsider.id, 999999], group_owner
            )

        assert not group_conversation.participants.filter(user=outsider).exists()

    def test_new_member_is_subscribed_and_group_notified(
        self,
        group_conversation,
        group_owner,
        outsider,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            ConversationService.add_group_member(
                group_conversation.id, outsider.id, group_owner
            )

        assert pushed_events.subscriptions() == [
            (f"user_{outsider.id}", group_conversation.id)
        ]
        [(group, payload)] = pushed_events.events("conversation:updated")
        assert group == f"chat_{group_conversation.id}"
        assert payload["participant_added"]["user_id"] == outsider.id


# =============================================================================
# ConversationService listing and per-user flags
# =============================================================================


class TestListForUser:
    """Tests for ConversationService.list_for_user()."""

    def test_only_own_conversations_are_listed(self, direct_conversation, outsider):
        assert ConversationService.list_for_user(outsider) == []

    def test_ordered_by_most_recent_message(self, buyer, seller, outsider):
        with freeze_time("2026-03-01 10:00:00") as frozen:
            older, _ = ConversationService.get_or_create_direct(buyer, seller.id)
            newer, _ = ConversationService.get_or_create_direct(buyer, outsider.id)
            frozen.tick(timedelta(minutes=1))
            MessageService.send_message(newer.id, buyer, "first")
            frozen.tick(timedelta(minutes=1))
            MessageService.send_message(older.id, buyer, "second")

        ids = [c.id for c in ConversationService.list_for_user(buyer)]

        assert ids == [older.id, newer.id]

    def test_pinned_conversation_comes_first(self, buyer, seller, outsider):
        with freeze_time("2026-03-01 10:00:00") as frozen:
            quiet, _ = ConversationService.get_or_create_direct(buyer, seller.id)
            busy, _ = ConversationService.get_or_create_direct(buyer, outsider.id)
            frozen.tick(timedelta(minutes=1))
            MessageService.send_message(busy.id, buyer, "latest")

        ConversationService.toggle_pin(quiet.id, buyer)
        ids = [c.id for c in ConversationService.list_for_user(buyer)]

        assert ids == [quiet.id, busy.id]

    def test_summary_has_unread_count_and_last_message(
        self, direct_conversation, buyer, seller
    ):
        MessageService.send_message(direct_conversation.id, seller, "one")
        last = MessageService.send_message(direct_conversation.id, seller, "two")
        MessageService.send_message(direct_conversation.id, buyer, "mine")

        [summary] = ConversationService.list_for_user(buyer)

        assert summary.unread_count == 2
        assert summary.last_message.content == "mine"
        assert summary.viewer_participant.user_id == buyer.id
        assert last.id != summary.last_message.id

    def test_archived_conversation_is_listed_with_flag(self, direct_conversation, buyer):
        ConversationService.toggle_archive(direct_conversation.id, buyer)

        [summary] = ConversationService.list_for_user(buyer)

        assert summary.viewer_participant.is_archived is True


class TestParticipantFlags:
    """Tests for toggle_archive / toggle_pin."""

    def test_toggle_archive_flips_only_caller(self, direct_conversation, buyer, seller):
        participant = ConversationService.toggle_archive(direct_conversation.id, buyer)

        assert participant.is_archived is True
        assert not Participant.objects.get(
            conversation=direct_conversation, user=seller
        ).is_archived

    def test_toggle_twice_restores(self, direct_conversation, buyer):
        ConversationService.toggle_pin(direct_conversation.id, buyer)
        participant = ConversationService.toggle_pin(direct_conversation.id, buyer)

        assert participant.is_pinned is False

    def test_non_participant_is_forbidden(self, direct_conversation, outsider):
        with pytest.raises(ForbiddenError) as exc_info:
            ConversationService.toggle_archive(direct_conversation.id, outsider)

        assert exc_info.value.error_code == "NOT_PARTICIPANT"

    def test_missing_conversation_is_not_found(self, buyer):
        with pytest.raises(NotFoundError):
            ConversationService.toggle_pin(999999, buyer)

    def test_change_is_pushed_to_own_devices(
        self,
        direct_conversation,
        buyer,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            ConversationService.toggle_pin(direct_conversation.id, buyer)

        [(group, payload)] = pushed_events.events("conversation:updated")
        assert group == f"user_{buyer.id}"
        assert payload["is_pinned"] is True

    @pytest.mark.parametrize("action", ["leave", "removeParticipant", "updateGroupInfo"])
    def test_unsupported_actions_raise(self, group_conversation, group_owner, action):
        with pytest.raises(NotImplementedFeatureError):
            ConversationService.reject_unsupported_action(
                group_conversation.id, group_owner, action
            )


# =============================================================================
# MessageService
# =============================================================================


class TestSendMessage:
    """Tests for MessageService.send_message()."""

    def test_stored_message_is_sent(self, direct_conversation, buyer):
        message = MessageService.send_message(direct_conversation.id, buyer, " Hello ")

        assert message.status == MessageStatus.SENT
        assert message.content == "Hello"
        assert Message.objects.get(id=message.id).status == MessageStatus.SENT

    def test_updates_conversation_activity(self, direct_conversation, buyer):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hello")

        conversation = Conversation.objects.get(id=direct_conversation.id)
        assert conversation.last_message_at == message.created_at

    def test_older_send_does_not_rewind_activity(self, direct_conversation, buyer):
        """A send that commits after a newer one leaves last_message_at alone."""
        newer = timezone.now() + timedelta(hours=1)
        Conversation.objects.filter(id=direct_conversation.id).update(
            last_message_at=newer
        )

        MessageService.send_message(direct_conversation.id, buyer, "Late commit")

        conversation = Conversation.objects.get(id=direct_conversation.id)
        assert conversation.last_message_at == newer

    def test_non_participant_is_forbidden(self, direct_conversation, outsider):
        with pytest.raises(ForbiddenError):
            MessageService.send_message(direct_conversation.id, outsider, "Hi")

        assert not Message.objects.exists()

    def test_missing_conversation_is_not_found(self, buyer):
        with pytest.raises(NotFoundError):
            MessageService.send_message(999999, buyer, "Hi")

    def test_blank_content_without_attachments_is_rejected(self, direct_conversation, buyer):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.send_message(direct_conversation.id, buyer, "   ")

        assert exc_info.value.error_code == "EMPTY_CONTENT"

    def test_too_long_content_is_rejected(self, direct_conversation, buyer):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.send_message(direct_conversation.id, buyer, "x" * 10001)

        assert exc_info.value.error_code == "CONTENT_TOO_LONG"

    def test_attachment_only_message(self, direct_conversation, buyer):
        message = MessageService.send_message(
            direct_conversation.id,
            buyer,
            "",
            attachments=[
                {
                    "url": "https://files.example.com/a.jpg",
                    "file_name": "a.jpg",
                    "file_size": 100,
                    "file_type": "image",
                }
            ],
        )

        assert message.content == ""
        assert [a.file_name for a in message.attachments.all()] == ["a.jpg"]

    def test_too_many_attachments_is_rejected(self, direct_conversation, buyer):
        attachment = {
            "url": "https://files.example.com/a.jpg",
            "file_name": "a.jpg",
            "file_size": 1,
            "file_type": "image",
        }

        with pytest.raises(ValidationError) as exc_info:
            MessageService.send_message(
                direct_conversation.id, buyer, "", attachments=[attachment] * 11
            )

        assert exc_info.value.error_code == "TOO_MANY_ATTACHMENTS"

    def test_reply_increments_parent_count(self, direct_conversation, buyer, seller):
        parent = MessageService.send_message(direct_conversation.id, buyer, "Price?")

        MessageService.send_message(
            direct_conversation.id, seller, "10", reply_to_id=parent.id
        )
        MessageService.send_message(
            direct_conversation.id, seller, "Firm", reply_to_id=parent.id
        )

        assert Message.objects.get(id=parent.id).reply_count == 2

    def test_reply_to_other_conversation_is_rejected(
        self, direct_conversation, group_conversation, group_owner, buyer
    ):
        foreign = MessageService.send_message(group_conversation.id, group_owner, "Hi")

        with pytest.raises(ValidationError) as exc_info:
            MessageService.send_message(
                direct_conversation.id, buyer, "Re", reply_to_id=foreign.id
            )

        assert exc_info.value.error_code == "INVALID_REPLY_TARGET"
        assert Message.objects.get(id=foreign.id).reply_count == 0

    def test_message_is_broadcast_after_commit(
        self,
        direct_conversation,
        buyer,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        [(group, payload)] = pushed_events.events("message:new")
        assert group == f"chat_{direct_conversation.id}"
        assert payload["id"] == message.id
        assert payload["status"] == MessageStatus.SENT

    def test_failed_send_pushes_nothing(
        self,
        direct_conversation,
        outsider,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(ForbiddenError):
                MessageService.send_message(direct_conversation.id, outsider, "Hi")

        assert pushed_events.calls == []


class TestEditMessage:
    """Tests for MessageService.edit_message()."""

    def test_sender_edits_content(self, direct_conversation, buyer):
        message = MessageService.send_message(direct_conversation.id, buyer, "Helo")

        edited = MessageService.edit_message(message.id, buyer, "Hello")

        assert edited.content == "Hello"
        assert edited.is_edited is True

    def test_other_participant_cannot_edit(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(ForbiddenError) as exc_info:
            MessageService.edit_message(message.id, seller, "Changed")

        assert exc_info.value.error_code == "NOT_MESSAGE_OWNER"

    def test_blank_edit_is_rejected(self, direct_conversation, buyer):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(ValidationError):
            MessageService.edit_message(message.id, buyer, "  ")


class TestListMessages:
    """Tests for MessageService.list_messages()."""

    def _send_many(self, conversation, sender, count):
        with freeze_time("2026-03-01 10:00:00") as frozen:
            messages = []
            for i in range(count):
                frozen.tick(timedelta(seconds=1))
                messages.append(
                    MessageService.send_message(conversation.id, sender, f"m{i}")
                )
        return messages

    def test_page_is_oldest_first(self, direct_conversation, buyer):
        sent = self._send_many(direct_conversation, buyer, 3)

        page = MessageService.list_messages(direct_conversation.id, buyer)

        assert [m.id for m in page["results"]] == [m.id for m in sent]
        assert page["has_more"] is False
        assert page["next_before"] is None

    def test_cursor_pages_backwards_without_overlap(self, direct_conversation, buyer):
        sent = self._send_many(direct_conversation, buyer, 5)

        first = MessageService.list_messages(direct_conversation.id, buyer, limit=2)
        second = MessageService.list_messages(
            direct_conversation.id, buyer, limit=2, before=first["next_before"]
        )
        third = MessageService.list_messages(
            direct_conversation.id, buyer, limit=2, before=second["next_before"]
        )

        assert [m.content for m in first["results"]] == ["m3", "m4"]
        assert [m.content for m in second["results"]] == ["m1", "m2"]
        assert [m.content for m in third["results"]] == ["m0"]
        assert first["has_more"] and second["has_more"]
        assert third["has_more"] is False
        assert len(sent) == 5

    def test_messages_sharing_a_timestamp_stay_on_one_page(
        self, direct_conversation, buyer
    ):
        with freeze_time("2026-03-01 10:00:00"):
            sent = [
                MessageService.send_message(direct_conversation.id, buyer, f"m{i}")
                for i in range(3)
            ]

        page = MessageService.list_messages(direct_conversation.id, buyer, limit=2)

        assert [m.id for m in page["results"]] == [m.id for m in sent]
        assert page["has_more"] is False
        assert page["next_before"] is None

    def test_tied_boundary_is_not_skipped_by_next_page(self, direct_conversation, buyer):
        with freeze_time("2026-03-01 10:00:00") as frozen:
            oldest = MessageService.send_message(direct_conversation.id, buyer, "m0")
            frozen.tick(timedelta(seconds=1))
            tied = [
                MessageService.send_message(direct_conversation.id, buyer, f"m{i}")
                for i in range(1, 4)
            ]

        first = MessageService.list_messages(direct_conversation.id, buyer, limit=2)
        second = MessageService.list_messages(
            direct_conversation.id, buyer, limit=2, before=first["next_before"]
        )

        assert [m.id for m in first["results"]] == [m.id for m in tied]
        assert first["has_more"] is True
        assert [m.id for m in second["results"]] == [oldest.id]
        assert second["has_more"] is False

    def test_limit_is_capped(self, direct_conversation, buyer, settings):
        settings.CHAT_MESSAGE_MAX_PAGE_SIZE = 2
        self._send_many(direct_conversation, buyer, 3)

        page = MessageService.list_messages(direct_conversation.id, buyer, limit=50)

        assert len(page["results"]) == 2

    def test_non_participant_is_forbidden(self, direct_conversation, outsider):
        with pytest.raises(ForbiddenError):
            MessageService.list_messages(direct_conversation.id, outsider)


class TestThreadReplies:
    """Tests for MessageService.get_thread_replies()."""

    def test_returns_replies_oldest_first(self, direct_conversation, buyer, seller):
        parent = MessageService.send_message(direct_conversation.id, buyer, "Q")
        first = MessageService.send_message(
            direct_conversation.id, seller, "A1", reply_to_id=parent.id
        )
        second = MessageService.send_message(
            direct_conversation.id, buyer, "A2", reply_to_id=parent.id
        )
        MessageService.send_message(direct_conversation.id, buyer, "unrelated")

        replies = MessageService.get_thread_replies(parent.id, seller)

        assert [r.id for r in replies] == [first.id, second.id]

    def test_non_participant_is_forbidden(self, direct_conversation, buyer, outsider):
        parent = MessageService.send_message(direct_conversation.id, buyer, "Q")

        with pytest.raises(ForbiddenError):
            MessageService.get_thread_replies(parent.id, outsider)

    def test_missing_parent_is_not_found(self, buyer):
        with pytest.raises(NotFoundError):
            MessageService.get_thread_replies(999999, buyer)


class TestAddAttachment:
    """Tests for MessageService.add_attachment()."""

    def test_sender_attaches_file(self, direct_conversation, buyer):
        message = MessageService.send_message(direct_conversation.id, buyer, "Photo")

        attachment = MessageService.add_attachment(
            message.id,
            buyer,
            url="https://files.example.com/p.png",
            file_name="p.png",
            file_size=10,
            file_type="image",
            mime_type="image/png",
        )

        assert attachment.message_id == message.id
        assert message.attachments.count() == 1

    def test_other_user_cannot_attach(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Photo")

        with pytest.raises(ForbiddenError):
            MessageService.add_attachment(
                message.id,
                seller,
                url="https://files.example.com/p.png",
                file_name="p.png",
                file_size=10,
                file_type="image",
            )


class TestDeleteMessage:
    def test_delete_is_not_supported(self, direct_conversation, buyer):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(NotImplementedFeatureError):
            MessageService.delete_message(message.id, buyer)

        assert Message.objects.filter(id=message.id).exists()


# =============================================================================
# ReactionService
# =============================================================================


class TestToggleReaction:
    """Tests for ReactionService.toggle_reaction()."""

    def test_first_toggle_adds(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        result = ReactionService.toggle_reaction(message.id, seller, "👍")

        assert result.added is True
        assert result.reaction.emoji == "👍"

    def test_second_toggle_removes(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")
        ReactionService.toggle_reaction(message.id, seller, "👍")

        result = ReactionService.toggle_reaction(message.id, seller, "👍")

        assert result.added is False
        assert not MessageReaction.objects.exists()

    def test_users_react_independently(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")
        ReactionService.toggle_reaction(message.id, seller, "👍")
        ReactionService.toggle_reaction(message.id, buyer, "👍")

        assert MessageReaction.objects.filter(message=message).count() == 2

    def test_blank_emoji_is_rejected(self, direct_conversation, buyer):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(ValidationError) as exc_info:
            ReactionService.toggle_reaction(message.id, buyer, " ")

        assert exc_info.value.error_code == "INVALID_EMOJI"

    def test_non_participant_is_forbidden(self, direct_conversation, buyer, outsider):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(ForbiddenError):
            ReactionService.toggle_reaction(message.id, outsider, "👍")

    def test_toggle_is_broadcast(
        self,
        direct_conversation,
        buyer,
        seller,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with django_capture_on_commit_callbacks(execute=True):
            ReactionService.toggle_reaction(message.id, seller, "👍")

        [(_, payload)] = pushed_events.events("message:reaction")
        assert payload == {
            "message_id": message.id,
            "conversation_id": direct_conversation.id,
            "user_id": seller.id,
            "emoji": "👍",
            "added": True,
        }


# =============================================================================
# ReadStatusService
# =============================================================================


class TestMarkConversationRead:
    """Tests for ReadStatusService.mark_conversation_read()."""

    def test_messages_up_to_marker_are_read(self, direct_conversation, buyer, seller):
        with freeze_time("2026-03-01 10:00:00") as frozen:
            before = MessageService.send_message(direct_conversation.id, seller, "one")
            frozen.tick(timedelta(minutes=1))
            participant = ReadStatusService.mark_conversation_read(
                direct_conversation.id, buyer
            )
            frozen.tick(timedelta(minutes=1))
            after = MessageService.send_message(direct_conversation.id, seller, "two")

        assert participant.has_read(before) is True
        assert participant.has_read(after) is False
        [summary] = ConversationService.list_for_user(buyer)
        assert summary.unread_count == 1

    def test_other_senders_messages_move_to_read(self, direct_conversation, buyer, seller):
        theirs = MessageService.send_message(direct_conversation.id, seller, "Hi")
        mine = MessageService.send_message(direct_conversation.id, buyer, "Hello")

        ReadStatusService.mark_conversation_read(direct_conversation.id, buyer)

        assert Message.objects.get(id=theirs.id).status == MessageStatus.READ
        assert Message.objects.get(id=mine.id).status == MessageStatus.SENT

    def test_messages_after_up_to_stay_unread(self, direct_conversation, buyer, seller):
        """A message that lands after the caller's view was built is not read."""
        with freeze_time("2026-03-01 10:00:00") as frozen:
            seen = MessageService.send_message(direct_conversation.id, seller, "seen")
            frozen.tick(timedelta(seconds=5))
            unseen = MessageService.send_message(direct_conversation.id, seller, "unseen")
            frozen.tick(timedelta(seconds=5))
            participant = ReadStatusService.mark_conversation_read(
                direct_conversation.id, buyer, up_to=seen.created_at
            )

        assert participant.last_read_at == seen.created_at
        assert Message.objects.get(id=seen.id).status == MessageStatus.READ
        assert Message.objects.get(id=unseen.id).status == MessageStatus.SENT
        [summary] = ConversationService.list_for_user(buyer)
        assert summary.unread_count == 1

    def test_marker_never_moves_backwards(
        self,
        direct_conversation,
        buyer,
        seller,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        with freeze_time("2026-03-01 10:00:00") as frozen:
            older = MessageService.send_message(direct_conversation.id, seller, "old")
            frozen.tick(timedelta(minutes=1))
            ReadStatusService.mark_conversation_read(direct_conversation.id, buyer)
            marker = Participant.objects.get(
                conversation=direct_conversation, user=buyer
            ).last_read_at

            with django_capture_on_commit_callbacks(execute=True):
                participant = ReadStatusService.mark_conversation_read(
                    direct_conversation.id, buyer, up_to=older.created_at
                )

        assert participant.last_read_at == marker
        assert Participant.objects.get(
            conversation=direct_conversation, user=buyer
        ).last_read_at == marker
        assert pushed_events.events("conversation:read") == []

    def test_only_caller_marker_moves(self, direct_conversation, buyer, seller):
        ReadStatusService.mark_conversation_read(direct_conversation.id, buyer)

        seller_participant = Participant.objects.get(
            conversation=direct_conversation, user=seller
        )
        assert seller_participant.last_read_at is None

    def test_non_participant_is_forbidden(self, direct_conversation, outsider):
        with pytest.raises(ForbiddenError):
            ReadStatusService.mark_conversation_read(direct_conversation.id, outsider)

    def test_read_is_broadcast(
        self,
        direct_conversation,
        buyer,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            participant = ReadStatusService.mark_conversation_read(
                direct_conversation.id, buyer
            )

        [(_, payload)] = pushed_events.events("conversation:read")
        assert payload["user_id"] == buyer.id
        assert payload["read_at"] == participant.last_read_at.isoformat()


class TestUpdateMessageStatus:
    """Tests for ReadStatusService.update_message_status()."""

    def test_delivered_then_read(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        ReadStatusService.update_message_status(
            message.id, seller, MessageStatus.DELIVERED
        )
        updated = ReadStatusService.update_message_status(
            message.id, seller, MessageStatus.READ
        )

        assert updated.status == MessageStatus.READ

    def test_backward_move_is_rejected(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")
        ReadStatusService.update_message_status(message.id, seller, MessageStatus.READ)

        with pytest.raises(ValidationError) as exc_info:
            ReadStatusService.update_message_status(
                message.id, seller, MessageStatus.DELIVERED
            )

        assert exc_info.value.error_code == "INVALID_STATUS_TRANSITION"
        assert exc_info.value.details == {
            "current": MessageStatus.READ,
            "requested": MessageStatus.DELIVERED,
        }
        assert Message.objects.get(id=message.id).status == MessageStatus.READ

    def test_same_status_is_noop(
        self,
        direct_conversation,
        buyer,
        seller,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with django_capture_on_commit_callbacks(execute=True):
            result = ReadStatusService.update_message_status(
                message.id, seller, MessageStatus.SENT
            )

        assert result.status == MessageStatus.SENT
        assert pushed_events.events("message:statusChanged") == []

    @pytest.mark.parametrize("status", [MessageStatus.DELIVERED, MessageStatus.READ])
    def test_sender_cannot_acknowledge_own_message(
        self, direct_conversation, buyer, status
    ):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(ForbiddenError) as exc_info:
            ReadStatusService.update_message_status(message.id, buyer, status)

        assert exc_info.value.error_code == "SENDER_CANNOT_ACKNOWLEDGE"
        assert Message.objects.get(id=message.id).status == MessageStatus.SENT

    def test_sending_cannot_be_requested(self, direct_conversation, buyer, seller):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(ValidationError):
            ReadStatusService.update_message_status(
                message.id, seller, MessageStatus.SENDING
            )

    def test_non_participant_is_forbidden(self, direct_conversation, buyer, outsider):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with pytest.raises(ForbiddenError):
            ReadStatusService.update_message_status(
                message.id, outsider, MessageStatus.DELIVERED
            )

    def test_change_is_broadcast(
        self,
        direct_conversation,
        buyer,
        seller,
        pushed_events,
        django_capture_on_commit_callbacks,
    ):
        message = MessageService.send_message(direct_conversation.id, buyer, "Hi")

        with django_capture_on_commit_callbacks(execute=True):
            ReadStatusService.update_message_status(
                message.id, seller, MessageStatus.DELIVERED
            )

        [(_, payload)] = pushed_events.events("message:statusChanged")
        assert payload["status"] == MessageStatus.DELIVERED


# =============================================================================
# MessageSearchService
# =============================================================================


class TestSearch:
    """Tests for MessageSearchService.search()."""

    def test_matches_case_insensitively_newest_first(
        self, direct_conversation, buyer, seller
    ):
        with freeze_time("2026-03-01 10:00:00") as frozen:
            older = MessageService.send_message(
                direct_conversation.id, buyer, "Fresh TOMATOES"
            )
            frozen.tick(timedelta(seconds=5))
            MessageService.send_message(direct_conversation.id, seller, "Potatoes")
            frozen.tick(timedelta(seconds=5))
            newer = MessageService.send_message(
                direct_conversation.id, seller, "tomatoes gone"
            )

        result = MessageSearchService.search(buyer, "tomatoes")

        assert [m.id for m in result["results"]] == [newer.id, older.id]
        assert result["count"] == 2
        assert result["query"] == "tomatoes"

    def test_other_users_conversations_are_excluded(
        self, direct_conversation, buyer, group_conversation, group_owner
    ):
        MessageService.send_message(group_conversation.id, group_owner, "secret plan")

        result = MessageSearchService.search(buyer, "secret")

        assert result["results"] == []

    def test_scoped_to_one_conversation(self, direct_conversation, buyer, outsider):
        other, _ = ConversationService.get_or_create_direct(buyer, outsider.id)
        MessageService.send_message(direct_conversation.id, buyer, "apples here")
        MessageService.send_message(other.id, buyer, "apples there")

        result = MessageSearchService.search(
            buyer, "apples", conversation_id=direct_conversation.id
        )

        assert [m.content for m in result["results"]] == ["apples here"]

    def test_scope_requires_participation(self, direct_conversation, outsider):
        with pytest.raises(ForbiddenError):
            MessageSearchService.search(
                outsider, "x", conversation_id=direct_conversation.id
            )

    def test_blank_query_is_rejected(self, buyer):
        with pytest.raises(ValidationError) as exc_info:
            MessageSearchService.search(buyer, "  ")

        assert exc_info.value.error_code == "INVALID_QUERY"

    def test_limit_is_applied(self, direct_conversation, buyer):
        for i in range(3):
            MessageFactory(conversation=direct_conversation, sender=buyer, content=f"pear {i}")

        result = MessageSearchService.search(buyer, "pear", limit=2)

        assert result["count"] == 2


# =============================================================================
# PresenceService
# =============================================================================


class TestPresenceService:
    """Tests for PresenceService socket counting."""

    @pytest.fixture(autouse=True)
    def clear_cache(self):
        cache.clear()
        yield
        cache.clear()

    def test_first_socket_comes_online(self):
        assert PresenceService.register_socket(42) is True
        assert PresenceService.register_socket(42) is False
        assert PresenceService.is_online(42) is True

    def test_offline_only_after_last_socket(self):
        PresenceService.register_socket(42)
        PresenceService.register_socket(42)

        assert PresenceService.unregister_socket(42) is False
        assert PresenceService.is_online(42) is True
        assert PresenceService.unregister_socket(42) is True
        assert PresenceService.is_online(42) is False

    def test_expired_count_reports_offline(self):
        PresenceService.register_socket(42)
        cache.clear()

        assert PresenceService.unregister_socket(42) is True

    def test_users_are_counted_separately(self):
        PresenceService.register_socket(1)

        assert PresenceService.register_socket(2) is True
        assert PresenceService.is_online(3) is False

    def test_cache_failure_is_logged_not_raised(self, caplog):
        broken_cache = Mock(**{"add.side_effect": ConnectionError("redis down")})

        with patch.object(PresenceService, "_get_cache", return_value=broken_cache):
            assert PresenceService.register_socket(42) is False

        assert "Failed to register socket for user 42" in caplog.text


class TestParticipantFactoryIntegration:
    """Participants added outside the service still gain access."""

    def test_factory_member_can_send(self, group_conversation):
        participant = ParticipantFactory(conversation=group_conversation)

        message = MessageService.send_message(
            group_conversation.id, participant.user, "joined"
        )

        assert message.sender_id == participant.user_id
        assert message.created_at <= timezone.now()
