"""
Test configuration and fixtures for chat tests.

This module provides:
- A buyer/seller pair with their direct conversation
- A group with an owner, an admin and a member
- Authenticated API clients per user
- A mock of the channel layer push (real-time events)

Real-time pushes are queued with transaction.on_commit. Tests that assert
on them run the callbacks with django_capture_on_commit_callbacks:

    def test_example(buyer, direct_conversation, pushed_events,
                     django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            MessageService.send_message(direct_conversation.id, buyer, "Hi")
        assert pushed_events.events("message:new")
"""

from unittest.mock import patch

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import SellerFactory, UserFactory
from chat.models import ParticipantRole
from chat.services import ConversationService
from chat.tests.factories import GroupConversationFactory, ParticipantFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def buyer(db):
    """Create a buyer account."""
    return UserFactory()


@pytest.fixture
def seller(db):
    """Create a seller account."""
    return SellerFactory()


@pytest.fixture
def outsider(db):
    """Create a user who is not a participant in any test conversation."""
    return UserFactory()


@pytest.fixture
def group_admin(db):
    """Create a user who will be a group admin."""
    return UserFactory()


@pytest.fixture
def group_member(db):
    """Create a user who will be a plain group member."""
    return UserFactory()


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def direct_conversation(buyer, seller):
    """Direct conversation started by the buyer, without product."""
    conversation, _ = ConversationService.get_or_create_direct(buyer, seller.id)
    return conversation


@pytest.fixture
def group_conversation(db, group_admin, group_member):
    """Group with an owner (created_by), an ADMIN and a MEMBER."""
    conversation = GroupConversationFactory(name="Farmers market")
    ParticipantFactory(
        conversation=conversation, user=group_admin, role=ParticipantRole.ADMIN
    )
    ParticipantFactory(
        conversation=conversation, user=group_member, role=ParticipantRole.MEMBER
    )
    return conversation


@pytest.fixture
def group_owner(group_conversation):
    """The owner of group_conversation."""
    return group_conversation.created_by


# =============================================================================
# API Client Fixtures
# =============================================================================


def _client_for(user) -> APIClient:
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def client_for():
    """Return a function building a JWT-authenticated client for a user."""
    return _client_for


@pytest.fixture
def buyer_client(buyer):
    return _client_for(buyer)


@pytest.fixture
def seller_client(seller):
    return _client_for(seller)


@pytest.fixture
def outsider_client(outsider):
    return _client_for(outsider)


@pytest.fixture
def api_client():
    """Unauthenticated client."""
    return APIClient()


# =============================================================================
# Real-time Fixtures
# =============================================================================


class PushedEvents:
    """Recorder for channel layer pushes made through chat.realtime."""

    def __init__(self, mock):
        self.mock = mock

    @property
    def calls(self) -> list[tuple[str, dict]]:
        """(group, message) of every push, in order."""
        return [(c.args[0], c.args[1]) for c in self.mock.call_args_list]

    def events(self, name: str) -> list[tuple[str, dict]]:
        """(group, payload) of every chat.event push with the given event name."""
        return [
            (group, message["payload"])
            for group, message in self.calls
            if message["type"] == "chat.event" and message["event"] == name
        ]

    def subscriptions(self) -> list[tuple[str, int]]:
        """(user group, conversation_id) of every chat.subscribe push."""
        return [
            (group, message["conversation_id"])
            for group, message in self.calls
            if message["type"] == "chat.subscribe"
        ]


@pytest.fixture
def pushed_events():
    """Replace the channel layer push with a recorder."""
    with patch("chat.realtime._group_send") as mock:
        yield PushedEvents(mock)
