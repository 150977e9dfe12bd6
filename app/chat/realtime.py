"""
Real-time fan-out over the channel layer.

Services call these helpers after a durable write. Each helper defers the
push with transaction.on_commit, so a rolled-back write never produces an
event and a committed write is never undone by a failed push.

Groups:
    chat_{conversation_id}: every socket subscribed to a conversation
    user_{user_id}: every socket of one user (cross-device sync, live
        subscription to newly joined conversations)

Channel layer messages:
    {"type": "chat.event", "event": <name>, "payload": {...}}
        Forwarded by ChatConsumer.chat_event to the client.
    {"type": "chat.subscribe", "conversation_id": <id>}
        Makes ChatConsumer.chat_subscribe join the conversation group.

Delivery is best-effort. Failures are logged and swallowed; clients
reconcile by refetching over REST after a reconnect.
"""

from __future__ import annotations

import logging
from typing import Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

logger = logging.getLogger(__name__)


def conversation_group(conversation_id) -> str:
    """Channel layer group name of a conversation."""
    return f"chat_{conversation_id}"


def user_group(user_id) -> str:
    """Channel layer group name of a user's sockets."""
    return f"user_{user_id}"


def _group_send(group: str, message: dict[str, Any]) -> None:
    """
    Send a message to a channel layer group, never raising.

    Called from on_commit callbacks, i.e. after the write already succeeded.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning(f"No channel layer configured, dropping push to {group}")
        return

    try:
        async_to_sync(channel_layer.group_send)(group, message)
    except Exception:
        logger.exception(f"Failed to push {message.get('type')} to {group}")


def broadcast_to_conversation(conversation_id, event: str, payload: dict[str, Any]) -> None:
    """
    Push an event to every socket subscribed to a conversation.

    Args:
        conversation_id: Target conversation
        event: Client-facing event name (see chat.constants.CHAT_EVENTS)
        payload: JSON-serializable event data
    """
    message = {"type": "chat.event", "event": event, "payload": payload}
    group = conversation_group(conversation_id)
    transaction.on_commit(lambda: _group_send(group, message))


def send_to_user(user_id, event: str, payload: dict[str, Any]) -> None:
    """Push an event to every socket of one user."""
    message = {"type": "chat.event", "event": event, "payload": payload}
    group = user_group(user_id)
    transaction.on_commit(lambda: _group_send(group, message))


def subscribe_user(user_id, conversation_id) -> None:
    """Subscribe a user's open sockets to a conversation they just joined."""
    message = {"type": "chat.subscribe", "conversation_id": conversation_id}
    group = user_group(user_id)
    transaction.on_commit(lambda: _group_send(group, message))
