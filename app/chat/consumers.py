"""
WebSocket consumers for the chat application.

This module implements the real-time side of the chat: one socket per
client session, pushing conversation events and accepting a few commands
that mirror the REST mutations.

Consumers:
    ChatConsumer: Handles WebSocket connections for an authenticated user

Authentication:
    Users are authenticated via JWT token (query parameter or subprotocol).
    JWTAuthMiddleware attaches the user to self.scope["user"]; anonymous
    connections are closed with code 4001 before being accepted.

Channel Groups:
    chat_{conversation_id}: joined for every conversation of the user on
        connect, and later for conversations the user joins while connected
    user_{user_id}: all sockets of the user (pin/archive sync, subscriptions)

Message Types (from client):
    - message.send: {"conversationId", "content", "attachments"?, "replyToId"?, "tempId"?}
    - message.delivered: {"messageId"}
    - conversation.read: {"conversationId"}
    - typing: {"conversationId", "isTyping"}

Events (to client), always {"event": <name>, "data": {...}}:
    - message:new, message:updated, message:statusChanged, message:reaction
    - conversation:updated, conversation:read, typing
    - user:online, user:offline (first socket opened, last socket closed)
    - message:ack (reply to message.send on the sending socket)
    - error
"""

from __future__ import annotations

import logging

from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.utils import timezone
from rest_framework import serializers

from core.exceptions import BaseApplicationError, ValidationError
from core.handlers import INTERNAL_ERROR_BODY

from chat.constants import CHAT_EVENTS, WS_CLOSE_CODES
from chat.models import MessageStatus, Participant
from chat.realtime import conversation_group, user_group
from chat.serializers import (
    MarkReadSerializer,
    MessageCreateSerializer,
    message_payload,
)
from chat.services import MessageService, PresenceService, ReadStatusService

logger = logging.getLogger(__name__)


class MessageDeliveredSerializer(serializers.Serializer):
    messageId = serializers.IntegerField(source="message_id")


class TypingSerializer(serializers.Serializer):
    conversationId = serializers.IntegerField(source="conversation_id")
    isTyping = serializers.BooleanField(source="is_typing", default=True)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Handles:
        - Connection authentication
        - Subscribing to the user's conversation groups
        - Forwarding pushed events to the client
        - Client commands (send, delivery ack, mark read, typing)

    Attributes:
        user: The authenticated user (after connect)
        conversation_ids: Conversations this socket is subscribed to
        typing_conversation_ids: Conversations this socket last reported typing in
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.conversation_ids: set[int] = set()
        self.typing_conversation_ids: set[int] = set()
        self.presence_registered = False

    async def connect(self):
        """
        Handle WebSocket connection.

        Rejects anonymous users; otherwise joins the user's group and one
        group per conversation the user participates in, then accepts.
        The user's first open socket announces user:online.
        """
        user = self.scope.get("user")

        if not user or not user.is_authenticated:
            logger.warning("Rejected unauthenticated WebSocket connection")
            await self.close(code=WS_CLOSE_CODES.UNAUTHENTICATED)
            return

        self.user = user
        await self.channel_layer.group_add(user_group(user.id), self.channel_name)

        for conversation_id in await self._get_conversation_ids():
            await self._subscribe(conversation_id)

        subprotocol = "jwt" if "jwt" in self.scope.get("subprotocols", []) else None
        await self.accept(subprotocol=subprotocol)

        came_online = await sync_to_async(PresenceService.register_socket)(user.id)
        self.presence_registered = True
        if came_online:
            await self._push_to_conversations(
                self.conversation_ids,
                CHAT_EVENTS.USER_ONLINE,
                {"user_id": user.id},
            )

        logger.info(
            f"User {user.id} connected, subscribed to "
            f"{len(self.conversation_ids)} conversations"
        )

    async def disconnect(self, close_code):
        """
        Handle WebSocket disconnection.

        Clears typing indicators this socket left on. When it was the
        user's last socket, announces user:offline and clears typing in
        every subscribed conversation. Then leaves every group joined on
        connect or since.
        """
        if self.user is None:
            return

        if self.presence_registered:
            went_offline = await sync_to_async(PresenceService.unregister_socket)(
                self.user.id
            )
            stopped = self.conversation_ids if went_offline else self.typing_conversation_ids
            for conversation_id in stopped:
                await self._push_typing(conversation_id, is_typing=False)
            if went_offline:
                await self._push_to_conversations(
                    self.conversation_ids,
                    CHAT_EVENTS.USER_OFFLINE,
                    {"user_id": self.user.id, "last_seen": timezone.now().isoformat()},
                )

        for conversation_id in self.conversation_ids:
            await self.channel_layer.group_discard(
                conversation_group(conversation_id), self.channel_name
            )
        await self.channel_layer.group_discard(user_group(self.user.id), self.channel_name)
        logger.info(f"User {self.user.id} disconnected (code {close_code})")

    async def receive_json(self, content, **kwargs):
        """
        Dispatch a client command.

        Application errors are reported as "error" events and never close
        the connection.
        """
        handlers = {
            "message.send": self._handle_send,
            "message.delivered": self._handle_delivered,
            "conversation.read": self._handle_read,
            "typing": self._handle_typing,
        }
        command = content.get("type") if isinstance(content, dict) else None
        handler = handlers.get(command)

        try:
            if handler is None:
                raise ValidationError(
                    f"Unknown message type: {command}",
                    error_code="UNKNOWN_COMMAND",
                )
            await handler(content)
        except BaseApplicationError as e:
            await self._send_event(CHAT_EVENTS.ERROR, e.to_dict())
        except Exception:
            logger.exception(f"Unhandled error processing {command} for user {self.user.id}")
            await self._send_event(CHAT_EVENTS.ERROR, INTERNAL_ERROR_BODY)

    # -------------------------------------------------------------------------
    # Client commands
    # -------------------------------------------------------------------------

    def _validate(self, serializer_class, content) -> dict:
        serializer = serializer_class(data=content)
        if not serializer.is_valid():
            raise ValidationError(
                "Invalid command payload",
                details=serializer.errors,
            )
        return serializer.validated_data

    async def _handle_send(self, content):
        data = self._validate(MessageCreateSerializer, content)
        payload = await self._send_message(data)
        await self._send_event(
            CHAT_EVENTS.MESSAGE_ACK,
            {"temp_id": content.get("tempId"), "message": payload},
        )

    async def _handle_delivered(self, content):
        data = self._validate(MessageDeliveredSerializer, content)
        try:
            await database_sync_to_async(ReadStatusService.update_message_status)(
                message_id=data["message_id"],
                user=self.user,
                status=MessageStatus.DELIVERED,
            )
        except ValidationError as e:
            # Ack arrived after the message was already read
            if e.error_code != "INVALID_STATUS_TRANSITION":
                raise
            logger.debug(f"Ignored late delivery ack for message {data['message_id']}")

    async def _handle_read(self, content):
        data = self._validate(MarkReadSerializer, content)
        await database_sync_to_async(ReadStatusService.mark_conversation_read)(
            conversation_id=data["conversation_id"],
            user=self.user,
        )

    async def _handle_typing(self, content):
        data = self._validate(TypingSerializer, content)
        conversation_id = data["conversation_id"]
        if conversation_id not in self.conversation_ids:
            raise ValidationError(
                "Not subscribed to this conversation",
                error_code="NOT_SUBSCRIBED",
                details={"conversation_id": conversation_id},
            )

        if data["is_typing"]:
            self.typing_conversation_ids.add(conversation_id)
        else:
            self.typing_conversation_ids.discard(conversation_id)
        await self._push_typing(conversation_id, is_typing=data["is_typing"])

    # -------------------------------------------------------------------------
    # Channel layer handlers
    # -------------------------------------------------------------------------

    async def chat_event(self, event):
        """
        Handle chat.event messages from the channel layer.

        Sends the event to the WebSocket client, except back to the socket
        that originated it (typing indicators).
        """
        if event.get("exclude_channel") == self.channel_name:
            return
        await self._send_event(event["event"], event["payload"])

    async def chat_subscribe(self, event):
        """Handle chat.subscribe: join a conversation the user was just added to."""
        await self._subscribe(event["conversation_id"])

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _subscribe(self, conversation_id: int):
        if conversation_id in self.conversation_ids:
            return
        await self.channel_layer.group_add(
            conversation_group(conversation_id), self.channel_name
        )
        self.conversation_ids.add(conversation_id)

    async def _send_event(self, event: str, data):
        await self.send_json({"event": event, "data": data})

    async def _push_to_conversations(self, conversation_ids, event: str, payload: dict):
        """Push an event to other sockets in each conversation group."""
        for conversation_id in conversation_ids:
            await self.channel_layer.group_send(
                conversation_group(conversation_id),
                {
                    "type": "chat.event",
                    "event": event,
                    "payload": payload,
                    "exclude_channel": self.channel_name,
                },
            )

    async def _push_typing(self, conversation_id: int, is_typing: bool):
        await self._push_to_conversations(
            [conversation_id],
            CHAT_EVENTS.TYPING,
            {
                "conversation_id": conversation_id,
                "user_id": self.user.id,
                "is_typing": is_typing,
            },
        )

    @database_sync_to_async
    def _get_conversation_ids(self) -> list[int]:
        """IDs of all conversations the user participates in."""
        return list(
            Participant.objects.filter(user_id=self.user.id).values_list(
                "conversation_id", flat=True
            )
        )

    @database_sync_to_async
    def _send_message(self, data: dict) -> dict:
        """Send a message using MessageService and serialize it."""
        message = MessageService.send_message(
            conversation_id=data["conversation_id"],
            sender=self.user,
            content=data.get("content", ""),
            attachments=data.get("attachments"),
            reply_to_id=data.get("reply_to_id"),
        )
        return message_payload(message)
