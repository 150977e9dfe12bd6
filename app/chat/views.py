"""
Views for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: List, create, detail and per-user actions
- MessageView: Every message operation, selected by ?type=
- MessageSearchView: Content search

URL Structure:
    /api/v1/chat/conversations/               GET, POST (?type=group)
    /api/v1/chat/conversations/{id}/          GET, PATCH {action}
    /api/v1/chat/messages/                    GET (?conversationId= | ?threadId=)
                                              POST (?type=reaction|attachment)
                                              PATCH ?type=status|read|edit
                                              DELETE (501)
    /api/v1/chat/search/messages/             GET

Design Decisions:
    - Views only validate request shape and serialize results; every rule
      lives in chat.services
    - Service errors (core.exceptions) are mapped to HTTP statuses by
      core.handlers.api_exception_handler, so views contain no error branches
    - Listing messages marks the conversation read for the caller
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import ValidationError

from chat.serializers import (
    AttachmentCreateSerializer,
    ConversationActionSerializer,
    ConversationSerializer,
    DirectConversationCreateSerializer,
    GroupConversationCreateSerializer,
    MarkReadSerializer,
    MessageAttachmentSerializer,
    MessageCreateSerializer,
    MessageEditSerializer,
    MessageListQuerySerializer,
    MessageReactionSerializer,
    MessageSearchQuerySerializer,
    MessageSerializer,
    MessageStatusUpdateSerializer,
    ReactionToggleSerializer,
)
from chat.services import (
    ConversationService,
    MessageSearchService,
    MessageService,
    ReactionService,
    ReadStatusService,
)


def _validated(serializer_class, data) -> dict:
    serializer = serializer_class(data=data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _unknown_type(value) -> ValidationError:
    return ValidationError(
        f"Unsupported type: {value}",
        error_code="INVALID_TYPE",
        details={"type": value},
    )


# =============================================================================
# Conversation Views
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        description="Pinned conversations first, then by most recent message.",
        responses={200: ConversationSerializer(many=True)},
        tags=["Chat - Conversations"],
    ),
    create=extend_schema(
        operation_id="create_conversation",
        summary="Create conversation",
        description=(
            "Direct (default): returns the existing conversation for the pair and "
            "product (200) or creates it (201). With ?type=group creates a group."
        ),
        parameters=[
            OpenApiParameter(
                name="type",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                enum=["group"],
                required=False,
            ),
        ],
        request=DirectConversationCreateSerializer,
        responses={200: ConversationSerializer, 201: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
    partial_update=extend_schema(
        operation_id="update_conversation",
        summary="Conversation action",
        description=(
            "action: archive | togglePin | addParticipants. "
            "leave, removeParticipant and updateGroupInfo answer 501."
        ),
        request=ConversationActionSerializer,
        responses={
            200: ConversationSerializer,
            501: OpenApiResponse(description="Action not supported"),
        },
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(viewsets.GenericViewSet):
    """
    ViewSet for conversation operations.

    list:
        Get all conversations of the current user with unread counts and
        last message preview.

    create:
        Direct: find-or-create with the other user (caller is the buyer).
        Group: create with the caller as owner.

    retrieve:
        Get one conversation, participants only.

    partial_update:
        Per-user actions (archive, togglePin) and group membership.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = ConversationSerializer
    lookup_value_regex = r"\d+"

    def list(self, request):
        conversations = ConversationService.list_for_user(request.user)
        return Response(ConversationSerializer(conversations, many=True).data)

    def create(self, request):
        """Create a conversation (direct or group)."""
        conversation_type = request.query_params.get("type")

        if conversation_type == "group":
            data = _validated(GroupConversationCreateSerializer, request.data)
            conversation = ConversationService.create_group(
                creator=request.user,
                name=data["name"],
                member_ids=data["member_ids"],
                description=data["description"],
                avatar_url=data["avatar_url"],
            )
            created = True
        elif conversation_type in (None, "", "direct"):
            data = _validated(DirectConversationCreateSerializer, request.data)
            conversation, created = ConversationService.get_or_create_direct(
                initiator=request.user,
                other_user_id=data["other_user_id"],
                product_ref=data["product_ref"],
            )
        else:
            raise _unknown_type(conversation_type)

        summary = ConversationService.get_for_participant(conversation.id, request.user)
        return Response(
            ConversationSerializer(summary).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def retrieve(self, request, pk=None):
        conversation = ConversationService.get_for_participant(int(pk), request.user)
        return Response(ConversationSerializer(conversation).data)

    def partial_update(self, request, pk=None):
        """Apply one action to the conversation."""
        conversation_id = int(pk)
        data = _validated(ConversationActionSerializer, request.data)
        action = data["action"]

        if action == "archive":
            ConversationService.toggle_archive(conversation_id, request.user)
        elif action == "togglePin":
            ConversationService.toggle_pin(conversation_id, request.user)
        elif action == "addParticipants":
            ConversationService.add_group_members(
                conversation_id,
                user_ids=data.get("user_ids", []),
                added_by=request.user,
                role=data["role"],
            )
        elif action in ConversationService.UNSUPPORTED_ACTIONS:
            ConversationService.reject_unsupported_action(
                conversation_id, request.user, action
            )
        else:
            raise ValidationError(
                f"Unknown action: {action}",
                error_code="INVALID_ACTION",
                details={"action": action},
            )

        conversation = ConversationService.get_for_participant(conversation_id, request.user)
        return Response(ConversationSerializer(conversation).data)


# =============================================================================
# Message Views
# =============================================================================


class MessageView(APIView):
    """
    Message operations.

    GET ?conversationId=&limit=&before=   Page of messages, oldest first
                                          (marks the returned messages read)
    GET ?threadId=                        Replies to a message
    POST                                  Send a message
    POST ?type=reaction                   Toggle a reaction
    POST ?type=attachment                 Attach a file to own message
    PATCH ?type=status|read|edit          Status update / mark read / edit
    DELETE                                Not supported (501)
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_messages",
        summary="List messages or thread replies",
        parameters=[MessageListQuerySerializer],
        responses={200: MessageSerializer(many=True)},
        tags=["Chat - Messages"],
    )
    def get(self, request):
        data = _validated(MessageListQuerySerializer, request.query_params)

        if "thread_id" in data:
            replies = MessageService.get_thread_replies(data["thread_id"], request.user)
            return Response({"results": MessageSerializer(replies, many=True).data})

        page = MessageService.list_messages(
            conversation_id=data["conversation_id"],
            user=request.user,
            limit=data.get("limit"),
            before=data.get("before"),
        )
        if page["results"]:
            # Only what the caller was shown counts as read
            ReadStatusService.mark_conversation_read(
                data["conversation_id"],
                request.user,
                up_to=page["results"][-1].created_at,
            )

        next_before = page["next_before"]
        return Response(
            {
                "results": MessageSerializer(page["results"], many=True).data,
                "has_more": page["has_more"],
                "next_before": next_before.isoformat() if next_before else None,
            }
        )

    @extend_schema(
        operation_id="create_message",
        summary="Send message, toggle reaction or add attachment",
        parameters=[
            OpenApiParameter(
                name="type",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                enum=["reaction", "attachment"],
                required=False,
            ),
        ],
        request=MessageCreateSerializer,
        responses={201: MessageSerializer},
        tags=["Chat - Messages"],
    )
    def post(self, request):
        request_type = request.query_params.get("type")

        if request_type == "reaction":
            data = _validated(ReactionToggleSerializer, request.data)
            result = ReactionService.toggle_reaction(
                data["message_id"], request.user, data["emoji"]
            )
            return Response(
                {
                    "added": result.added,
                    "reaction": (
                        MessageReactionSerializer(result.reaction).data
                        if result.reaction
                        else None
                    ),
                }
            )

        if request_type == "attachment":
            data = dict(_validated(AttachmentCreateSerializer, request.data))
            attachment = MessageService.add_attachment(
                message_id=data.pop("message_id"),
                uploader=request.user,
                **data,
            )
            return Response(
                MessageAttachmentSerializer(attachment).data,
                status=status.HTTP_201_CREATED,
            )

        if request_type:
            raise _unknown_type(request_type)

        data = _validated(MessageCreateSerializer, request.data)
        message = MessageService.send_message(
            conversation_id=data["conversation_id"],
            sender=request.user,
            content=data["content"],
            attachments=data.get("attachments"),
            reply_to_id=data.get("reply_to_id"),
        )
        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="update_message",
        summary="Update status, mark conversation read or edit content",
        parameters=[
            OpenApiParameter(
                name="type",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                enum=["status", "read", "edit"],
                required=True,
            ),
        ],
        request=MessageEditSerializer,
        responses={200: MessageSerializer},
        tags=["Chat - Messages"],
    )
    def patch(self, request):
        request_type = request.query_params.get("type")

        if request_type == "status":
            data = _validated(MessageStatusUpdateSerializer, request.data)
            message = ReadStatusService.update_message_status(
                data["message_id"], request.user, data["status"]
            )
            return Response(MessageSerializer(message).data)

        if request_type == "read":
            data = _validated(MarkReadSerializer, request.data)
            participant = ReadStatusService.mark_conversation_read(
                data["conversation_id"], request.user
            )
            return Response(
                {
                    "conversation_id": participant.conversation_id,
                    "last_read_at": participant.last_read_at.isoformat(),
                }
            )

        if request_type == "edit":
            data = _validated(MessageEditSerializer, request.data)
            message = MessageService.edit_message(
                data["message_id"], request.user, data["content"]
            )
            return Response(MessageSerializer(message).data)

        raise _unknown_type(request_type)

    @extend_schema(
        operation_id="delete_message",
        summary="Delete message (not supported)",
        responses={501: OpenApiResponse(description="Message deletion is not supported")},
        tags=["Chat - Messages"],
    )
    def delete(self, request):
        MessageService.delete_message(request.query_params.get("messageId"), request.user)


# =============================================================================
# Search Views
# =============================================================================


class MessageSearchView(APIView):
    """
    Search messages across the user's conversations.

    GET /api/v1/chat/search/messages/?query=...&conversationId=X&limit=N

    Query parameters:
        query: Text to search for (case-insensitive substring)
        conversationId: Optional - limit search to one conversation
        limit: Optional - maximum results (default 20, max 100)
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="search_messages",
        summary="Search messages",
        parameters=[MessageSearchQuerySerializer],
        responses={
            200: OpenApiResponse(description="{results, count, query}, newest first"),
            400: OpenApiResponse(description="Missing or blank query"),
            403: OpenApiResponse(description="Not a participant of conversationId"),
        },
        tags=["Chat - Search"],
    )
    def get(self, request):
        data = _validated(MessageSearchQuerySerializer, request.query_params)
        result = MessageSearchService.search(
            user=request.user,
            query=data["query"],
            conversation_id=data.get("conversation_id"),
            limit=data.get("limit"),
        )
        return Response(
            {
                "results": MessageSerializer(result["results"], many=True).data,
                "count": result["count"],
                "query": result["query"],
            }
        )
