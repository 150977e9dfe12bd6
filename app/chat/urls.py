"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/           GET, POST (?type=group)
        /conversations/{id}/      GET, PATCH

    Messages:
        /messages/                GET, POST, PATCH, DELETE (operation chosen by
                                  ?type= and query parameters, see MessageView)

    Search:
        /search/messages/         GET

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
The WebSocket endpoint lives in chat.routing.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import ConversationViewSet, MessageSearchView, MessageView

router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    path("messages/", MessageView.as_view(), name="messages"),
    path("search/messages/", MessageSearchView.as_view(), name="message-search"),
]
