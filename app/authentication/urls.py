"""
URL configuration for authentication app.

URL structure:
    /api/v1/auth/token/           - Obtain access/refresh JWT pair (POST)
    /api/v1/auth/token/refresh/   - Refresh an access token (POST)
    /api/v1/auth/me/              - Current user summary (GET)

The access token is sent as "Authorization: Bearer <token>" on REST calls
and as ?token=<token> (or the "jwt" subprotocol) on the chat socket.
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.views import CurrentUserView

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("me/", CurrentUserView.as_view(), name="me"),
]
