"""
Views for authentication endpoints.

Token issuance and refresh use simplejwt's stock views (see urls.py);
this module only adds the current-user endpoint clients use to learn
their own id before opening the chat socket.
"""

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.serializers import CurrentUserSerializer


class CurrentUserView(APIView):
    """
    GET /api/v1/auth/me/

    Returns the authenticated user's own summary.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_current_user",
        summary="Get current user",
        responses={200: CurrentUserSerializer},
        tags=["Auth"],
    )
    def get(self, request):
        """Return the caller's user record."""
        return Response(CurrentUserSerializer(request.user).data)
