"""
Serializers for authentication models.

This module provides DRF serializers for:
- User model (public summary embedded in chat payloads and /me)

Security:
    - Email is only exposed to the user themself (CurrentUserSerializer)
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Public summary of a user.

    Used wherever another participant is rendered: conversation
    participant lists, message senders, reaction authors.
    """

    class Meta:
        model = User
        fields = [
            "id",
            "display_name",
            "avatar_url",
            "role",
        ]
        read_only_fields = fields


class CurrentUserSerializer(UserSerializer):
    """Summary of the authenticated user, including private fields."""

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ["email", "date_joined"]
        read_only_fields = fields
