"""
Authentication application.

Provides the identity the chat core trusts: an email-based User model,
JWT issuance/refresh (djangorestframework-simplejwt) and the public user
summary embedded in chat payloads.

Usage:
    from authentication.models import User
    from authentication.serializers import UserSerializer
"""
