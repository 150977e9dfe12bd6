"""
Authentication models.

This module defines the identity model consumed by the chat core:
- User: Custom user model with email-based authentication plus the public
  profile fields chat surfaces show (display name, avatar, marketplace role)

Related files:
    - managers.py: Custom user manager for email-based creation
    - serializers.py: Public user summary used in chat payloads

Security:
    - Passwords hashed with Django's configured hasher
    - Tokens are issued and validated by djangorestframework-simplejwt
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """Marketplace role of a user."""

    BUYER = "BUYER", "Buyer"
    SELLER = "SELLER", "Seller"
    ADMIN = "ADMIN", "Admin"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    The chat core references users by id only and never owns their
    lifecycle; display_name, avatar_url and role are read-only inputs
    for conversation and message payloads.

    Fields:
        email: Primary identifier, unique, used for login
        display_name: Name shown to other participants
        avatar_url: Optional avatar image URL
        role: Marketplace role (buyer, seller, admin)
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        user = User.objects.create_user(
            email="farmer@example.com",
            password="securepassword",
            display_name="Green Acres",
            role=UserRole.SELLER,
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    display_name = models.CharField(
        max_length=150,
        blank=True,
        default="",
        help_text="Name shown to other chat participants",
    )
    avatar_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Avatar image URL",
    )
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.BUYER,
        help_text="Marketplace role",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        """Return the user's email as string representation."""
        return self.email

    def get_full_name(self):
        """Return the display name, falling back to the email address."""
        return self.display_name or self.email

    def get_short_name(self):
        """Return the display name, or the email local part if not set."""
        return self.display_name or self.email.split("@")[0]
