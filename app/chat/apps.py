"""
Chat application configuration.

This app provides the buyer/seller chat with:
- Direct conversations (one per user pair and product) and groups
- Messages with forward-only delivery status, threads, reactions, attachments
- Per-participant read markers, pins and archives
- Real-time fan-out over Django Channels
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
