"""
Constants for the chat module.

This module centralizes:
- Message limits (content length, attachments per message)
- Reaction limits (emoji length)
- Presence tracking (cache keys and TTL)
- Real-time event names pushed to socket clients
- Socket close codes

Page sizes and search limits are deployment settings (CHAT_* in
config/settings.py), not constants.

Import example:
    from chat.constants import CHAT_EVENTS, MESSAGE_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters

    # Attachments
    MAX_ATTACHMENTS_PER_MESSAGE: Final[int] = 10


# =============================================================================
# Reaction Configuration
# =============================================================================


class REACTION_CONFIG:
    """Configuration for message reactions."""

    # Allows multi-codepoint emoji (skin tones, ZWJ sequences)
    MAX_EMOJI_LENGTH: Final[int] = 32


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for presence tracking."""

    # Open socket count per user; expires if a worker dies without cleanup
    SOCKET_COUNT_TTL_SECONDS: Final[int] = 86400  # 24 hours

    # Cache key prefix
    KEY_PREFIX_USER_SOCKETS: Final[str] = "presence:user"


# =============================================================================
# Real-time Events
# =============================================================================


class CHAT_EVENTS:
    """
    Event names delivered to socket clients as {"event": ..., "data": ...}.

    Conversation group events reach every connected participant; user
    group events reach every socket of one user.
    """

    MESSAGE_NEW: Final[str] = "message:new"
    MESSAGE_ACK: Final[str] = "message:ack"
    MESSAGE_UPDATED: Final[str] = "message:updated"
    MESSAGE_STATUS_CHANGED: Final[str] = "message:statusChanged"
    MESSAGE_REACTION: Final[str] = "message:reaction"
    CONVERSATION_UPDATED: Final[str] = "conversation:updated"
    CONVERSATION_READ: Final[str] = "conversation:read"
    TYPING: Final[str] = "typing"
    USER_ONLINE: Final[str] = "user:online"
    USER_OFFLINE: Final[str] = "user:offline"
    ERROR: Final[str] = "error"


# =============================================================================
# Socket Close Codes
# =============================================================================


class WS_CLOSE_CODES:
    """Application close codes (4000-4999 range)."""

    UNAUTHENTICATED: Final[int] = 4001
