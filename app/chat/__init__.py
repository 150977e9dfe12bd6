"""
Chat app for real-time buyer/seller messaging.

This app handles:
- Conversations (direct and group)
- Message sending, editing, threads, reactions and attachments
- Read markers and delivery status
- WebSocket real-time updates
- Message search

Related apps:
    - authentication: User model and JWT identity
    - core: Error hierarchy and service base class

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See realtime.py for the server-side push helpers.

Usage:
    from chat.services import ConversationService, MessageService

    conversation, created = ConversationService.get_or_create_direct(
        initiator=buyer,
        other_user_id=seller.id,
    )
    message = MessageService.send_message(
        conversation_id=conversation.id,
        sender=buyer,
        content="Hello!",
    )
"""
