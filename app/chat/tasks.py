"""
Celery tasks for chat app.

This module defines periodic consistency tasks for the denormalized
columns the chat keeps for fast reads:
- Message.reply_count (incremented with each reply insert)
- Conversation.last_message_at (set with each message insert)

Both are written transactionally by MessageService, so drift only appears
after manual data fixes or restores. The tasks detect and repair it.

Related files:
    - services.py: MessageService.send_message
    - models.py: Message, Conversation

Celery Beat Schedule (config/settings.py):
    CELERY_BEAT_SCHEDULE = {
        "chat-reconcile-reply-counts": {
            "task": "chat.tasks.reconcile_reply_counts",
            "schedule": crontab(hour=3, minute=30),
        },
        ...
    }

Usage:
    from chat.tasks import reconcile_reply_counts

    reconcile_reply_counts.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.db.models import Count, F, IntegerField, Max, OuterRef, Subquery
from django.db.models.functions import Coalesce

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


@shared_task(bind=True)
def reconcile_reply_counts(self, batch_size: int = DEFAULT_BATCH_SIZE) -> dict:
    """
    Repair messages whose reply_count differs from their actual replies.

    Args:
        batch_size: Maximum messages repaired per run

    Returns:
        Dict with:
        - status: "completed"
        - repaired: Number of messages whose count was corrected
        - message_ids: IDs of the corrected messages
    """
    from chat.models import Message

    actual_replies = (
        Message.objects.filter(reply_to_id=OuterRef("pk"))
        .order_by()
        .values("reply_to_id")
        .annotate(total=Count("id"))
        .values("total")
    )
    drifted = (
        Message.objects.annotate(
            actual_replies=Coalesce(
                Subquery(actual_replies, output_field=IntegerField()), 0
            )
        )
        .exclude(reply_count=F("actual_replies"))
        .values_list("id", "reply_count", "actual_replies")[:batch_size]
    )

    repaired = []
    for message_id, stored, actual in drifted:
        Message.objects.filter(id=message_id).update(reply_count=actual)
        logger.warning(
            f"Repaired reply_count of message {message_id}: {stored} -> {actual}"
        )
        repaired.append(message_id)

    logger.info(f"Reply count reconciliation finished, {len(repaired)} repaired")
    return {"status": "completed", "repaired": len(repaired), "message_ids": repaired}


@shared_task(bind=True)
def reconcile_last_message_at(self, batch_size: int = DEFAULT_BATCH_SIZE) -> dict:
    """
    Repair conversations whose last_message_at is not their newest message.

    Conversations without messages are expected to have last_message_at
    unset and are skipped.

    Returns:
        Dict with status, repaired count and conversation_ids
    """
    from chat.models import Conversation

    drifted = (
        Conversation.objects.annotate(newest=Max("messages__created_at"))
        .filter(newest__isnull=False)
        .exclude(last_message_at=F("newest"))
        .values_list("id", "newest")[:batch_size]
    )

    repaired = []
    for conversation_id, newest in drifted:
        Conversation.objects.filter(id=conversation_id).update(last_message_at=newest)
        repaired.append(conversation_id)

    if repaired:
        logger.warning(f"Repaired last_message_at of conversations {repaired}")
    return {"status": "completed", "repaired": len(repaired), "conversation_ids": repaired}
