"""Outbound notifications for new messages and announcements."""

import logging

from forum.schemas.conversations import ConversationRead
from forum.schemas.messages import MessageRead

logger = logging.getLogger(__name__)


class NotificationSink:
    """
    Receives messages that should be sent to course participants.

    The default sink only logs; delivery (email, push) plugs in by overriding
    `get_notification_sink`.
    """

    async def notify(self, conversation: ConversationRead, message: MessageRead) -> None:
        logger.info(
            "Notification queued for conversation %s message %s",
            conversation.reference,
            message.reference,
        )


_default_sink = NotificationSink()


def get_notification_sink() -> NotificationSink:
    """FastAPI dependency for the notification sink."""
    return _default_sink
