"""Paging through a conversation's messages."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import get_settings
from forum.db.models import ConversationType, Message
from forum.schemas.conversations import ConversationRead
from forum.schemas.messages import MessagePageRead
from forum.services.context import CourseContext
from forum.services.messages import message_from_row, message_select, message_view
from forum.services.readings import mark_messages_as_read

logger = logging.getLogger(__name__)
settings = get_settings()


def _cursor_id(conversation: ConversationRead, reference: str):
    return (
        select(Message.id)
        .where(Message.conversation_id == conversation.id, Message.reference == reference)
        .scalar_subquery()
    )


async def load_message_page(
    db: AsyncSession,
    context: CourseContext,
    conversation: ConversationRead,
    *,
    before: str | None = None,
    after: str | None = None,
    page_size: int | None = None,
) -> MessagePageRead:
    """
    One page of messages in chronological order, marked as read for the viewer.

    `before` wins over `after`. Without a cursor chats open on their newest
    page and everything else on the oldest. `is_read` on each message reflects
    the state before this page was loaded.
    """
    page_size = page_size or settings.messages_page_size
    stmt = message_select(context.enrollment).where(Message.conversation_id == conversation.id)

    if before is not None:
        descending = True
        stmt = stmt.where(Message.id < _cursor_id(conversation, before))
    elif after is not None:
        descending = False
        stmt = stmt.where(Message.id > _cursor_id(conversation, after))
    else:
        descending = conversation.type == ConversationType.CHAT.value

    stmt = stmt.order_by(Message.id.desc() if descending else Message.id.asc()).limit(
        page_size + 1
    )
    messages = [message_from_row(row) for row in (await db.execute(stmt)).all()]
    more_exist = len(messages) > page_size
    messages = messages[:page_size]
    if descending:
        messages.reverse()

    unread = [message.id for message in messages if not message.is_read]
    if unread:
        await mark_messages_as_read(db, context.enrollment, unread)
        await db.commit()
    logger.debug(
        "Loaded %s messages of conversation %s (more_exist=%s, reversed=%s, newly read=%s)",
        len(messages),
        conversation.reference,
        more_exist,
        descending,
        len(unread),
    )

    return MessagePageRead(
        messages=[message_view(context, conversation, message) for message in messages],
        more_exist=more_exist,
        reversed=descending,
    )
