"""Read tracking: which messages each enrollment has seen."""

import logging
from collections.abc import Sequence

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from forum.db.dialects import insert_ignoring_conflicts
from forum.db.models import Conversation, Enrollment, Message, Reading, utcnow
from forum.services.access import course_conversation
from forum.services.context import CourseContext

logger = logging.getLogger(__name__)

_INSERT_CHUNK_SIZE = 500


async def mark_messages_as_read(
    db: AsyncSession, enrollment: Enrollment, message_ids: Sequence[int]
) -> None:
    """
    Insert readings for `message_ids`, skipping any that already exist.

    Safe to retry and to race with another request doing the same. Does not commit.
    """
    now = utcnow()
    for start in range(0, len(message_ids), _INSERT_CHUNK_SIZE):
        chunk = message_ids[start : start + _INSERT_CHUNK_SIZE]
        await db.execute(
            insert_ignoring_conflicts(db, Reading, ["message_id", "enrollment_id"]),
            [
                {"created_at": now, "message_id": message_id, "enrollment_id": enrollment.id}
                for message_id in chunk
            ],
        )


async def mark_all_as_read(db: AsyncSession, context: CourseContext) -> int:
    """Read every message of every conversation the viewer can see. Returns how many were unread."""
    result = await db.execute(
        select(Message.id)
        .join(Conversation, Message.conversation_id == Conversation.id)
        .where(
            course_conversation(context.course.id, context.enrollment),
            ~exists(
                select(Reading.id).where(
                    Reading.message_id == Message.id,
                    Reading.enrollment_id == context.enrollment.id,
                )
            ),
        )
        .order_by(Message.id.asc())
    )
    message_ids = list(result.scalars())
    await mark_messages_as_read(db, context.enrollment, message_ids)
    await db.commit()
    logger.info(
        "Enrollment %s marked %s messages as read in course %s",
        context.enrollment.id,
        len(message_ids),
        context.course.reference,
    )
    return len(message_ids)
