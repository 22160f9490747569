"""
Message lookups and permissions used by the conversation services.

Messages are only ever loaded through a conversation the caller already
obtained from the conversation reader, so the access predicate has been
applied upstream.
"""

import logging

from sqlalchemy import Select, and_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from forum.db.models import (
    ConversationType,
    CourseRole,
    Enrollment,
    Message,
    Reading,
    User,
)
from forum.schemas.conversations import ConversationRead
from forum.schemas.messages import (
    NO_LONGER_ENROLLED,
    AuthorEnrollment,
    EnrollmentRead,
    MessageRead,
    MessageView,
    UserRead,
)
from forum.services.access import displayed_author
from forum.services.context import CourseContext

logger = logging.getLogger(__name__)

MessageAuthorEnrollment = aliased(Enrollment, name="message_author_enrollment")
MessageAuthorUser = aliased(User, name="message_author_user")


def enrollment_snapshot(enrollment: Enrollment | None, user: User | None) -> AuthorEnrollment:
    """Snapshot of an enrollment, or the sentinel when the enrollment is gone."""
    if enrollment is None or user is None:
        return NO_LONGER_ENROLLED
    return EnrollmentRead(
        id=enrollment.id,
        reference=enrollment.reference,
        course_role=enrollment.course_role,
        user=UserRead.model_validate(user),
    )


def message_select(enrollment: Enrollment) -> Select:
    """Messages with their author and whether `enrollment` has read them."""
    return (
        select(Message, MessageAuthorEnrollment, MessageAuthorUser, Reading.id)
        .outerjoin(
            MessageAuthorEnrollment,
            Message.author_enrollment_id == MessageAuthorEnrollment.id,
        )
        .outerjoin(MessageAuthorUser, MessageAuthorEnrollment.user_id == MessageAuthorUser.id)
        .outerjoin(
            Reading,
            and_(Reading.message_id == Message.id, Reading.enrollment_id == enrollment.id),
        )
        .execution_options(populate_existing=True)
    )


def message_from_row(row) -> MessageRead:
    message, author_enrollment, author_user, reading_id = row
    return MessageRead(
        id=message.id,
        created_at=message.created_at,
        updated_at=message.updated_at,
        reference=message.reference,
        author_enrollment=enrollment_snapshot(author_enrollment, author_user),
        anonymous_at=message.anonymous_at,
        answer_at=message.answer_at,
        content_source=message.content_source,
        content_preprocessed=message.content_preprocessed,
        content_search=message.content_search,
        is_read=reading_id is not None,
    )


async def get_message(
    db: AsyncSession,
    context: CourseContext,
    conversation: ConversationRead,
    message_reference: str,
) -> MessageRead | None:
    """Load one message of a visible conversation by its reference."""
    stmt = message_select(context.enrollment).where(
        Message.conversation_id == conversation.id,
        Message.reference == message_reference,
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        logger.debug(
            "Message %s not found in conversation %s", message_reference, conversation.reference
        )
        return None
    return message_from_row(row)


async def get_message_by_id(
    db: AsyncSession, context: CourseContext, conversation: ConversationRead, message_id: int
) -> MessageRead | None:
    stmt = message_select(context.enrollment).where(
        Message.conversation_id == conversation.id,
        Message.id == message_id,
    )
    row = (await db.execute(stmt)).first()
    return None if row is None else message_from_row(row)


def may_edit_message(enrollment: Enrollment, message: MessageRead) -> bool:
    return enrollment.course_role == CourseRole.STAFF.value or (
        message.author_enrollment != NO_LONGER_ENROLLED
        and message.author_enrollment.id == enrollment.id
    )


def may_endorse_message(
    enrollment: Enrollment, conversation: ConversationRead, message: MessageRead
) -> bool:
    """Staff endorse non-staff answers to questions; the opening message is never endorsable."""
    return (
        enrollment.course_role == CourseRole.STAFF.value
        and conversation.type == ConversationType.QUESTION.value
        and message.reference != "1"
        and message.answer_at is not None
        and (
            message.author_enrollment == NO_LONGER_ENROLLED
            or message.author_enrollment.course_role != CourseRole.STAFF.value
        )
    )


def message_view(
    context: CourseContext, conversation: ConversationRead, message: MessageRead
) -> MessageView:
    """What the viewer sees of a message, with anonymity and permissions applied."""
    return MessageView(
        id=message.id,
        created_at=message.created_at,
        updated_at=message.updated_at,
        reference=message.reference,
        author_enrollment=displayed_author(
            context.enrollment, message.author_enrollment, message.anonymous_at
        ),
        anonymous_at=message.anonymous_at,
        answer_at=message.answer_at,
        content_preprocessed=message.content_preprocessed,
        is_read=message.is_read,
        may_edit=may_edit_message(context.enrollment, message),
        may_endorse=may_endorse_message(context.enrollment, conversation, message),
    )
