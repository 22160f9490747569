"""
Conversation aggregate loading.

`get_conversation()` is the only way services obtain a conversation: it
applies the access predicate, so anything built on its result is visible
to the viewer.
"""

import logging

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from forum.db.models import (
    Conversation,
    ConversationParticipants,
    ConversationSelectedParticipant,
    ConversationType,
    CourseRole,
    Endorsement,
    Enrollment,
    Message,
    Reading,
    Tag,
    Tagging,
    User,
)
from forum.schemas.conversations import (
    ConversationRead,
    ConversationView,
    EndorsementRead,
    TaggingRead,
    TagRead,
)
from forum.schemas.messages import EnrollmentRead
from forum.services.access import course_conversation, displayed_author
from forum.services.context import CourseContext
from forum.services.messages import enrollment_snapshot

logger = logging.getLogger(__name__)

ConversationAuthorEnrollment = aliased(Enrollment, name="conversation_author_enrollment")
ConversationAuthorUser = aliased(User, name="conversation_author_user")


def staff_first():
    """Ordering key putting staff enrollments before students."""
    return case((Enrollment.course_role == CourseRole.STAFF.value, 0), else_=1)


async def get_conversation(
    db: AsyncSession, context: CourseContext, reference: str
) -> ConversationRead | None:
    """
    Load a conversation aggregate by reference.

    Returns None when the conversation does not exist in the course or is not
    visible to the viewer; the two cases are indistinguishable to callers.
    """
    enrollment = context.enrollment
    row = (
        await db.execute(
            select(Conversation, ConversationAuthorEnrollment, ConversationAuthorUser)
            .outerjoin(
                ConversationAuthorEnrollment,
                Conversation.author_enrollment_id == ConversationAuthorEnrollment.id,
            )
            .outerjoin(
                ConversationAuthorUser,
                ConversationAuthorEnrollment.user_id == ConversationAuthorUser.id,
            )
            .where(
                course_conversation(context.course.id, enrollment),
                Conversation.reference == reference,
            )
            .execution_options(populate_existing=True)
        )
    ).first()
    if row is None:
        logger.debug(
            "Conversation %s not found for enrollment %s in course %s",
            reference,
            enrollment.id,
            context.course.reference,
        )
        return None
    conversation, author_enrollment, author_user = row

    selected_participants: list[EnrollmentRead] = []
    if conversation.participants != ConversationParticipants.EVERYONE.value:
        result = await db.execute(
            select(Enrollment, User)
            .join(User, Enrollment.user_id == User.id)
            .join(
                ConversationSelectedParticipant,
                ConversationSelectedParticipant.enrollment_id == Enrollment.id,
            )
            .where(
                ConversationSelectedParticipant.conversation_id == conversation.id,
                Enrollment.id != enrollment.id,
            )
            .order_by(staff_first(), User.name.asc())
        )
        selected_participants = [
            enrollment_snapshot(participant, user) for participant, user in result.all()
        ]

    taggings_query = (
        select(Tagging, Tag)
        .join(Tag, Tagging.tag_id == Tag.id)
        .where(Tagging.conversation_id == conversation.id)
        .order_by(Tag.id.asc())
    )
    if enrollment.course_role != CourseRole.STAFF.value:
        taggings_query = taggings_query.where(Tag.staff_only_at.is_(None))
    taggings = [
        TaggingRead(id=tagging.id, tag=TagRead.model_validate(tag))
        for tagging, tag in (await db.execute(taggings_query)).all()
    ]

    messages_count = await db.scalar(
        select(func.count(Message.id)).where(Message.conversation_id == conversation.id)
    )
    readings_count = await db.scalar(
        select(func.count(Reading.id))
        .join(Message, Reading.message_id == Message.id)
        .where(
            Message.conversation_id == conversation.id,
            Reading.enrollment_id == enrollment.id,
        )
    )

    endorsements: list[EndorsementRead] = []
    if conversation.type == ConversationType.QUESTION.value:
        result = await db.execute(
            select(Endorsement, Enrollment, User)
            .join(Message, Endorsement.message_id == Message.id)
            .outerjoin(Enrollment, Endorsement.enrollment_id == Enrollment.id)
            .outerjoin(User, Enrollment.user_id == User.id)
            .where(Message.conversation_id == conversation.id)
            .order_by(Endorsement.id.asc())
        )
        endorsements = [
            EndorsementRead(id=endorsement.id, enrollment=enrollment_snapshot(endorser, user))
            for endorsement, endorser, user in result.all()
        ]

    return ConversationRead(
        id=conversation.id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        reference=conversation.reference,
        author_enrollment=enrollment_snapshot(author_enrollment, author_user),
        participants=conversation.participants,
        anonymous_at=conversation.anonymous_at,
        type=conversation.type,
        resolved_at=conversation.resolved_at,
        announcement_at=conversation.announcement_at,
        pinned_at=conversation.pinned_at,
        title=conversation.title,
        title_search=conversation.title_search,
        next_message_reference=conversation.next_message_reference,
        selected_participants=selected_participants,
        taggings=taggings,
        messages_count=messages_count or 0,
        readings_count=readings_count or 0,
        endorsements=endorsements,
    )


def conversation_view(context: CourseContext, conversation: ConversationRead) -> ConversationView:
    """What the viewer sees of a conversation, with anonymity applied."""
    return ConversationView(
        id=conversation.id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        reference=conversation.reference,
        author_enrollment=displayed_author(
            context.enrollment, conversation.author_enrollment, conversation.anonymous_at
        ),
        participants=conversation.participants,
        anonymous_at=conversation.anonymous_at,
        type=conversation.type,
        resolved_at=conversation.resolved_at,
        announcement_at=conversation.announcement_at,
        pinned_at=conversation.pinned_at,
        title=conversation.title,
        selected_participants=conversation.selected_participants,
        taggings=conversation.taggings,
        messages_count=conversation.messages_count,
        readings_count=conversation.readings_count,
        endorsements=conversation.endorsements,
    )
