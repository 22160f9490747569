"""
Conversation visibility and edit permissions.

`conversation_visible()` is the single access predicate: every query that
reads conversations or their messages must include it.
"""

from datetime import datetime

from sqlalchemy import ColumnElement, and_, exists, false, or_, select

from forum.db.models import (
    Conversation,
    ConversationParticipants,
    ConversationSelectedParticipant,
    CourseRole,
    Enrollment,
)
from forum.schemas.conversations import ConversationRead
from forum.schemas.messages import (
    ANONYMOUS,
    NO_LONGER_ENROLLED,
    AuthorEnrollment,
    DisplayedAuthor,
)


def conversation_visible(enrollment: Enrollment) -> ColumnElement[bool]:
    """
    SQL predicate: the conversation is visible to `enrollment`.

    Visible iff participants is "everyone", or it is "staff" and the viewer is
    staff, or the viewer is a selected participant.
    """
    staff_clause = (
        Conversation.participants == ConversationParticipants.STAFF.value
        if enrollment.course_role == CourseRole.STAFF.value
        else false()
    )
    return or_(
        Conversation.participants == ConversationParticipants.EVERYONE.value,
        staff_clause,
        exists(
            select(ConversationSelectedParticipant.id).where(
                ConversationSelectedParticipant.conversation_id == Conversation.id,
                ConversationSelectedParticipant.enrollment_id == enrollment.id,
            )
        ),
    )


def course_conversation(course_id: int, enrollment: Enrollment) -> ColumnElement[bool]:
    """Conversation belongs to the course and passes the access predicate."""
    return and_(Conversation.course_id == course_id, conversation_visible(enrollment))


def is_author(enrollment: Enrollment, conversation: ConversationRead) -> bool:
    return (
        conversation.author_enrollment != NO_LONGER_ENROLLED
        and conversation.author_enrollment.id == enrollment.id
    )


def may_edit_conversation(enrollment: Enrollment, conversation: ConversationRead) -> bool:
    """Staff may edit any conversation; students only their own."""
    return enrollment.course_role == CourseRole.STAFF.value or is_author(enrollment, conversation)


def displayed_author(
    viewer: Enrollment, author: AuthorEnrollment, anonymous_at: datetime | None
) -> DisplayedAuthor:
    """Anonymous authors are hidden from viewers who are neither staff nor the author."""
    if anonymous_at is None or viewer.course_role == CourseRole.STAFF.value:
        return author
    if author != NO_LONGER_ENROLLED and author.id == viewer.id:
        return author
    return ANONYMOUS
