"""
Conversation mutations.

Every input is re-validated here regardless of what the client could submit.
Validation always completes before the first write, and each operation
commits once, so a rejected request leaves no trace. Toggles are written
with a guard on the current state; a guard that no longer holds (another
request got there first) rolls the whole operation back.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from forum.db.models import (
    Conversation,
    ConversationParticipants,
    ConversationSelectedParticipant,
    ConversationType,
    Course,
    CourseRole,
    Enrollment,
    Message,
    Reading,
    Tag,
    Tagging,
    User,
    utcnow,
)
from forum.exceptions import ConversationAuthorizationError, ConversationValidationError
from forum.schemas.conversations import (
    ConversationCreate,
    ConversationRead,
    ConversationUpdate,
    NewConversationOptions,
    TagRead,
)
from forum.schemas.messages import NO_LONGER_ENROLLED
from forum.services.access import may_edit_conversation
from forum.services.content import normalize_search_text, preprocess_content
from forum.services.context import CourseContext
from forum.services.conversation_reader import get_conversation, staff_first
from forum.services.messages import enrollment_snapshot, get_message
from forum.services.notifications import NotificationSink

logger = logging.getLogger(__name__)

Write = Callable[[], Awaitable[None]]


def _invalid(context: CourseContext, message: str, *fields: str) -> ConversationValidationError:
    logger.warning(
        "Rejected conversation mutation by enrollment %s: %s", context.enrollment.id, message
    )
    return ConversationValidationError(message, fields=fields)


def _forbidden(
    context: CourseContext, message: str, *fields: str
) -> ConversationAuthorizationError:
    logger.warning(
        "Forbidden conversation mutation by enrollment %s: %s", context.enrollment.id, message
    )
    return ConversationAuthorizationError(message, fields=fields)


def _has_duplicates(values: Sequence[str]) -> bool:
    return len(set(values)) != len(values)


# =============================================================================
# SHARED VALIDATION
# =============================================================================


def _validate_tags(
    context: CourseContext, conversation_type: str, references: Sequence[str]
) -> list[Tag]:
    if not context.tags:
        if references:
            raise _invalid(context, "This course has no tags", "tagsReferences")
        return []
    if conversation_type != ConversationType.CHAT.value and not references:
        raise _invalid(context, "At least one tag is required", "tagsReferences")
    if _has_duplicates(references):
        raise _invalid(context, "Duplicate tags", "tagsReferences")
    tags_by_reference = {tag.reference: tag for tag in context.tags}
    if any(reference not in tags_by_reference for reference in references):
        raise _invalid(context, "Unknown tag", "tagsReferences")
    return [tags_by_reference[reference] for reference in references]


async def _validate_participants(
    db: AsyncSession,
    context: CourseContext,
    participants: str,
    references: Sequence[str],
) -> list[Enrollment]:
    """Selected enrollments for `participants`, including the acting enrollment where required."""
    if participants == ConversationParticipants.EVERYONE.value:
        if references:
            raise _invalid(
                context,
                "Selected participants are only allowed for staff or selected-people conversations",
                "selectedParticipantsReferences",
            )
        return []
    if participants == ConversationParticipants.SELECTED_PEOPLE.value and not references:
        raise _invalid(
            context, "Select at least one participant", "selectedParticipantsReferences"
        )
    if _has_duplicates(references):
        raise _invalid(context, "Duplicate participants", "selectedParticipantsReferences")

    references = list(references)
    if (
        participants == ConversationParticipants.STAFF.value and not context.is_staff
    ) or participants == ConversationParticipants.SELECTED_PEOPLE.value:
        if context.enrollment.reference not in references:
            references.append(context.enrollment.reference)

    if not references:
        return []
    result = await db.execute(
        select(Enrollment).where(
            Enrollment.course_id == context.course.id,
            Enrollment.reference.in_(references),
        )
    )
    enrollments = list(result.scalars())
    if len(enrollments) != len(references):
        raise _invalid(context, "Unknown participant", "selectedParticipantsReferences")
    if participants == ConversationParticipants.STAFF.value and any(
        enrollment.course_role == CourseRole.STAFF.value for enrollment in enrollments
    ):
        raise _invalid(
            context,
            "Staff already see staff conversations and cannot be selected",
            "selectedParticipantsReferences",
        )
    return enrollments


# =============================================================================
# CREATE
# =============================================================================


async def new_conversation_options(
    db: AsyncSession, context: CourseContext, conversation_type: str | None = None
) -> NewConversationOptions:
    """Choices offered when starting a conversation, optionally of a given type."""
    result = await db.execute(
        select(Enrollment, User)
        .join(User, Enrollment.user_id == User.id)
        .where(
            Enrollment.course_id == context.course.id,
            Enrollment.id != context.enrollment.id,
        )
        .order_by(staff_first(), User.name.asc())
    )
    return NewConversationOptions(
        type=conversation_type,
        types=[type_.value for type_ in ConversationType],
        tags=[TagRead.model_validate(tag) for tag in context.tags],
        tags_required=bool(context.tags) and conversation_type != ConversationType.CHAT.value,
        participantses=[participants.value for participants in ConversationParticipants],
        selectable_participants=[
            enrollment_snapshot(enrollment, user) for enrollment, user in result.all()
        ],
        may_announce=context.is_staff
        and conversation_type in (None, ConversationType.NOTE.value),
        may_pin=context.is_staff,
        may_post_anonymously=not context.is_staff,
    )


async def create_conversation(
    db: AsyncSession,
    context: CourseContext,
    data: ConversationCreate,
    notifications: NotificationSink,
) -> ConversationRead:
    """
    Start a conversation, with its first message when `content` is given.

    Raises ConversationValidationError/ConversationAuthorizationError before
    any write. Notifies about the first message once committed.
    """
    if not data.title:
        raise _invalid(context, "Title is required", "title")
    if not data.content.strip() and data.type != ConversationType.CHAT.value:
        raise _invalid(context, "Content is required", "content")
    tags = _validate_tags(context, data.type, data.tags_references)
    selected = await _validate_participants(
        db, context, data.participants, data.selected_participants_references
    )
    if data.is_announcement:
        if not context.is_staff:
            raise _forbidden(context, "Only staff may make announcements", "isAnnouncement")
        if data.type != ConversationType.NOTE.value:
            raise _invalid(context, "Only notes may be announcements", "isAnnouncement")
    if data.is_pinned and not context.is_staff:
        raise _forbidden(context, "Only staff may pin conversations", "isPinned")
    if data.is_anonymous and context.is_staff:
        raise _forbidden(context, "Staff may not post anonymously", "isAnonymous")

    has_message = bool(data.content.strip())
    now = utcnow()

    next_reference = await db.scalar(
        update(Course)
        .where(Course.id == context.course.id)
        .values(next_conversation_reference=Course.next_conversation_reference + 1)
        .returning(Course.next_conversation_reference)
        .execution_options(synchronize_session=False)
    )
    reference = str(next_reference - 1)

    conversation = Conversation(
        created_at=now,
        course_id=context.course.id,
        reference=reference,
        author_enrollment_id=context.enrollment.id,
        participants=data.participants,
        anonymous_at=now if data.is_anonymous else None,
        type=data.type,
        announcement_at=now if data.is_announcement else None,
        pinned_at=now if data.is_pinned else None,
        title=data.title,
        title_search=normalize_search_text(data.title),
        next_message_reference=2 if has_message else 1,
    )
    db.add(conversation)
    await db.flush()

    if selected:
        await db.execute(
            insert(ConversationSelectedParticipant),
            [
                {"conversation_id": conversation.id, "enrollment_id": enrollment.id}
                for enrollment in selected
            ],
        )
    if tags:
        await db.execute(
            insert(Tagging),
            [{"conversation_id": conversation.id, "tag_id": tag.id} for tag in tags],
        )

    if has_message:
        content = preprocess_content(data.content)
        message = Message(
            created_at=now,
            conversation_id=conversation.id,
            reference="1",
            author_enrollment_id=context.enrollment.id,
            anonymous_at=conversation.anonymous_at,
            content_source=data.content,
            content_preprocessed=content.preprocessed,
            content_search=content.search,
        )
        db.add(message)
        await db.flush()
        db.add(Reading(message_id=message.id, enrollment_id=context.enrollment.id))

    await db.commit()
    logger.info(
        "Conversation %s created in course %s by enrollment %s",
        reference,
        context.course.reference,
        context.enrollment.id,
    )

    created = await get_conversation(db, context, reference)
    if has_message:
        first_message = await get_message(db, context, created, "1")
        if first_message is not None:
            await notifications.notify(created, first_message)
    return created


# =============================================================================
# UPDATE
# =============================================================================


def _guarded(db: AsyncSession, context: CourseContext, stmt, field: str) -> Write:
    """A write that must change exactly one row, or the request lost a race."""

    async def write() -> None:
        result = await db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise _invalid(context, "The conversation changed, try again", field)

    return write


def _unguarded(db: AsyncSession, stmt) -> Write:
    async def write() -> None:
        await db.execute(stmt)

    return write


async def update_conversation(
    db: AsyncSession,
    context: CourseContext,
    conversation: ConversationRead,
    data: ConversationUpdate,
    notifications: NotificationSink,
) -> ConversationRead | None:
    """
    Apply any subset of participants, anonymity, type, announcement, pin,
    resolution and title changes as one unit.
    """
    if not may_edit_conversation(context.enrollment, conversation):
        raise _forbidden(context, "You may not edit this conversation")

    now = utcnow()
    this = Conversation.id == conversation.id
    writes: list[Write] = []
    changed: list[str] = []
    announced = False

    if data.participants is not None:
        selected = await _validate_participants(
            db, context, data.participants, data.selected_participants_references or []
        )
        writes += [
            _unguarded(db, update(Conversation).where(this).values(participants=data.participants)),
            _unguarded(
                db,
                delete(ConversationSelectedParticipant).where(
                    ConversationSelectedParticipant.conversation_id == conversation.id
                ),
            ),
        ]
        if selected:
            rows = [
                {"conversation_id": conversation.id, "enrollment_id": enrollment.id}
                for enrollment in selected
            ]
            writes.append(
                _unguarded(db, insert(ConversationSelectedParticipant).values(rows))
            )
        changed.append("participants")
    elif data.selected_participants_references is not None:
        raise _invalid(
            context,
            "Selected participants require participants",
            "selectedParticipantsReferences",
        )

    if data.is_anonymous is not None:
        author = conversation.author_enrollment
        if author == NO_LONGER_ENROLLED or author.course_role == CourseRole.STAFF.value:
            raise _invalid(context, "This conversation cannot be anonymous", "isAnonymous")
        if data.is_anonymous == (conversation.anonymous_at is not None):
            raise _invalid(context, "Anonymity is already set that way", "isAnonymous")
        anonymous_at = now if data.is_anonymous else None
        current = (
            Conversation.anonymous_at.is_(None)
            if data.is_anonymous
            else Conversation.anonymous_at.is_not(None)
        )
        writes += [
            _guarded(
                db,
                context,
                update(Conversation).where(this, current).values(anonymous_at=anonymous_at),
                "isAnonymous",
            ),
            _unguarded(
                db,
                update(Message)
                .where(Message.conversation_id == conversation.id, Message.reference == "1")
                .values(anonymous_at=anonymous_at),
            ),
        ]
        changed.append("anonymity")

    target_type = conversation.type
    if data.type is not None:
        if data.type == conversation.type:
            raise _invalid(context, "The conversation already has this type", "type")
        if (
            conversation.type == ConversationType.CHAT.value
            and context.tags
            and not await _taggings_count(db, conversation.id)
        ):
            raise _invalid(context, "Tag the conversation before changing its type", "type")
        values = {"type": data.type}
        if data.type != ConversationType.QUESTION.value:
            values["resolved_at"] = None
        if data.type != ConversationType.NOTE.value:
            values["announcement_at"] = None
        writes.append(
            _guarded(
                db,
                context,
                update(Conversation)
                .where(this, Conversation.type == conversation.type)
                .values(**values),
                "type",
            )
        )
        target_type = data.type
        changed.append("type")

    if data.is_announcement is not None:
        if not context.is_staff:
            raise _forbidden(context, "Only staff may make announcements", "isAnnouncement")
        if target_type != ConversationType.NOTE.value:
            raise _invalid(context, "Only notes may be announcements", "isAnnouncement")
        current_announcement = (
            conversation.announcement_at
            if target_type == conversation.type
            else None
        )
        if data.is_announcement == (current_announcement is not None):
            raise _invalid(context, "Announcement is already set that way", "isAnnouncement")
        if data.is_announcement:
            writes.append(
                _guarded(
                    db,
                    context,
                    update(Conversation)
                    .where(this, Conversation.announcement_at.is_(None))
                    .values(announcement_at=now, updated_at=now),
                    "isAnnouncement",
                )
            )
            announced = True
        else:
            writes.append(
                _guarded(
                    db,
                    context,
                    update(Conversation)
                    .where(this, Conversation.announcement_at.is_not(None))
                    .values(announcement_at=None),
                    "isAnnouncement",
                )
            )
        changed.append("announcement")

    if data.is_pinned is not None:
        if not context.is_staff:
            raise _forbidden(context, "Only staff may pin conversations", "isPinned")
        if data.is_pinned == (conversation.pinned_at is not None):
            raise _invalid(context, "Pin is already set that way", "isPinned")
        if data.is_pinned:
            stmt = (
                update(Conversation)
                .where(this, Conversation.pinned_at.is_(None))
                .values(pinned_at=now, updated_at=now)
            )
        else:
            stmt = (
                update(Conversation)
                .where(this, Conversation.pinned_at.is_not(None))
                .values(pinned_at=None)
            )
        writes.append(_guarded(db, context, stmt, "isPinned"))
        changed.append("pin")

    if data.is_resolved is not None:
        if target_type != ConversationType.QUESTION.value:
            raise _invalid(context, "Only questions may be resolved", "isResolved")
        current_resolved = conversation.resolved_at if target_type == conversation.type else None
        if data.is_resolved == (current_resolved is not None):
            raise _invalid(context, "Resolution is already set that way", "isResolved")
        if data.is_resolved:
            stmt = (
                update(Conversation)
                .where(this, Conversation.resolved_at.is_(None))
                .values(resolved_at=now)
            )
        else:
            stmt = (
                update(Conversation)
                .where(this, Conversation.resolved_at.is_not(None))
                .values(resolved_at=None)
            )
        writes.append(_guarded(db, context, stmt, "isResolved"))
        changed.append("resolution")

    if data.title is not None:
        if not data.title:
            raise _invalid(context, "Title is required", "title")
        writes.append(
            _unguarded(
                db,
                update(Conversation)
                .where(this)
                .values(
                    title=data.title,
                    title_search=normalize_search_text(data.title),
                    updated_at=now,
                ),
            )
        )
        changed.append("title")

    if not writes:
        raise _invalid(context, "Nothing to update")

    try:
        for write in writes:
            await write()
    except ConversationValidationError:
        await db.rollback()
        raise
    await db.commit()
    logger.info(
        "Conversation %s updated by enrollment %s: %s",
        conversation.reference,
        context.enrollment.id,
        ", ".join(changed),
    )

    updated = await get_conversation(db, context, conversation.reference)
    if announced and updated is not None:
        first_message = await get_message(db, context, updated, "1")
        if first_message is not None:
            await notifications.notify(updated, first_message)
    return updated


# =============================================================================
# TAGGINGS
# =============================================================================


async def _taggings_count(db: AsyncSession, conversation_id: int) -> int:
    count = await db.scalar(
        select(func.count(Tagging.id)).where(Tagging.conversation_id == conversation_id)
    )
    return count or 0


def _visible_tag(context: CourseContext, reference: str) -> Tag:
    for tag in context.tags:
        if tag.reference == reference:
            return tag
    raise _invalid(context, "Unknown tag", "reference")


async def add_tagging(
    db: AsyncSession, context: CourseContext, conversation: ConversationRead, tag_reference: str
) -> None:
    if not may_edit_conversation(context.enrollment, conversation):
        raise _forbidden(context, "You may not edit this conversation")
    tag = _visible_tag(context, tag_reference)
    existing = await db.scalar(
        select(Tagging.id).where(
            Tagging.conversation_id == conversation.id, Tagging.tag_id == tag.id
        )
    )
    if existing is not None:
        raise _invalid(context, "The conversation already has this tag", "reference")

    db.add(Tagging(conversation_id=conversation.id, tag_id=tag.id))
    await db.commit()
    logger.info("Tag %s added to conversation %s", tag.reference, conversation.reference)


async def remove_tagging(
    db: AsyncSession, context: CourseContext, conversation: ConversationRead, tag_reference: str
) -> None:
    """Remove a tag; a conversation that is not a chat always keeps at least one."""
    if not may_edit_conversation(context.enrollment, conversation):
        raise _forbidden(context, "You may not edit this conversation")
    tag = _visible_tag(context, tag_reference)
    existing = await db.scalar(
        select(Tagging.id).where(
            Tagging.conversation_id == conversation.id, Tagging.tag_id == tag.id
        )
    )
    if existing is None:
        raise _invalid(context, "The conversation does not have this tag", "reference")
    is_chat = conversation.type == ConversationType.CHAT.value
    if not is_chat and await _taggings_count(db, conversation.id) <= 1:
        raise _invalid(context, "A conversation must keep at least one tag", "reference")

    stmt = delete(Tagging).where(Tagging.id == existing)
    if not is_chat:
        sibling = aliased(Tagging)
        others = (
            select(func.count(sibling.id))
            .where(sibling.conversation_id == conversation.id)
            .scalar_subquery()
        )
        stmt = stmt.where(others > 1)
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount != 1:
        error = _invalid(context, "A conversation must keep at least one tag", "reference")
        await db.rollback()
        raise error
    await db.commit()
    logger.info("Tag %s removed from conversation %s", tag.reference, conversation.reference)


# =============================================================================
# DELETE
# =============================================================================


async def delete_conversation(
    db: AsyncSession, context: CourseContext, conversation: ConversationRead
) -> None:
    """Hard delete; messages, taggings and readings go with it."""
    if not context.is_staff:
        raise _forbidden(context, "Only staff may delete conversations")
    await db.execute(delete(Conversation).where(Conversation.id == conversation.id))
    await db.commit()
    logger.info(
        "Conversation %s deleted from course %s by enrollment %s",
        conversation.reference,
        context.course.reference,
        context.enrollment.id,
    )
