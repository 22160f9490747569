"""
SQLAlchemy 2.0 Models for the course forum.

Uses modern declarative syntax with Mapped[] type annotations.
Surrogate keys are autoincrementing integers: several read paths order by id
(taggings, endorsements, readings), so ids must be monotonic.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from forum.db.base import Base


def utcnow() -> datetime:
    """Timezone-aware current time, used for every *_at column."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class CourseRole(str, PyEnum):
    """Role of an enrollment within its course."""

    STUDENT = "student"
    STAFF = "staff"


class ConversationType(str, PyEnum):
    """Kind of conversation."""

    QUESTION = "question"
    NOTE = "note"
    CHAT = "chat"


class ConversationParticipants(str, PyEnum):
    """Who may see a conversation."""

    EVERYONE = "everyone"
    STAFF = "staff"
    SELECTED_PEOPLE = "selected-people"


CONVERSATION_TYPES = tuple(t.value for t in ConversationType)
CONVERSATION_PARTICIPANTS = tuple(p.value for p in ConversationParticipants)
COURSE_ROLES = tuple(r.value for r in CourseRole)


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


# =============================================================================
# MODELS
# =============================================================================


class User(Base):
    """
    Core user account.

    `name_search` is the indexed form of `name` used by author-name search.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    reference: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_search: Mapped[str] = mapped_column(Text, nullable=False)


class Course(Base):
    """
    A course. Owns the conversation reference counter.
    """

    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    reference: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    next_conversation_reference: Mapped[int] = mapped_column(
        nullable=False, default=1, server_default=text("1")
    )


class Enrollment(Base):
    """A user's membership in one course, with a course-specific role."""

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id"),
        UniqueConstraint("course_id", "reference"),
        CheckConstraint(_in_list("course_role", COURSE_ROLES), name="valid_course_role"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    course_role: Mapped[str] = mapped_column(String(20), nullable=False)


class Tag(Base):
    """Course tag. Staff-only tags are invisible to students."""

    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("course_id", "reference"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    staff_only_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )


class Conversation(Base):
    """
    Discussion thread within a course.

    `reference` is the course-scoped sequence number shown to people.
    `resolved_at` is only meaningful for questions, `announcement_at` only for notes.
    `author_enrollment_id` becomes NULL when the author leaves the course.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("course_id", "reference"),
        Index("idx_conversations_type", "type"),
        Index("idx_conversations_pinned_at", "pinned_at"),
        Index("idx_conversations_participants", "participants"),
        CheckConstraint(_in_list("type", CONVERSATION_TYPES), name="valid_type"),
        CheckConstraint(
            _in_list("participants", CONVERSATION_PARTICIPANTS), name="valid_participants"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    author_enrollment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True
    )
    participants: Mapped[str] = mapped_column(String(20), nullable=False)
    anonymous_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    announcement_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    pinned_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    title_search: Mapped[str] = mapped_column(Text, nullable=False)
    next_message_reference: Mapped[int] = mapped_column(nullable=False)


class ConversationSelectedParticipant(Base):
    """Enrollment explicitly granted visibility of a non-"everyone" conversation."""

    __tablename__ = "conversation_selected_participants"
    __table_args__ = (UniqueConstraint("conversation_id", "enrollment_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    enrollment_id: Mapped[int] = mapped_column(
        ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Tagging(Base):
    """Association of a tag to a conversation."""

    __tablename__ = "taggings"
    __table_args__ = (UniqueConstraint("conversation_id", "tag_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_id: Mapped[int] = mapped_column(
        ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Message(Base):
    """
    Message within a conversation.

    `content_preprocessed` is rendered HTML; `content_search` is the plain text
    fed to the full-text index.
    """

    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("conversation_id", "reference"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    author_enrollment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True
    )
    anonymous_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    answer_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    content_source: Mapped[str] = mapped_column(Text, nullable=False)
    content_preprocessed: Mapped[str] = mapped_column(Text, nullable=False)
    content_search: Mapped[str] = mapped_column(Text, nullable=False)


class Reading(Base):
    """Marks a message as read by an enrollment. Unique per pair."""

    __tablename__ = "readings"
    __table_args__ = (UniqueConstraint("message_id", "enrollment_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    enrollment_id: Mapped[int] = mapped_column(
        ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Endorsement(Base):
    """Staff approval of an answer in a question."""

    __tablename__ = "endorsements"
    __table_args__ = (UniqueConstraint("message_id", "enrollment_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    enrollment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("enrollments.id", ondelete="SET NULL"), nullable=True
    )
