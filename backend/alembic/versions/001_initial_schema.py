"""Initial schema with all tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

This migration creates the complete course forum schema:
- Tables: users, courses, enrollments, tags, conversations,
  conversation_selected_participants, taggings, messages, readings, endorsements
- Indexes: foreign keys, conversation list filters
- Full-text: GIN indexes over to_tsvector() for conversation titles,
  user names and message content
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from forum.config import get_settings
from forum.db.fulltext import FULL_TEXT_INDEXES

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Integer(), autoincrement=True, nullable=False)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, postgresql.TIMESTAMP(timezone=True), nullable=True)


def upgrade() -> None:
    # ==========================================================================
    # USERS, COURSES, ENROLLMENTS
    # ==========================================================================
    op.create_table(
        "users",
        _id(),
        _created_at(),
        sa.Column("reference", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("name_search", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("reference", name="uq_users_reference"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "courses",
        _id(),
        _created_at(),
        sa.Column("reference", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("next_conversation_reference", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_courses"),
        sa.UniqueConstraint("reference", name="uq_courses_reference"),
    )

    op.create_table(
        "enrollments",
        _id(),
        _created_at(),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(50), nullable=False),
        sa.Column("course_role", sa.String(20), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_enrollments"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_enrollments_user_id_users", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], name="fk_enrollments_course_id_courses", ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_id_course_id"),
        sa.UniqueConstraint("course_id", "reference", name="uq_enrollments_course_id_reference"),
        sa.CheckConstraint("course_role IN ('student', 'staff')", name="ck_enrollments_valid_course_role"),
    )
    op.create_index("ix_enrollments_user_id", "enrollments", ["user_id"])
    op.create_index("ix_enrollments_course_id", "enrollments", ["course_id"])

    # ==========================================================================
    # TAGS
    # ==========================================================================
    op.create_table(
        "tags",
        _id(),
        _created_at(),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        _timestamp("staff_only_at"),
        sa.PrimaryKeyConstraint("id", name="pk_tags"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], name="fk_tags_course_id_courses", ondelete="CASCADE"),
        sa.UniqueConstraint("course_id", "reference", name="uq_tags_course_id_reference"),
    )
    op.create_index("ix_tags_course_id", "tags", ["course_id"])

    # ==========================================================================
    # CONVERSATIONS
    # ==========================================================================
    op.create_table(
        "conversations",
        _id(),
        _created_at(),
        _timestamp("updated_at"),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(50), nullable=False),
        sa.Column("author_enrollment_id", sa.Integer(), nullable=True),
        sa.Column("participants", sa.String(20), nullable=False),
        _timestamp("anonymous_at"),
        sa.Column("type", sa.String(20), nullable=False),
        _timestamp("resolved_at"),
        _timestamp("announcement_at"),
        _timestamp("pinned_at"),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("title_search", sa.Text(), nullable=False),
        sa.Column("next_message_reference", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_conversations"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], name="fk_conversations_course_id_courses", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["author_enrollment_id"], ["enrollments.id"],
            name="fk_conversations_author_enrollment_id_enrollments", ondelete="SET NULL",
        ),
        sa.UniqueConstraint("course_id", "reference", name="uq_conversations_course_id_reference"),
        sa.CheckConstraint("type IN ('question', 'note', 'chat')", name="ck_conversations_valid_type"),
        sa.CheckConstraint(
            "participants IN ('everyone', 'staff', 'selected-people')",
            name="ck_conversations_valid_participants",
        ),
    )
    op.create_index("ix_conversations_course_id", "conversations", ["course_id"])
    op.create_index("idx_conversations_type", "conversations", ["type"])
    op.create_index("idx_conversations_pinned_at", "conversations", ["pinned_at"])
    op.create_index("idx_conversations_participants", "conversations", ["participants"])

    op.create_table(
        "conversation_selected_participants",
        _id(),
        _created_at(),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("enrollment_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_conversation_selected_participants"),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"],
            name="fk_conversation_selected_participants_conversation_id_conversations", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["enrollment_id"], ["enrollments.id"],
            name="fk_conversation_selected_participants_enrollment_id_enrollments", ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "conversation_id", "enrollment_id",
            name="uq_conversation_selected_participants_conversation_id_enrollment_id",
        ),
    )
    op.create_index(
        "ix_conversation_selected_participants_conversation_id",
        "conversation_selected_participants",
        ["conversation_id"],
    )
    op.create_index(
        "ix_conversation_selected_participants_enrollment_id",
        "conversation_selected_participants",
        ["enrollment_id"],
    )

    op.create_table(
        "taggings",
        _id(),
        _created_at(),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("tag_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_taggings"),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"],
            name="fk_taggings_conversation_id_conversations", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], name="fk_taggings_tag_id_tags", ondelete="CASCADE"),
        sa.UniqueConstraint("conversation_id", "tag_id", name="uq_taggings_conversation_id_tag_id"),
    )
    op.create_index("ix_taggings_conversation_id", "taggings", ["conversation_id"])
    op.create_index("ix_taggings_tag_id", "taggings", ["tag_id"])

    # ==========================================================================
    # MESSAGES, READINGS, ENDORSEMENTS
    # ==========================================================================
    op.create_table(
        "messages",
        _id(),
        _created_at(),
        _timestamp("updated_at"),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(50), nullable=False),
        sa.Column("author_enrollment_id", sa.Integer(), nullable=True),
        _timestamp("anonymous_at"),
        _timestamp("answer_at"),
        sa.Column("content_source", sa.Text(), nullable=False),
        sa.Column("content_preprocessed", sa.Text(), nullable=False),
        sa.Column("content_search", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_messages"),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"],
            name="fk_messages_conversation_id_conversations", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["author_enrollment_id"], ["enrollments.id"],
            name="fk_messages_author_enrollment_id_enrollments", ondelete="SET NULL",
        ),
        sa.UniqueConstraint("conversation_id", "reference", name="uq_messages_conversation_id_reference"),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "readings",
        _id(),
        _created_at(),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("enrollment_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_readings"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], name="fk_readings_message_id_messages", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["enrollment_id"], ["enrollments.id"],
            name="fk_readings_enrollment_id_enrollments", ondelete="CASCADE",
        ),
        sa.UniqueConstraint("message_id", "enrollment_id", name="uq_readings_message_id_enrollment_id"),
    )
    op.create_index("ix_readings_message_id", "readings", ["message_id"])
    op.create_index("ix_readings_enrollment_id", "readings", ["enrollment_id"])

    op.create_table(
        "endorsements",
        _id(),
        _created_at(),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("enrollment_id", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_endorsements"),
        sa.ForeignKeyConstraint(
            ["message_id"], ["messages.id"], name="fk_endorsements_message_id_messages", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["enrollment_id"], ["enrollments.id"],
            name="fk_endorsements_enrollment_id_enrollments", ondelete="SET NULL",
        ),
        sa.UniqueConstraint("message_id", "enrollment_id", name="uq_endorsements_message_id_enrollment_id"),
    )
    op.create_index("ix_endorsements_message_id", "endorsements", ["message_id"])

    # ==========================================================================
    # FULL-TEXT SEARCH
    # ==========================================================================
    language = get_settings().search_language
    for index in FULL_TEXT_INDEXES:
        for statement in index.postgresql_statements(language):
            op.execute(statement)


def downgrade() -> None:
    for index in FULL_TEXT_INDEXES:
        op.execute(f'DROP INDEX IF EXISTS "{index.name}"')

    # Drop tables in reverse dependency order
    op.drop_table("endorsements")
    op.drop_table("readings")
    op.drop_table("messages")
    op.drop_table("taggings")
    op.drop_table("conversation_selected_participants")
    op.drop_table("conversations")
    op.drop_table("tags")
    op.drop_table("enrollments")
    op.drop_table("courses")
    op.drop_table("users")
