"""
Full-text search providers.

Three providers cover conversation titles, message author names and message
content. Each turns a sanitized search into a SELECT yielding
(conversation_id, message_id, rank, highlight) rows; lower rank is better on
both backends. User input never reaches the index as query syntax: phrases
are quoted for FTS5 and passed through plainto_tsquery() on Postgres.
"""

import html
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import (
    ColumnElement,
    Select,
    column,
    func,
    literal_column,
    null,
    or_,
    select,
    table,
)
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import get_settings
from forum.db.dialects import dialect_name
from forum.db.fulltext import (
    CONVERSATION_TITLE_INDEX,
    MESSAGE_CONTENT_INDEX,
    USER_NAME_INDEX,
    FullTextIndex,
)
from forum.db.models import Conversation, Enrollment, Message, User
from forum.services.context import CourseContext

settings = get_settings()

# Markers survive HTML escaping and are swapped for <mark> afterwards
_MARK_START = "{{mark}}"
_MARK_END = "{{/mark}}"
_SNIPPET_ELLIPSIS = "…"
_SNIPPET_TOKENS = 16

_LANGUAGE = re.compile(r"^[a-z_]+$")


@dataclass(frozen=True)
class SearchQuery:
    """A search split into phrases; never empty."""

    phrases: tuple[str, ...]

    @classmethod
    def parse(cls, search: str | None) -> "SearchQuery | None":
        if search is None:
            return None
        phrases = tuple(split_search_phrases(search))
        return cls(phrases) if phrases else None

    def fts5_expression(self) -> str:
        """Every phrase as an FTS5 string literal, so operators and quotes are inert."""
        return " ".join('"' + phrase.replace('"', '""') + '"' for phrase in self.phrases)

    def plain_text(self) -> str:
        return " ".join(self.phrases)


def split_search_phrases(search: str) -> list[str]:
    return [phrase for phrase in search.split() if phrase.strip() != ""]


def render_highlight(marked: str | None) -> str:
    """Escape index output and turn the markers into <mark> elements."""
    if marked is None:
        return ""
    return (
        html.escape(marked)
        .replace(_MARK_START, '<mark class="mark">')
        .replace(_MARK_END, "</mark>")
    )


@dataclass(frozen=True)
class _Match:
    """Backend-specific pieces of a full-text match against one column."""

    condition: ColumnElement[bool]
    rank: ColumnElement
    highlight: ColumnElement
    snippet: ColumnElement
    join_target: object | None = None
    join_condition: ColumnElement[bool] | None = None


def _regconfig() -> ColumnElement:
    if not _LANGUAGE.match(settings.search_language):
        raise ValueError(f"Invalid search language: {settings.search_language!r}")
    return literal_column(f"'{settings.search_language}'::regconfig")


def _full_text_match(
    db: AsyncSession, index: FullTextIndex, source_id: ColumnElement, source_column: ColumnElement, query: SearchQuery
) -> _Match:
    if dialect_name(db) == "postgresql":
        language = _regconfig()
        vector = func.to_tsvector(language, source_column)
        tsquery = func.plainto_tsquery(language, query.plain_text())
        return _Match(
            condition=vector.op("@@")(tsquery),
            rank=-func.ts_rank(vector, tsquery),
            highlight=func.ts_headline(
                language,
                source_column,
                tsquery,
                f"StartSel={_MARK_START}, StopSel={_MARK_END}, HighlightAll=TRUE",
            ),
            snippet=func.ts_headline(
                language,
                source_column,
                tsquery,
                f"StartSel={_MARK_START}, StopSel={_MARK_END}, MaxWords=35, MinWords=15",
            ),
        )

    fts = table(index.name, column("rowid"), column("rank"))
    fts_name = literal_column(index.name)
    return _Match(
        condition=fts_name.op("MATCH")(query.fts5_expression()),
        rank=fts.c.rank,
        highlight=func.highlight(fts_name, 0, _MARK_START, _MARK_END),
        snippet=func.snippet(
            fts_name, 0, _MARK_START, _MARK_END, _SNIPPET_ELLIPSIS, _SNIPPET_TOKENS
        ),
        join_target=fts,
        join_condition=fts.c.rowid == source_id,
    )


class SearchProvider(ABC):
    """One searchable source keyed by conversation."""

    kind: str

    @abstractmethod
    def match(
        self,
        db: AsyncSession,
        context: CourseContext,
        query: SearchQuery,
        conversation_id: int | None = None,
    ) -> Select:
        """Rows labelled conversation_id, message_id, rank, highlight."""


class ConversationTitleSearch(SearchProvider):
    kind = "conversationTitle"

    def match(self, db, context, query, conversation_id=None) -> Select:
        m = _full_text_match(
            db, CONVERSATION_TITLE_INDEX, Conversation.id, Conversation.title_search, query
        )
        stmt = select(
            Conversation.id.label("conversation_id"),
            null().label("message_id"),
            m.rank.label("rank"),
            m.highlight.label("highlight"),
        ).select_from(Conversation)
        if m.join_target is not None:
            stmt = stmt.join(m.join_target, m.join_condition)
        stmt = stmt.where(m.condition, Conversation.course_id == context.course.id)
        if conversation_id is not None:
            stmt = stmt.where(Conversation.id == conversation_id)
        return stmt


class MessageAuthorUserNameSearch(SearchProvider):
    """
    Messages whose author's name matches.

    Students only match authors who are not anonymous, or their own anonymous messages.
    """

    kind = "messageAuthorUserName"

    def match(self, db, context, query, conversation_id=None) -> Select:
        m = _full_text_match(db, USER_NAME_INDEX, User.id, User.name_search, query)
        stmt = (
            select(
                Message.conversation_id.label("conversation_id"),
                Message.id.label("message_id"),
                m.rank.label("rank"),
                m.highlight.label("highlight"),
            )
            .select_from(Message)
            .join(Enrollment, Message.author_enrollment_id == Enrollment.id)
            .join(User, Enrollment.user_id == User.id)
        )
        if m.join_target is not None:
            stmt = stmt.join(m.join_target, m.join_condition)
        stmt = stmt.where(m.condition, Enrollment.course_id == context.course.id)
        if not context.is_staff:
            stmt = stmt.where(
                or_(
                    Message.anonymous_at.is_(None),
                    Message.author_enrollment_id == context.enrollment.id,
                )
            )
        if conversation_id is not None:
            stmt = stmt.where(Message.conversation_id == conversation_id)
        return stmt


class MessageContentSearch(SearchProvider):
    kind = "messageContent"

    def match(self, db, context, query, conversation_id=None) -> Select:
        m = _full_text_match(db, MESSAGE_CONTENT_INDEX, Message.id, Message.content_search, query)
        stmt = select(
            Message.conversation_id.label("conversation_id"),
            Message.id.label("message_id"),
            m.rank.label("rank"),
            m.snippet.label("highlight"),
        ).select_from(Message)
        if m.join_target is not None:
            stmt = stmt.join(m.join_target, m.join_condition)
        stmt = stmt.where(m.condition)
        if conversation_id is not None:
            stmt = stmt.where(Message.conversation_id == conversation_id)
        return stmt


# Fixed priority when more than one source matches: title, then author name, then content
SEARCH_PROVIDERS: tuple[SearchProvider, ...] = (
    ConversationTitleSearch(),
    MessageAuthorUserNameSearch(),
    MessageContentSearch(),
)
