"""
Conversation list query: filtering, full-text search, ordering and paging.

The list query only yields references; each one is expanded through
`get_conversation()`, which re-applies the access predicate.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import Select, case, exists, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import get_settings
from forum.db.dialects import least
from forum.db.models import (
    Conversation,
    ConversationType,
    Message,
    Reading,
    Tag,
    Tagging,
)
from forum.schemas.conversations import (
    ConversationRead,
    ConversationTitleSearchResult,
    MessageAuthorUserNameSearchResult,
    MessageContentSearchResult,
    SearchResult,
)
from forum.services.access import course_conversation
from forum.services.context import CourseContext
from forum.services.conversation_reader import get_conversation
from forum.services.filters import ConversationFilter
from forum.services.messages import get_message_by_id, message_view
from forum.services.search import (
    SEARCH_PROVIDERS,
    ConversationTitleSearch,
    MessageAuthorUserNameSearch,
    MessageContentSearch,
    SearchProvider,
    SearchQuery,
    render_highlight,
)

logger = logging.getLogger(__name__)
settings = get_settings()

_MAX_OFFSET = 2**63 - 1

# Stands in for "no match" when taking the best rank across providers
_NO_MATCH_RANK = 1e9


@dataclass
class ConversationSearchHit:
    conversation: ConversationRead
    search_result: SearchResult | None = None


@dataclass
class ConversationSearchPage:
    hits: list[ConversationSearchHit]
    more_exist: bool


def unread_condition(context: CourseContext):
    """The conversation has a message the viewer has no reading for."""
    return exists(
        select(Message.id).where(
            Message.conversation_id == Conversation.id,
            ~exists(
                select(Reading.id).where(
                    Reading.message_id == Message.id,
                    Reading.enrollment_id == context.enrollment.id,
                )
            ),
        )
    )


def _filter_conditions(context: CourseContext, conversation_filter: ConversationFilter) -> list:
    conditions = []

    if conversation_filter.tags_references is not None:
        # Any of the selected tags
        conditions.append(
            exists(
                select(Tagging.id)
                .join(Tag, Tagging.tag_id == Tag.id)
                .where(
                    Tagging.conversation_id == Conversation.id,
                    Tag.course_id == context.course.id,
                    Tag.reference.in_(conversation_filter.tags_references),
                )
            )
        )

    if conversation_filter.is_unread is not None:
        unread = unread_condition(context)
        conditions.append(unread if conversation_filter.is_unread else ~unread)

    if conversation_filter.types is not None:
        conditions.append(Conversation.type.in_(conversation_filter.types))

    if conversation_filter.is_resolved is not None:
        resolved = (
            Conversation.resolved_at.is_not(None)
            if conversation_filter.is_resolved
            else Conversation.resolved_at.is_(None)
        )
        conditions.append(
            or_(Conversation.type != ConversationType.QUESTION.value, resolved)
        )

    if conversation_filter.is_announcement is not None:
        announcement = (
            Conversation.announcement_at.is_not(None)
            if conversation_filter.is_announcement
            else Conversation.announcement_at.is_(None)
        )
        conditions.append(
            or_(Conversation.type != ConversationType.NOTE.value, announcement)
        )

    if conversation_filter.participantses is not None:
        conditions.append(Conversation.participants.in_(conversation_filter.participantses))

    if conversation_filter.is_pinned is not None:
        conditions.append(
            Conversation.pinned_at.is_not(None)
            if conversation_filter.is_pinned
            else Conversation.pinned_at.is_(None)
        )

    return conditions


def _best_rank_per_conversation(select_stmt: Select, name: str):
    """Collapse a provider's matches to one row per conversation."""
    matches = select_stmt.subquery(f"{name}_matches")
    return (
        select(
            matches.c.conversation_id.label("conversation_id"),
            func.min(matches.c.rank).label("rank"),
        )
        .group_by(matches.c.conversation_id)
        .subquery(name)
    )


def build_conversation_list_query(
    db: AsyncSession,
    context: CourseContext,
    conversation_filter: ConversationFilter,
    query: SearchQuery | None,
) -> Select:
    """Ordered SELECT of (id, reference) for every matching visible conversation."""
    stmt = select(Conversation.id, Conversation.reference).where(
        course_conversation(context.course.id, context.enrollment),
        *_filter_conditions(context, conversation_filter),
    )

    order_by = [Conversation.pinned_at.is_not(None).desc()]

    if query is not None:
        title, author, content = (
            _best_rank_per_conversation(provider.match(db, context, query), provider.kind)
            for provider in SEARCH_PROVIDERS
        )
        stmt = (
            stmt.outerjoin(title, title.c.conversation_id == Conversation.id)
            .outerjoin(author, author.c.conversation_id == Conversation.id)
            .outerjoin(content, content.c.conversation_id == Conversation.id)
            .where(
                or_(
                    title.c.conversation_id.is_not(None),
                    author.c.conversation_id.is_not(None),
                    content.c.conversation_id.is_not(None),
                )
            )
        )
        no_match = literal(_NO_MATCH_RANK)
        order_by += [
            least(
                db,
                func.coalesce(title.c.rank, no_match),
                func.coalesce(author.c.rank, no_match),
                func.coalesce(content.c.rank, no_match),
            ).asc(),
            case(
                (title.c.conversation_id.is_not(None), 0),
                (author.c.conversation_id.is_not(None), 1),
                else_=2,
            ).asc(),
        ]

    order_by += [
        func.coalesce(Conversation.updated_at, Conversation.created_at).desc(),
        Conversation.id.desc(),
    ]
    return stmt.order_by(*order_by)


async def _search_result(
    db: AsyncSession,
    context: CourseContext,
    conversation: ConversationRead,
    query: SearchQuery,
) -> SearchResult | None:
    """Which source matched this conversation, checked in priority order."""
    for provider in SEARCH_PROVIDERS:
        row = (
            await db.execute(
                _best_match(db, context, provider, query, conversation.id)
            )
        ).first()
        if row is None:
            continue

        highlight = render_highlight(row.highlight)
        if isinstance(provider, ConversationTitleSearch):
            return ConversationTitleSearchResult(highlight=highlight)

        message = await get_message_by_id(db, context, conversation, row.message_id)
        if message is None:
            continue
        message = message_view(context, conversation, message)
        if isinstance(provider, MessageAuthorUserNameSearch):
            return MessageAuthorUserNameSearchResult(message=message, highlight=highlight)
        if isinstance(provider, MessageContentSearch):
            return MessageContentSearchResult(message=message, snippet=highlight)
    return None


def _best_match(
    db: AsyncSession,
    context: CourseContext,
    provider: SearchProvider,
    query: SearchQuery,
    conversation_id: int,
) -> Select:
    stmt = provider.match(db, context, query, conversation_id=conversation_id)
    return stmt.order_by(stmt.selected_columns["rank"].asc()).limit(1)


async def search_conversations(
    db: AsyncSession,
    context: CourseContext,
    conversation_filter: ConversationFilter,
    page: int = 1,
    page_size: int | None = None,
) -> ConversationSearchPage:
    """
    One page of conversations matching the filter, as the viewer sees them.

    Pinned conversations come first, then (when searching) best rank, then
    most recently active.
    """
    page_size = page_size or settings.conversations_page_size
    page = max(page, 1)
    offset = (page - 1) * page_size
    if offset + page_size >= _MAX_OFFSET:
        # Past the last row a 64-bit OFFSET can address
        return ConversationSearchPage(hits=[], more_exist=False)
    query = conversation_filter.search_query

    stmt = (
        build_conversation_list_query(db, context, conversation_filter, query)
        .offset(offset)
        .limit(page_size + 1)
    )
    rows = (await db.execute(stmt)).all()
    more_exist = len(rows) > page_size
    rows = rows[:page_size]
    logger.debug(
        "Conversation list for enrollment %s: page %s, %s rows, more_exist=%s",
        context.enrollment.id,
        page,
        len(rows),
        more_exist,
    )

    hits = []
    for row in rows:
        conversation = await get_conversation(db, context, row.reference)
        if conversation is None:
            continue
        search_result = (
            await _search_result(db, context, conversation, query) if query is not None else None
        )
        hits.append(ConversationSearchHit(conversation=conversation, search_result=search_result))

    return ConversationSearchPage(hits=hits, more_exist=more_exist)
