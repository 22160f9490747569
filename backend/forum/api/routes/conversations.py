"""Conversation routes, scoped to one course."""

import logging

from fastapi import APIRouter, HTTPException, Request, Response, status

from forum.api.deps import (
    CourseCtx,
    DbSession,
    LiveUpdatesDep,
    Notifications,
    get_conversation_or_404,
)
from forum.db.models import CONVERSATION_TYPES, ConversationParticipants
from forum.schemas.conversations import (
    ConversationCreate,
    ConversationDetailResponse,
    ConversationListItem,
    ConversationListResponse,
    ConversationUpdate,
    ConversationView,
    MarkAllAsReadResponse,
    NewConversationOptions,
    TaggingRequest,
)
from forum.schemas.messages import EnrollmentRead
from forum.services import conversation_mutator
from forum.services.conversation_reader import conversation_view, get_conversation
from forum.services.conversation_search import search_conversations
from forum.services.filters import parse_conversation_filter, parse_page
from forum.services.live_updates import conversations_url
from forum.services.message_pages import load_message_page
from forum.services.readings import mark_all_as_read

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/courses/{course_reference}/conversations", tags=["conversations"])


# =============================================================================
# LIST & NEW
# =============================================================================


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    request: Request,
    context: CourseCtx,
    db: DbSession,
) -> ConversationListResponse:
    """
    List the conversations the viewer can see.

    Filters (all optional, malformed values are ignored):
    - search: full-text over titles, author names and message content
    - isQuick, isUnread, isResolved, isAnnouncement, isPinned: "true" / "false"
    - types, participantses, tagsReferences: repeatable
    - conversationsPage: 1-based page number
    """
    raw = {key: request.query_params.getlist(key) for key in request.query_params.keys()}
    conversation_filter = parse_conversation_filter(raw, context.tags)
    page = parse_page(raw)
    result = await search_conversations(db, context, conversation_filter, page)
    return ConversationListResponse(
        conversations=[
            ConversationListItem(
                conversation=conversation_view(context, hit.conversation),
                search_result=hit.search_result,
            )
            for hit in result.hits
        ],
        more_exist=result.more_exist,
        page=page,
    )


@router.get("/new", response_model=NewConversationOptions)
async def new_conversation(context: CourseCtx, db: DbSession) -> NewConversationOptions:
    """Options for starting a conversation of any type."""
    return await conversation_mutator.new_conversation_options(db, context)


@router.get("/new/{conversation_type}", response_model=NewConversationOptions)
async def new_conversation_of_type(
    conversation_type: str, context: CourseCtx, db: DbSession
) -> NewConversationOptions:
    """Options for starting a conversation of a given type."""
    if conversation_type not in CONVERSATION_TYPES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown conversation type")
    return await conversation_mutator.new_conversation_options(db, context, conversation_type)


@router.post("", response_model=ConversationView, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    data: ConversationCreate,
    context: CourseCtx,
    db: DbSession,
    notifications: Notifications,
    live_updates: LiveUpdatesDep,
) -> ConversationView:
    """Start a conversation, with its first message unless it is an empty chat."""
    conversation = await conversation_mutator.create_conversation(db, context, data, notifications)
    live_updates.dispatch(conversations_url(context.course.reference))
    return conversation_view(context, conversation)


@router.post("/mark-all-conversations-as-read", response_model=MarkAllAsReadResponse)
async def mark_all_conversations_as_read(
    context: CourseCtx,
    db: DbSession,
    live_updates: LiveUpdatesDep,
) -> MarkAllAsReadResponse:
    """Mark every message of every visible conversation as read."""
    inserted = await mark_all_as_read(db, context)
    live_updates.dispatch(conversations_url(context.course.reference))
    return MarkAllAsReadResponse(readings_inserted=inserted)


# =============================================================================
# SINGLE CONVERSATION
# =============================================================================


@router.get("/{conversation_reference}", response_model=ConversationDetailResponse)
async def get_conversation_detail(
    conversation_reference: str,
    context: CourseCtx,
    db: DbSession,
    before: str | None = None,
    after: str | None = None,
) -> ConversationDetailResponse:
    """
    Get a conversation with one page of messages.

    The returned messages are marked as read; `isRead` on each one is the
    state before this request.
    """
    conversation = await get_conversation_or_404(db, context, conversation_reference)
    messages = await load_message_page(db, context, conversation, before=before, after=after)
    return ConversationDetailResponse(
        conversation=conversation_view(context, conversation),
        messages=messages,
    )


@router.patch("/{conversation_reference}", response_model=ConversationView)
async def update_conversation(
    conversation_reference: str,
    data: ConversationUpdate,
    context: CourseCtx,
    db: DbSession,
    notifications: Notifications,
    live_updates: LiveUpdatesDep,
):
    """Update any subset of a conversation's settings. All or nothing."""
    conversation = await get_conversation_or_404(db, context, conversation_reference)
    updated = await conversation_mutator.update_conversation(
        db, context, conversation, data, notifications
    )
    live_updates.dispatch(conversations_url(context.course.reference))
    live_updates.dispatch(conversations_url(context.course.reference, conversation_reference))
    if updated is None:
        # The change took the conversation out of the viewer's reach
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return conversation_view(context, updated)


@router.delete("/{conversation_reference}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_reference: str,
    context: CourseCtx,
    db: DbSession,
    live_updates: LiveUpdatesDep,
) -> None:
    """Delete a conversation. Staff only."""
    conversation = await get_conversation_or_404(db, context, conversation_reference)
    await conversation_mutator.delete_conversation(db, context, conversation)
    live_updates.dispatch(conversations_url(context.course.reference))
    live_updates.dispatch(conversations_url(context.course.reference, conversation_reference))
    return None


# =============================================================================
# TAGGINGS & PARTICIPANTS
# =============================================================================


@router.post("/{conversation_reference}/taggings", response_model=ConversationView)
async def add_tagging(
    conversation_reference: str,
    data: TaggingRequest,
    context: CourseCtx,
    db: DbSession,
    live_updates: LiveUpdatesDep,
) -> ConversationView:
    """Tag a conversation."""
    conversation = await get_conversation_or_404(db, context, conversation_reference)
    await conversation_mutator.add_tagging(db, context, conversation, data.reference)
    live_updates.dispatch(conversations_url(context.course.reference, conversation_reference))
    return conversation_view(context, await get_conversation_or_404(db, context, conversation_reference))


@router.delete("/{conversation_reference}/taggings", response_model=ConversationView)
async def remove_tagging(
    conversation_reference: str,
    data: TaggingRequest,
    context: CourseCtx,
    db: DbSession,
    live_updates: LiveUpdatesDep,
) -> ConversationView:
    """Untag a conversation. Conversations other than chats keep at least one tag."""
    conversation = await get_conversation_or_404(db, context, conversation_reference)
    await conversation_mutator.remove_tagging(db, context, conversation, data.reference)
    live_updates.dispatch(conversations_url(context.course.reference, conversation_reference))
    return conversation_view(context, await get_conversation_or_404(db, context, conversation_reference))


@router.get(
    "/{conversation_reference}/selected-participants", response_model=list[EnrollmentRead]
)
async def list_selected_participants(
    conversation_reference: str,
    context: CourseCtx,
    db: DbSession,
) -> list[EnrollmentRead]:
    """Who else was selected, for conversations with more than one other participant."""
    conversation = await get_conversation(db, context, conversation_reference)
    if (
        conversation is None
        or conversation.participants == ConversationParticipants.EVERYONE.value
        or len(conversation.selected_participants) <= 1
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation.selected_participants
