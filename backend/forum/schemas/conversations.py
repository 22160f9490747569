"""Conversation schemas."""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import Field

from forum.schemas.base import BaseSchema, IDMixin
from forum.schemas.messages import (
    AuthorEnrollment,
    DisplayedAuthor,
    EnrollmentRead,
    MessagePageRead,
    MessageView,
)

ConversationTypeLiteral = Literal["question", "note", "chat"]
ParticipantsLiteral = Literal["everyone", "staff", "selected-people"]


# =============================================================================
# READ MODELS
# =============================================================================


class TagRead(BaseSchema, IDMixin):
    """Tag projection."""

    reference: str
    name: str
    staff_only_at: datetime | None = None


class TaggingRead(BaseSchema, IDMixin):
    """Tagging with its tag."""

    tag: TagRead


class EndorsementRead(BaseSchema, IDMixin):
    """Endorsement with the endorsing enrollment."""

    enrollment: AuthorEnrollment


class ConversationRead(BaseSchema, IDMixin):
    """
    Full conversation aggregate as seen by one enrollment.

    `selected_participants` excludes the viewer and is empty for "everyone"
    conversations. `endorsements` is only populated for questions.
    """

    created_at: datetime
    updated_at: datetime | None
    reference: str
    author_enrollment: AuthorEnrollment
    participants: ParticipantsLiteral
    anonymous_at: datetime | None
    type: ConversationTypeLiteral
    resolved_at: datetime | None
    announcement_at: datetime | None
    pinned_at: datetime | None
    title: str
    title_search: str
    next_message_reference: int
    selected_participants: list[EnrollmentRead] = Field(default_factory=list)
    taggings: list[TaggingRead] = Field(default_factory=list)
    messages_count: int
    readings_count: int
    endorsements: list[EndorsementRead] = Field(default_factory=list)


class ConversationView(BaseSchema, IDMixin):
    """Conversation as returned over the API, with anonymity applied."""

    created_at: datetime
    updated_at: datetime | None
    reference: str
    author_enrollment: DisplayedAuthor
    participants: ParticipantsLiteral
    anonymous_at: datetime | None
    type: ConversationTypeLiteral
    resolved_at: datetime | None
    announcement_at: datetime | None
    pinned_at: datetime | None
    title: str
    selected_participants: list[EnrollmentRead]
    taggings: list[TaggingRead]
    messages_count: int
    readings_count: int
    endorsements: list[EndorsementRead]


# =============================================================================
# SEARCH RESULTS
# =============================================================================


class ConversationTitleSearchResult(BaseSchema):
    type: Literal["conversationTitle"] = "conversationTitle"
    highlight: str


class MessageAuthorUserNameSearchResult(BaseSchema):
    type: Literal["messageAuthorUserName"] = "messageAuthorUserName"
    message: MessageView
    highlight: str


class MessageContentSearchResult(BaseSchema):
    type: Literal["messageContent"] = "messageContent"
    message: MessageView
    snippet: str


SearchResult = Annotated[
    ConversationTitleSearchResult | MessageAuthorUserNameSearchResult | MessageContentSearchResult,
    Field(discriminator="type"),
]


class ConversationListItem(BaseSchema):
    conversation: ConversationView
    search_result: SearchResult | None = None


class ConversationListResponse(BaseSchema):
    """A page of conversations."""

    conversations: list[ConversationListItem]
    more_exist: bool
    page: int


class ConversationDetailResponse(BaseSchema):
    """A conversation with one page of its messages."""

    conversation: ConversationView
    messages: MessagePageRead


class NewConversationOptions(BaseSchema):
    """What the viewer may choose when starting a conversation."""

    type: ConversationTypeLiteral | None
    types: list[ConversationTypeLiteral]
    tags: list[TagRead]
    tags_required: bool
    participantses: list[ParticipantsLiteral]
    selectable_participants: list[EnrollmentRead]
    may_announce: bool
    may_pin: bool
    may_post_anonymously: bool


class MarkAllAsReadResponse(BaseSchema):
    readings_inserted: int


# =============================================================================
# REQUESTS
# =============================================================================


class ConversationCreate(BaseSchema):
    """
    Request to start a conversation.

    Shape is checked here; every policy rule (tags, participants, roles) is
    re-checked by the service.
    """

    type: ConversationTypeLiteral
    title: str = Field(..., max_length=1000)
    content: str = ""
    tags_references: list[str] = Field(default_factory=list)
    participants: ParticipantsLiteral = "everyone"
    selected_participants_references: list[str] = Field(default_factory=list)
    is_announcement: bool = False
    is_pinned: bool = False
    is_anonymous: bool = False


class ConversationUpdate(BaseSchema):
    """Any subset of editable conversation fields. Applied all-or-nothing."""

    participants: ParticipantsLiteral | None = None
    selected_participants_references: list[str] | None = None
    is_anonymous: bool | None = None
    type: ConversationTypeLiteral | None = None
    is_announcement: bool | None = None
    is_pinned: bool | None = None
    is_resolved: bool | None = None
    title: str | None = Field(None, max_length=1000)


class TaggingRequest(BaseSchema):
    reference: str = Field(..., min_length=1)
