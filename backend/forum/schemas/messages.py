"""Message schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from forum.schemas.base import BaseSchema, IDMixin

NO_LONGER_ENROLLED = "no-longer-enrolled"
ANONYMOUS = "anonymous"


class UserRead(BaseSchema, IDMixin):
    """Public projection of a user."""

    reference: str
    name: str
    email: str


class EnrollmentRead(BaseSchema, IDMixin):
    """Enrollment snapshot with its user."""

    reference: str
    course_role: Literal["student", "staff"]
    user: UserRead


# An author who left the course is represented by the sentinel, never by None.
AuthorEnrollment = EnrollmentRead | Literal["no-longer-enrolled"]

# What a viewer is shown: anonymity may hide the author.
DisplayedAuthor = EnrollmentRead | Literal["no-longer-enrolled", "anonymous"]


class MessageRead(BaseSchema, IDMixin):
    """Message as loaded for one viewing enrollment."""

    created_at: datetime
    updated_at: datetime | None
    reference: str
    author_enrollment: AuthorEnrollment
    anonymous_at: datetime | None
    answer_at: datetime | None
    content_source: str
    content_preprocessed: str
    content_search: str
    # Whether the viewer had read the message when it was loaded
    is_read: bool


class MessageView(BaseSchema, IDMixin):
    """Message as rendered in a conversation page."""

    created_at: datetime
    updated_at: datetime | None
    reference: str
    author_enrollment: DisplayedAuthor
    anonymous_at: datetime | None
    answer_at: datetime | None
    content_preprocessed: str
    is_read: bool
    may_edit: bool
    may_endorse: bool


class MessagePageRead(BaseSchema):
    """One page of messages, always in chronological order."""

    messages: list[MessageView]
    more_exist: bool
    reversed: bool


class ProcessedContent(BaseModel):
    """Output of the content pipeline."""

    preprocessed: str
    search: str
