"""
Conversation list filters.

Query strings are client controlled: anything malformed or outside its
closed set is dropped, never rejected.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Mapping, Sequence

from forum.db.models import CONVERSATION_PARTICIPANTS, CONVERSATION_TYPES, Tag
from forum.services.search import SearchQuery

logger = logging.getLogger(__name__)

_BOOLEANS = {"true": True, "false": False}


@dataclass
class ConversationFilter:
    """Sparse filter: None means the key was absent or discarded."""

    search: str | None = None
    is_quick: bool | None = None
    is_unread: bool | None = None
    types: list[str] | None = None
    is_resolved: bool | None = None
    is_announcement: bool | None = None
    participantses: list[str] | None = None
    is_pinned: bool | None = None
    tags_references: list[str] | None = None

    @property
    def search_query(self) -> SearchQuery | None:
        return SearchQuery.parse(self.search)

    def is_empty(self) -> bool:
        return all(value is None for value in asdict(self).values())


def _single(raw: Mapping[str, Sequence[str]], key: str) -> str | None:
    values = raw.get(key) or []
    # A repeated scalar key is malformed
    return values[0] if len(values) == 1 else None


def _boolean(raw: Mapping[str, Sequence[str]], key: str) -> bool | None:
    value = _single(raw, key)
    return _BOOLEANS.get(value) if value is not None else None


def _closed_set(values: Iterable[str], allowed: Iterable[str]) -> list[str] | None:
    allowed = set(allowed)
    kept = list(dict.fromkeys(value for value in values if value in allowed))
    return kept or None


def parse_conversation_filter(
    raw: Mapping[str, Sequence[str]], available_tags: Sequence[Tag]
) -> ConversationFilter:
    """
    Build a filter from raw query parameters.

    `raw` maps each parameter name to all of its values. `available_tags` are
    the tags the viewer may see.
    """
    conversation_filter = ConversationFilter()

    search = _single(raw, "search")
    if search is not None and SearchQuery.parse(search) is not None:
        conversation_filter.search = search.strip()

    conversation_filter.is_unread = _boolean(raw, "isUnread")

    conversation_filter.types = _closed_set(raw.get("types") or [], CONVERSATION_TYPES)

    if conversation_filter.types and "question" in conversation_filter.types:
        conversation_filter.is_resolved = _boolean(raw, "isResolved")

    if conversation_filter.types and "note" in conversation_filter.types:
        conversation_filter.is_announcement = _boolean(raw, "isAnnouncement")

    conversation_filter.participantses = _closed_set(
        raw.get("participantses") or [], CONVERSATION_PARTICIPANTS
    )

    conversation_filter.is_pinned = _boolean(raw, "isPinned")

    conversation_filter.tags_references = _closed_set(
        raw.get("tagsReferences") or [], (tag.reference for tag in available_tags)
    )

    if not conversation_filter.is_empty():
        conversation_filter.is_quick = _boolean(raw, "isQuick")

    logger.debug("Parsed conversation filter: %s", conversation_filter)
    return conversation_filter


def parse_page(raw: Mapping[str, Sequence[str]], key: str = "conversationsPage") -> int:
    """1-based page number; anything that is not a positive integer means page 1."""
    value = _single(raw, key)
    if value is None or not (value.isascii() and value.isdigit()):
        return 1
    return max(int(value), 1)
