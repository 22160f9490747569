"""Tests for conversation list filter parsing."""

import pytest

from forum.db.models import Tag
from forum.services.filters import ConversationFilter, parse_conversation_filter, parse_page

TAGS = [Tag(reference="t1", name="Assignment 1"), Tag(reference="t2", name="Lectures")]


def parse(**raw) -> ConversationFilter:
    return parse_conversation_filter(
        {key: value if isinstance(value, list) else [value] for key, value in raw.items()}, TAGS
    )


def test_empty_query_gives_empty_filter():
    assert parse().is_empty()


@pytest.mark.parametrize("search", ["", "   ", "\t\n"])
def test_blank_search_is_absent(search):
    assert parse(search=search).search is None


def test_search_is_trimmed():
    conversation_filter = parse(search="  foo bar ")

    assert conversation_filter.search == "foo bar"
    assert conversation_filter.search_query.phrases == ("foo", "bar")


@pytest.mark.parametrize("value,expected", [("true", True), ("false", False), ("yes", None), ("1", None)])
def test_booleans_only_accept_true_and_false(value, expected):
    conversation_filter = parse(isUnread=value, isPinned=value)

    assert conversation_filter.is_unread is expected
    assert conversation_filter.is_pinned is expected


def test_repeated_boolean_is_dropped():
    assert parse(isUnread=["true", "false"]).is_unread is None


def test_types_are_deduplicated_and_filtered():
    conversation_filter = parse(types=["note", "bogus", "note", "question"])

    assert conversation_filter.types == ["note", "question"]


def test_types_with_nothing_valid_are_absent():
    assert parse(types=["bogus"]).types is None


def test_is_resolved_requires_question_type():
    assert parse(isResolved="true").is_resolved is None
    assert parse(types="note", isResolved="true").is_resolved is None
    assert parse(types="question", isResolved="true").is_resolved is True


def test_is_announcement_requires_note_type():
    assert parse(isAnnouncement="false").is_announcement is None
    assert parse(types="chat", isAnnouncement="true").is_announcement is None
    assert parse(types=["note", "chat"], isAnnouncement="false").is_announcement is False


def test_participantses_are_filtered():
    conversation_filter = parse(participantses=["staff", "everyone", "staff", "nobody"])

    assert conversation_filter.participantses == ["staff", "everyone"]


def test_tags_references_limited_to_available_tags():
    conversation_filter = parse(tagsReferences=["t2", "t3", "t2", "t1"])

    assert conversation_filter.tags_references == ["t2", "t1"]
    assert parse(tagsReferences=["t9"]).tags_references is None


def test_is_quick_needs_another_filter():
    assert parse(isQuick="true").is_quick is None
    assert parse(isQuick="true", isPinned="true").is_quick is True


@pytest.mark.parametrize(
    "raw,expected",
    [([], 1), (["3"], 3), (["0"], 1), (["-2"], 1), (["two"], 1), (["\u00b2"], 1)],
)
def test_parse_page(raw, expected):
    assert parse_page({"conversationsPage": raw}) == expected
