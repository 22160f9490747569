"""Conversation services: reading, searching, mutating and read tracking."""

from forum.services.context import CourseContext
from forum.services.conversation_reader import conversation_view, get_conversation
from forum.services.conversation_search import search_conversations
from forum.services.conversation_mutator import (
    add_tagging,
    create_conversation,
    delete_conversation,
    new_conversation_options,
    remove_tagging,
    update_conversation,
)
from forum.services.filters import parse_conversation_filter, parse_page
from forum.services.message_pages import load_message_page
from forum.services.readings import mark_all_as_read
from forum.services.live_updates import LiveUpdates, get_live_updates
from forum.services.notifications import NotificationSink, get_notification_sink

__all__ = [
    "CourseContext",
    "get_conversation",
    "conversation_view",
    "search_conversations",
    "new_conversation_options",
    "create_conversation",
    "update_conversation",
    "add_tagging",
    "remove_tagging",
    "delete_conversation",
    "parse_conversation_filter",
    "parse_page",
    "load_message_page",
    "mark_all_as_read",
    "LiveUpdates",
    "get_live_updates",
    "NotificationSink",
    "get_notification_sink",
]
