"""API routes package."""

from forum.api.routes import conversations, live_updates

__all__ = [
    "conversations",
    "live_updates",
]
