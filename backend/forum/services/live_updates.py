"""
In-process live updates.

Mutations announce that a URL changed; clients watching that URL over
Server-Sent Events receive a `refresh` event and reload it. Delivery is
best effort: a subscriber that falls behind loses hints, not data.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from forum.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_QUEUE_SIZE = 16


class LiveUpdates:
    """Fan-out of "this URL changed" hints to subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[str]]] = defaultdict(set)

    def dispatch(self, url: str) -> int:
        """Notify every subscriber of `url` without waiting. Returns how many were notified."""
        notified = 0
        for queue in list(self._subscribers.get(url, ())):
            try:
                queue.put_nowait(url)
                notified += 1
            except asyncio.QueueFull:
                logger.debug("Live update subscriber for %s is behind, dropping hint", url)
        logger.debug("Live update for %s sent to %s subscribers", url, notified)
        return notified

    @asynccontextmanager
    async def subscribe(self, url: str) -> AsyncIterator[asyncio.Queue[str]]:
        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=_QUEUE_SIZE)
        self._subscribers[url].add(queue)
        try:
            yield queue
        finally:
            self._subscribers[url].discard(queue)
            if not self._subscribers[url]:
                del self._subscribers[url]

    def subscribers(self, url: str) -> int:
        return len(self._subscribers.get(url, ()))


def conversations_url(course_reference: str, conversation_reference: str | None = None) -> str:
    """Public URL of a course's conversation list, or of one conversation."""
    url = f"{settings.public_url.rstrip('/')}/courses/{course_reference}/conversations"
    return url if conversation_reference is None else f"{url}/{conversation_reference}"


_live_updates = LiveUpdates()


def get_live_updates() -> LiveUpdates:
    """FastAPI dependency for the live update broker."""
    return _live_updates
