"""Server-Sent Events stream of live update hints."""

import logging

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from forum.api.deps import CourseCtx, DbSession, LiveUpdatesDep, get_conversation_or_404
from forum.config import sanitize_error
from forum.services.live_updates import LiveUpdates, conversations_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/courses/{course_reference}/live-updates", tags=["live-updates"])


def _stream(request: Request, live_updates: LiveUpdates, url: str, enrollment_id: int):
    async def event_generator():
        try:
            async with live_updates.subscribe(url) as queue:
                logger.debug("Enrollment %s subscribed to live updates for %s", enrollment_id, url)
                while not await request.is_disconnected():
                    changed = await queue.get()
                    yield {"event": "refresh", "data": changed}
        except Exception as e:
            logger.exception("Error during live update streaming")
            safe_msg = sanitize_error(e, generic_message="Live updates are unavailable.")
            yield {"event": "error", "data": safe_msg}
        logger.debug("Enrollment %s unsubscribed from live updates for %s", enrollment_id, url)

    return EventSourceResponse(event_generator())


@router.get("")
async def stream_conversation_list_updates(
    request: Request,
    context: CourseCtx,
    live_updates: LiveUpdatesDep,
):
    """
    Stream a `refresh` event every time the course's conversation list changes.

    Events carry no content: clients reload through the regular,
    access-checked routes.
    """
    url = conversations_url(context.course.reference)
    return _stream(request, live_updates, url, context.enrollment.id)


@router.get("/{conversation_reference}")
async def stream_conversation_updates(
    request: Request,
    conversation_reference: str,
    context: CourseCtx,
    db: DbSession,
    live_updates: LiveUpdatesDep,
):
    """Stream a `refresh` event every time one visible conversation changes."""
    await get_conversation_or_404(db, context, conversation_reference)
    url = conversations_url(context.course.reference, conversation_reference)
    return _stream(request, live_updates, url, context.enrollment.id)
