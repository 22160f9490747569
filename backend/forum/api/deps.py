"""
FastAPI Dependencies for Authentication and Course Context.

Key patterns:
1. get_current_user: Extracts and validates JWT, returns User object
2. get_course_context: Resolves the course, the user's enrollment in it and
   the tags that enrollment may see, once per request
3. No global "current user" state - the context is passed explicitly to
   every service call

Security model:
- JWT stored in HttpOnly cookie (recommended) or Authorization header
- A user who is not enrolled in a course gets 404 for everything under it
- Conversation visibility is enforced in SQL by the services; routes turn
  "not visible" into 404 so existence never leaks
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Cookie, Depends, Header, HTTPException, status
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import get_settings
from forum.db.models import Course, CourseRole, Enrollment, Tag, User
from forum.db.session import get_db
from forum.schemas.conversations import ConversationRead
from forum.services.context import CourseContext
from forum.services.conversation_reader import get_conversation
from forum.services.live_updates import LiveUpdates, get_live_updates
from forum.services.notifications import NotificationSink, get_notification_sink

settings = get_settings()


# =============================================================================
# JWT UTILITIES
# =============================================================================


def create_access_token(user_id: int) -> str:
    """
    Create a JWT access token for a user.

    Token payload contains:
    - sub: user_id as string (standard JWT subject claim)
    - exp: expiration timestamp
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {
        "sub": str(user_id),
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> int | None:
    """
    Decode and validate a JWT access token.

    Returns user_id if valid, None if invalid/expired.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        user_id_str = payload.get("sub")
        if user_id_str is None:
            return None
        return int(user_id_str)
    except (JWTError, ValueError):
        return None


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


async def get_token_from_request(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> str:
    """
    Extract JWT token from request.

    Supports two methods (in order of preference):
    1. HttpOnly cookie named 'access_token'
    2. Authorization header: 'Bearer <token>'
    """
    if access_token:
        return access_token

    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: Annotated[str, Depends(get_token_from_request)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Validate JWT and return the current authenticated user.

    Raises 401 if:
    - Token is missing, invalid, or expired
    - User no longer exists in database
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = decode_access_token(token)
    if user_id is None:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    return user


# Type alias for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# COURSE CONTEXT
# =============================================================================


async def get_course_context(
    course_reference: str,
    current_user: CurrentUser,
    db: DbSession,
) -> CourseContext:
    """
    Resolve the course in the path and the current user's enrollment in it.

    Staff-only tags are left out for students, so everything downstream only
    ever sees tags the viewer may use.
    """
    result = await db.execute(
        select(Course, Enrollment)
        .join(Enrollment, Enrollment.course_id == Course.id)
        .where(Course.reference == course_reference, Enrollment.user_id == current_user.id)
    )
    row = result.first()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")
    course, enrollment = row

    tags_query = select(Tag).where(Tag.course_id == course.id).order_by(Tag.id.asc())
    if enrollment.course_role != CourseRole.STAFF.value:
        tags_query = tags_query.where(Tag.staff_only_at.is_(None))
    tags = list((await db.execute(tags_query)).scalars())

    return CourseContext(course=course, enrollment=enrollment, tags=tags)


CourseCtx = Annotated[CourseContext, Depends(get_course_context)]
Notifications = Annotated[NotificationSink, Depends(get_notification_sink)]
LiveUpdatesDep = Annotated[LiveUpdates, Depends(get_live_updates)]


# =============================================================================
# QUERY HELPERS
# =============================================================================


async def get_conversation_or_404(
    db: AsyncSession, context: CourseContext, conversation_reference: str
) -> ConversationRead:
    """
    Fetch a conversation the viewer can see.

    Returns 404 both when it does not exist and when it is not visible.
    """
    conversation = await get_conversation(db, context, conversation_reference)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation
