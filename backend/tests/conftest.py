"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "development")

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from forum.api.deps import create_access_token, get_course_context
from forum.db import fulltext  # noqa: F401 - Attach full-text index DDL before create_all
from forum.db.base import Base
from forum.db.models import Course, CourseRole, Enrollment, Tag, User, utcnow
from forum.db.session import enable_sqlite_foreign_keys, get_db
from forum.main import app
from forum.schemas.conversations import ConversationCreate, ConversationRead
from forum.schemas.messages import MessageRead
from forum.services.context import CourseContext
from forum.services.conversation_mutator import create_conversation
from forum.services.notifications import NotificationSink, get_notification_sink

COURSE_REFERENCE = "course-1"


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def notify(self, conversation: ConversationRead, message: MessageRead) -> None:
        self.sent.append((conversation.reference, message.reference))


@dataclass
class Seed:
    """
    One course with a staff member, four students and three tags.

    Users are keyed by a short name: "staff", "bob", "carol", "dave", "erin".
    The tag "t3" is staff-only.
    """

    course: Course
    users: dict[str, User] = field(default_factory=dict)
    enrollments: dict[str, Enrollment] = field(default_factory=dict)
    tags: dict[str, Tag] = field(default_factory=dict)

    async def context(self, db: AsyncSession, name: str) -> CourseContext:
        """Course context for a user, loaded the way requests load it."""
        user = (
            await db.execute(select(User).where(User.reference == f"user-{name}"))
        ).scalar_one()
        return await get_course_context(COURSE_REFERENCE, user, db)

    def reference(self, name: str) -> str:
        return f"enrollment-{name}"


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(db: AsyncSession) -> Seed:
    course = Course(reference=COURSE_REFERENCE, name="Programming Languages")
    db.add(course)
    await db.flush()
    seed = Seed(course=course)

    people = [
        ("staff", "Alice Staff", CourseRole.STAFF),
        ("bob", "Bob Student", CourseRole.STUDENT),
        ("carol", "Carol Student", CourseRole.STUDENT),
        ("dave", "Dave Student", CourseRole.STUDENT),
        ("erin", "Erin Student", CourseRole.STUDENT),
    ]
    for name, full_name, role in people:
        user = User(
            reference=f"user-{name}",
            email=f"{name}@example.edu",
            name=full_name,
            name_search=full_name,
        )
        db.add(user)
        await db.flush()
        enrollment = Enrollment(
            user_id=user.id,
            course_id=course.id,
            reference=seed.reference(name),
            course_role=role.value,
        )
        db.add(enrollment)
        seed.users[name] = user
        seed.enrollments[name] = enrollment

    for reference, name, staff_only in [
        ("t1", "Assignment 1", False),
        ("t2", "Lectures", False),
        ("t3", "Staff discussion", True),
    ]:
        tag = Tag(
            course_id=course.id,
            reference=reference,
            name=name,
            staff_only_at=utcnow() if staff_only else None,
        )
        db.add(tag)
        seed.tags[reference] = tag

    await db.commit()
    return seed


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def start_conversation(db: AsyncSession, seed: Seed, notifications: RecordingNotificationSink):
    """Create a conversation as `author`; defaults to an everyone-visible question tagged t1."""

    async def start(author: str = "bob", **fields) -> ConversationRead:
        fields.setdefault("type", "question")
        fields.setdefault("title", "Why?")
        fields.setdefault("content", "Because.")
        if "tags_references" not in fields:
            fields["tags_references"] = ["t1"] if fields["type"] != "chat" else []
        context = await seed.context(db, author)
        return await create_conversation(db, context, ConversationCreate(**fields), notifications)

    return start


@pytest.fixture
async def client(
    session_factory, notifications: RecordingNotificationSink
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_sink] = lambda: notifications
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(seed: Seed):
    def headers(name: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(seed.users[name].id)}"}

    return headers
