"""Conversation references under concurrent creation."""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine

from forum.db.base import Base
from forum.db.models import Conversation, Course
from forum.db.session import enable_sqlite_foreign_keys
from forum.schemas.conversations import ConversationCreate
from forum.services.conversation_mutator import create_conversation


@pytest.fixture
async def engine(tmp_path):
    """File-backed database so every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'forum.db'}",
        connect_args={"timeout": 30},
    )
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


async def test_concurrent_creation_takes_references_without_gaps(
    session_factory, seed, notifications
):
    authors = ["bob", "carol", "dave", "erin"] * 2

    async def start(number: int, author: str) -> str:
        async with session_factory() as session:
            context = await seed.context(session, author)
            conversation = await create_conversation(
                session,
                context,
                ConversationCreate(
                    type="question",
                    title=f"Question {number}",
                    content="Same time.",
                    tags_references=["t1"],
                ),
                notifications,
            )
            return conversation.reference

    references = await asyncio.gather(
        *(start(number, author) for number, author in enumerate(authors))
    )

    assert sorted(references, key=int) == [str(n) for n in range(1, 9)]
    async with session_factory() as session:
        stored = (await session.execute(select(Conversation.reference))).scalars().all()
        course = await session.get(Course, seed.course.id)
    assert sorted(stored, key=int) == [str(n) for n in range(1, 9)]
    assert course.next_conversation_reference == 9
