"""Tests for conversation visibility and the conversation aggregate."""

from sqlalchemy import delete, select

from forum.db.models import Endorsement, Enrollment, Message, utcnow
from forum.schemas.messages import ANONYMOUS, NO_LONGER_ENROLLED
from forum.services.access import displayed_author, may_edit_conversation
from forum.services.conversation_reader import conversation_view, get_conversation


async def test_everyone_conversation_is_visible_to_all(db, seed, start_conversation):
    conversation = await start_conversation("bob")

    for name in ["staff", "bob", "carol", "dave"]:
        context = await seed.context(db, name)
        assert await get_conversation(db, context, conversation.reference) is not None


async def test_staff_conversation_visible_to_staff_and_author_only(db, seed, start_conversation):
    conversation = await start_conversation("bob", participants="staff")

    assert await get_conversation(db, await seed.context(db, "staff"), conversation.reference)
    assert await get_conversation(db, await seed.context(db, "bob"), conversation.reference)
    assert await get_conversation(db, await seed.context(db, "carol"), conversation.reference) is None


async def test_selected_people_adds_author_and_hides_from_others(db, seed, start_conversation):
    conversation = await start_conversation(
        "bob",
        participants="selected-people",
        selected_participants_references=[seed.reference("carol")],
    )

    as_carol = await get_conversation(db, await seed.context(db, "carol"), conversation.reference)
    as_bob = await get_conversation(db, await seed.context(db, "bob"), conversation.reference)
    assert as_carol is not None
    assert as_bob is not None
    # The viewer is left out of the list
    assert [p.reference for p in as_carol.selected_participants] == [seed.reference("bob")]
    assert [p.reference for p in as_bob.selected_participants] == [seed.reference("carol")]

    assert await get_conversation(db, await seed.context(db, "dave"), conversation.reference) is None
    # Staff are not implicitly part of selected-people conversations
    assert await get_conversation(db, await seed.context(db, "staff"), conversation.reference) is None


async def test_unknown_reference_is_none(db, seed, start_conversation):
    await start_conversation("bob")
    context = await seed.context(db, "bob")

    assert await get_conversation(db, context, "999") is None


async def test_selected_participants_are_staff_first_then_by_name(db, seed, start_conversation):
    conversation = await start_conversation(
        "staff",
        type="note",
        participants="selected-people",
        selected_participants_references=[
            seed.reference("dave"),
            seed.reference("bob"),
            seed.reference("carol"),
        ],
    )

    as_staff = await get_conversation(db, await seed.context(db, "staff"), conversation.reference)
    assert [p.reference for p in as_staff.selected_participants] == [
        seed.reference("bob"),
        seed.reference("carol"),
        seed.reference("dave"),
    ]

    as_dave = await get_conversation(db, await seed.context(db, "dave"), conversation.reference)
    assert [p.reference for p in as_dave.selected_participants] == [
        seed.reference("staff"),
        seed.reference("bob"),
        seed.reference("carol"),
    ]


async def test_staff_only_tags_hidden_from_students(db, seed, start_conversation):
    conversation = await start_conversation("staff", tags_references=["t3", "t1"])

    as_staff = await get_conversation(db, await seed.context(db, "staff"), conversation.reference)
    as_student = await get_conversation(db, await seed.context(db, "bob"), conversation.reference)

    # Ordered by tag id
    assert [t.tag.reference for t in as_staff.taggings] == ["t1", "t3"]
    assert [t.tag.reference for t in as_student.taggings] == ["t1"]


async def test_counts_are_per_viewer(db, seed, start_conversation):
    conversation = await start_conversation("bob")

    as_bob = await get_conversation(db, await seed.context(db, "bob"), conversation.reference)
    as_carol = await get_conversation(db, await seed.context(db, "carol"), conversation.reference)

    assert (as_bob.messages_count, as_bob.readings_count) == (1, 1)
    assert (as_carol.messages_count, as_carol.readings_count) == (1, 0)


async def test_endorsements_only_loaded_for_questions(db, seed, start_conversation):
    question = await start_conversation("bob")
    message_id = await db.scalar(
        select(Message.id).where(Message.conversation_id == question.id)
    )
    db.add(Endorsement(message_id=message_id, enrollment_id=seed.enrollments["staff"].id))
    await db.commit()

    loaded = await get_conversation(db, await seed.context(db, "carol"), question.reference)
    assert len(loaded.endorsements) == 1
    assert loaded.endorsements[0].enrollment.reference == seed.reference("staff")

    note = await start_conversation("staff", type="note")
    loaded_note = await get_conversation(db, await seed.context(db, "carol"), note.reference)
    assert loaded_note.endorsements == []


async def test_departed_author_is_a_sentinel(db, seed, start_conversation):
    conversation = await start_conversation("carol")
    await db.execute(delete(Enrollment).where(Enrollment.id == seed.enrollments["carol"].id))
    await db.commit()

    loaded = await get_conversation(db, await seed.context(db, "bob"), conversation.reference)

    assert loaded.author_enrollment == NO_LONGER_ENROLLED
    assert not may_edit_conversation((await seed.context(db, "bob")).enrollment, loaded)


async def test_anonymous_author_hidden_from_other_students(db, seed, start_conversation):
    conversation = await start_conversation("bob", is_anonymous=True)

    carol = await seed.context(db, "carol")
    staff = await seed.context(db, "staff")
    bob = await seed.context(db, "bob")

    as_carol = conversation_view(carol, await get_conversation(db, carol, conversation.reference))
    as_staff = conversation_view(staff, await get_conversation(db, staff, conversation.reference))
    as_bob = conversation_view(bob, await get_conversation(db, bob, conversation.reference))

    assert as_carol.author_enrollment == ANONYMOUS
    assert as_staff.author_enrollment.reference == seed.reference("bob")
    assert as_bob.author_enrollment.reference == seed.reference("bob")


async def test_displayed_author_without_anonymity(db, seed, start_conversation):
    conversation = await start_conversation("bob")
    carol = await seed.context(db, "carol")

    loaded = await get_conversation(db, carol, conversation.reference)

    assert displayed_author(carol.enrollment, loaded.author_enrollment, None) == loaded.author_enrollment
    assert displayed_author(carol.enrollment, NO_LONGER_ENROLLED, utcnow()) == ANONYMOUS


async def test_may_edit_conversation(db, seed, start_conversation):
    conversation = await start_conversation("bob")

    assert may_edit_conversation((await seed.context(db, "bob")).enrollment, conversation)
    assert may_edit_conversation((await seed.context(db, "staff")).enrollment, conversation)
    assert not may_edit_conversation((await seed.context(db, "carol")).enrollment, conversation)
