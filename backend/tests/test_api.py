"""Tests for the conversation HTTP API."""

from forum.services.live_updates import conversations_url, get_live_updates

BASE = "/courses/course-1/conversations"


async def create(client, headers, **fields):
    body = {"type": "question", "title": "Why?", "content": "Because.", "tagsReferences": ["t1"]}
    body.update(fields)
    response = await client.post(BASE, json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_requires_authentication(client, seed):
    response = await client.get(BASE)

    assert response.status_code == 401


async def test_unknown_course_is_not_found(client, seed, auth_headers):
    response = await client.get("/courses/nope/conversations", headers=auth_headers("bob"))

    assert response.status_code == 404


async def test_create_and_list(client, seed, auth_headers, notifications):
    bob = auth_headers("bob")

    created = await create(client, bob)

    assert created["reference"] == "1"
    assert created["messagesCount"] == 1
    assert created["readingsCount"] == 1
    assert created["authorEnrollment"]["reference"] == "enrollment-bob"
    assert [t["tag"]["reference"] for t in created["taggings"]] == ["t1"]
    assert notifications.sent == [("1", "1")]

    response = await client.get(BASE, headers=bob)
    assert response.status_code == 200
    body = response.json()
    assert [item["conversation"]["reference"] for item in body["conversations"]] == ["1"]
    assert body["conversations"][0]["searchResult"] is None
    assert body["moreExist"] is False
    assert body["page"] == 1


async def test_list_filters_and_search(client, seed, auth_headers):
    bob = auth_headers("bob")
    await create(client, bob, title="Recursion question")
    await create(client, bob, type="note", title="Lecture notes", content="Slides attached.")

    notes = await client.get(BASE, params={"types": "note"}, headers=bob)
    found = await client.get(BASE, params={"search": "recursion"}, headers=bob)
    # Unknown values are dropped, leaving no filter
    everything = await client.get(BASE, params={"types": "poll", "isPinned": "maybe"}, headers=bob)

    assert [i["conversation"]["reference"] for i in notes.json()["conversations"]] == ["2"]
    [hit] = found.json()["conversations"]
    assert hit["conversation"]["reference"] == "1"
    assert hit["searchResult"]["type"] == "conversationTitle"
    assert '<mark class="mark">Recursion</mark>' in hit["searchResult"]["highlight"]
    assert len(everything.json()["conversations"]) == 2


async def test_huge_page_number_gives_an_empty_page(client, seed, auth_headers):
    bob = auth_headers("bob")
    await create(client, bob)

    response = await client.get(BASE, params={"conversationsPage": "9" * 23}, headers=bob)

    assert response.status_code == 200
    assert response.json()["conversations"] == []
    assert response.json()["moreExist"] is False


async def test_invalid_create_is_rejected(client, seed, auth_headers):
    bob = auth_headers("bob")

    missing_tag = await client.post(
        BASE, json={"type": "question", "title": "Why?", "content": "Because."}, headers=bob
    )
    pinned = await client.post(
        BASE,
        json={"type": "question", "title": "Why?", "content": "Hi", "tagsReferences": ["t1"], "isPinned": True},
        headers=bob,
    )
    unknown_type = await client.post(
        BASE, json={"type": "poll", "title": "Why?", "content": "Because."}, headers=bob
    )

    assert missing_tag.status_code == 422
    assert missing_tag.json()["fields"] == ["tagsReferences"]
    assert pinned.status_code == 403
    assert unknown_type.status_code == 422


async def test_conversation_detail_marks_messages_read(client, seed, auth_headers):
    bob, carol = auth_headers("bob"), auth_headers("carol")
    await create(client, bob)

    first = await client.get(f"{BASE}/1", headers=carol)
    second = await client.get(f"{BASE}/1", headers=carol)

    assert first.status_code == 200
    body = first.json()
    assert body["conversation"]["readingsCount"] == 0
    assert [m["reference"] for m in body["messages"]["messages"]] == ["1"]
    assert body["messages"]["messages"][0]["isRead"] is False
    assert body["messages"]["messages"][0]["contentPreprocessed"] == "<p>Because.</p>"
    assert body["messages"]["moreExist"] is False
    assert second.json()["conversation"]["readingsCount"] == 1


async def test_invisible_conversation_is_not_found(client, seed, auth_headers):
    bob, carol = auth_headers("bob"), auth_headers("carol")
    await create(client, bob, participants="staff")

    assert (await client.get(f"{BASE}/1", headers=carol)).status_code == 404
    assert (
        await client.patch(f"{BASE}/1", json={"title": "Mine"}, headers=carol)
    ).status_code == 404
    assert (await client.get(f"{BASE}/2", headers=bob)).status_code == 404


async def test_patch_by_staff_and_students(client, seed, auth_headers):
    bob, carol, staff = auth_headers("bob"), auth_headers("carol"), auth_headers("staff")
    await create(client, bob)

    resolved = await client.patch(f"{BASE}/1", json={"isResolved": True}, headers=staff)
    not_author = await client.patch(f"{BASE}/1", json={"title": "Mine"}, headers=carol)
    pin = await client.patch(f"{BASE}/1", json={"isPinned": True}, headers=bob)
    empty = await client.patch(f"{BASE}/1", json={}, headers=bob)

    assert resolved.status_code == 200
    assert resolved.json()["resolvedAt"] is not None
    assert not_author.status_code == 403
    assert pin.status_code == 403
    assert empty.status_code == 422
    assert empty.json()["detail"] == "Nothing to update"


async def test_patch_narrows_participants(client, seed, auth_headers):
    bob, dave, staff = auth_headers("bob"), auth_headers("dave"), auth_headers("staff")
    await create(client, bob)

    response = await client.patch(
        f"{BASE}/1",
        json={"participants": "selected-people", "selectedParticipantsReferences": ["enrollment-carol"]},
        headers=staff,
    )

    assert response.status_code == 200
    # The acting staff member is kept in; the author is not
    assert [p["reference"] for p in response.json()["selectedParticipants"]] == ["enrollment-carol"]
    assert (await client.get(f"{BASE}/1", headers=dave)).status_code == 404
    assert (await client.get(f"{BASE}/1", headers=bob)).status_code == 404


async def test_delete(client, seed, auth_headers):
    bob, staff = auth_headers("bob"), auth_headers("staff")
    await create(client, bob)

    assert (await client.delete(f"{BASE}/1", headers=bob)).status_code == 403
    assert (await client.delete(f"{BASE}/1", headers=staff)).status_code == 204
    assert (await client.get(f"{BASE}/1", headers=bob)).status_code == 404


async def test_taggings(client, seed, auth_headers):
    bob = auth_headers("bob")
    await create(client, bob)

    added = await client.post(f"{BASE}/1/taggings", json={"reference": "t2"}, headers=bob)
    removed = await client.request(
        "DELETE", f"{BASE}/1/taggings", json={"reference": "t1"}, headers=bob
    )
    last = await client.request(
        "DELETE", f"{BASE}/1/taggings", json={"reference": "t2"}, headers=bob
    )

    assert [t["tag"]["reference"] for t in added.json()["taggings"]] == ["t1", "t2"]
    assert [t["tag"]["reference"] for t in removed.json()["taggings"]] == ["t2"]
    assert last.status_code == 422


async def test_selected_participants(client, seed, auth_headers):
    bob, carol = auth_headers("bob"), auth_headers("carol")
    await create(
        client,
        bob,
        participants="selected-people",
        selectedParticipantsReferences=["enrollment-dave", "enrollment-carol"],
    )
    await create(
        client,
        bob,
        participants="selected-people",
        selectedParticipantsReferences=["enrollment-carol"],
    )
    await create(client, bob)

    several = await client.get(f"{BASE}/1/selected-participants", headers=carol)

    assert several.status_code == 200
    assert [p["reference"] for p in several.json()] == ["enrollment-bob", "enrollment-dave"]
    assert (await client.get(f"{BASE}/2/selected-participants", headers=carol)).status_code == 404
    assert (await client.get(f"{BASE}/3/selected-participants", headers=carol)).status_code == 404


async def test_mark_all_conversations_as_read(client, seed, auth_headers):
    bob, carol = auth_headers("bob"), auth_headers("carol")
    await create(client, bob)
    await create(client, bob)

    response = await client.post(f"{BASE}/mark-all-conversations-as-read", headers=carol)
    unread = await client.get(BASE, params={"isUnread": "true"}, headers=carol)

    assert response.json() == {"readingsInserted": 2}
    assert unread.json()["conversations"] == []


async def test_new_conversation_options(client, seed, auth_headers):
    bob = auth_headers("bob")

    chat = await client.get(f"{BASE}/new/chat", headers=bob)
    unknown = await client.get(f"{BASE}/new/poll", headers=bob)

    assert chat.status_code == 200
    assert chat.json()["type"] == "chat"
    assert chat.json()["tagsRequired"] is False
    assert chat.json()["mayPostAnonymously"] is True
    assert unknown.status_code == 404


async def test_anonymous_author_is_masked(client, seed, auth_headers):
    bob, carol, staff = auth_headers("bob"), auth_headers("carol"), auth_headers("staff")
    await create(client, bob, isAnonymous=True)

    as_carol = (await client.get(f"{BASE}/1", headers=carol)).json()
    as_staff = (await client.get(f"{BASE}/1", headers=staff)).json()

    assert as_carol["conversation"]["authorEnrollment"] == "anonymous"
    assert as_carol["messages"]["messages"][0]["authorEnrollment"] == "anonymous"
    assert as_staff["conversation"]["authorEnrollment"]["reference"] == "enrollment-bob"


async def test_mutations_dispatch_live_updates(client, seed, auth_headers):
    bob = auth_headers("bob")
    list_url = conversations_url("course-1")
    conversation_url = conversations_url("course-1", "1")

    async with get_live_updates().subscribe(list_url) as list_queue:
        async with get_live_updates().subscribe(conversation_url) as conversation_queue:
            await create(client, bob)
            await client.patch(f"{BASE}/1", json={"title": "Edited"}, headers=bob)

            assert list_queue.qsize() == 2
            assert conversation_queue.get_nowait() == conversation_url
            assert conversation_queue.empty()


async def test_live_updates_require_a_visible_conversation(client, seed, auth_headers):
    bob, carol = auth_headers("bob"), auth_headers("carol")
    await create(client, bob, participants="staff")
    live = "/courses/course-1/live-updates"

    assert (await client.get(f"{live}/1", headers=carol)).status_code == 404
    assert (await client.get(f"{live}/2", headers=carol)).status_code == 404
    assert (await client.get("/courses/nope/live-updates", headers=carol)).status_code == 404
    assert (await client.get(live)).status_code == 401
