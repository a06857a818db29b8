import asyncio
import uuid

import pytest
from sqlalchemy.exc import SQLAlchemyError

from relay.core.exceptions import (
    BadRequest,
    Conflict,
    NotFound,
    NotMessageSender,
    NotParticipant,
    ServiceUnavailable,
)
from relay.crud import chat_participant_crud, chat_room_crud
from relay.model.chat_message import ChatMessage
from relay.service.message_router import MessageRouter
from relay.service.room_registry import RoomRegistry

from conftest import FakeWebSocket


@pytest.fixture
def router(db, hub):
    return MessageRouter(db, hub)


@pytest.fixture
def room(db, hub, alice, bob):
    room = asyncio.run(RoomRegistry(db, hub).create_group_room(alice.id, "Team", [bob.id]))
    return room


def test_send_persists_updates_room_and_fans_out(db, router, hub, room, alice, bob, carol):
    async def scenario():
        alice_ws, bob_ws, carol_ws = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        await hub.connections.connect(alice_ws, alice.id)
        await hub.connections.connect(bob_ws, bob.id)
        await hub.connections.connect(carol_ws, carol.id)
        msg = await router.send(room.id, alice.id, "  hello  ")
        return msg, alice_ws, bob_ws, carol_ws

    msg, alice_ws, bob_ws, carol_ws = asyncio.run(scenario())

    assert msg.content == "hello"
    assert msg.sender_id == alice.id
    assert bob_ws.events("message_created")[0]["payload"]["id"] == str(msg.id)
    assert alice_ws.events("message_created")
    assert carol_ws.sent == []

    stored = chat_room_crud.get_by_id(db, room_id=room.id)
    assert stored.last_message_id == msg.id
    assert stored.last_message_at is not None
    assert chat_participant_crud.get_active(db, room_id=room.id, user_id=bob.id).unread_count == 1
    assert chat_participant_crud.get_active(db, room_id=room.id, user_id=alice.id).unread_count == 0


def test_send_rejects_outsiders_and_unknown_rooms(router, room, carol):
    with pytest.raises(NotParticipant):
        asyncio.run(router.send(room.id, carol.id, "hi"))
    with pytest.raises(NotFound) as missing:
        asyncio.run(router.send(uuid.uuid4(), carol.id, "hi"))
    assert missing.value.code == "ROOM_NOT_FOUND"


def test_send_rejects_blank_content_and_foreign_reply(db, hub, router, room, alice, bob):
    with pytest.raises(BadRequest) as blank:
        asyncio.run(router.send(room.id, alice.id, "   "))
    assert blank.value.code == "EMPTY_CONTENT"

    other_room, _ = asyncio.run(RoomRegistry(db, hub).get_or_create_direct_room(alice.id, bob.id))
    elsewhere = asyncio.run(router.send(other_room.id, alice.id, "elsewhere"))
    with pytest.raises(BadRequest) as reply:
        asyncio.run(router.send(room.id, alice.id, "re", reply_to_id=elsewhere.id))
    assert reply.value.code == "INVALID_REPLY"

    first = asyncio.run(router.send(room.id, alice.id, "first"))
    answer = asyncio.run(router.send(room.id, bob.id, "answer", reply_to_id=first.id))
    assert answer.reply_to_id == first.id


def test_failed_write_is_not_fanned_out(db, router, hub, room, alice, bob, monkeypatch):
    def broken_commit():
        raise SQLAlchemyError("disk full")

    async def scenario():
        bob_ws = FakeWebSocket()
        await hub.connections.connect(bob_ws, bob.id)
        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(ServiceUnavailable):
            await router.send(room.id, alice.id, "lost")
        return bob_ws

    bob_ws = asyncio.run(scenario())
    monkeypatch.undo()
    assert bob_ws.sent == []
    assert db.query(ChatMessage).count() == 0


def test_only_sender_can_edit(router, hub, room, alice, bob):
    msg = asyncio.run(router.send(room.id, alice.id, "draft"))

    with pytest.raises(NotMessageSender) as denied:
        asyncio.run(router.edit(msg.id, bob.id, "hijack"))
    assert denied.value.status_code == 403

    async def edit():
        bob_ws = FakeWebSocket()
        await hub.connections.connect(bob_ws, bob.id)
        edited = await router.edit(msg.id, alice.id, "final")
        return edited, bob_ws

    edited, bob_ws = asyncio.run(edit())
    assert edited.id == msg.id
    assert edited.content == "final"
    assert edited.is_edited is True
    assert edited.edited_at is not None
    assert bob_ws.events("message_edited")[0]["payload"]["content"] == "final"


def test_edit_and_delete_unknown_message(router, alice):
    with pytest.raises(NotFound) as edit:
        asyncio.run(router.edit(uuid.uuid4(), alice.id, "x"))
    assert edit.value.code == "MESSAGE_NOT_FOUND"
    with pytest.raises(NotFound):
        asyncio.run(router.delete(uuid.uuid4(), alice.id))


def test_delete_is_a_tombstone(db, router, hub, room, alice, bob):
    first = asyncio.run(router.send(room.id, alice.id, "one"))
    second = asyncio.run(router.send(room.id, alice.id, "two"))
    third = asyncio.run(router.send(room.id, bob.id, "three"))

    with pytest.raises(NotMessageSender):
        asyncio.run(router.delete(second.id, bob.id))

    async def delete_twice():
        bob_ws = FakeWebSocket()
        await hub.connections.connect(bob_ws, bob.id)
        deleted = await router.delete(second.id, alice.id)
        again = await router.delete(second.id, alice.id)
        return deleted, again, bob_ws

    deleted, again, bob_ws = asyncio.run(delete_twice())
    assert deleted.is_deleted is True
    assert deleted.content is None
    assert again.is_deleted is True
    assert len(bob_ws.events("message_deleted")) == 1

    row = db.get(ChatMessage, second.id)
    assert row is not None
    assert row.content == "two"

    page = router.list_messages(room.id, bob.id)
    assert [m.id for m in page.items] == [third.id, second.id, first.id]
    assert page.items[1].is_deleted is True
    assert page.items[1].content is None

    with pytest.raises(Conflict) as edit_deleted:
        asyncio.run(router.edit(second.id, alice.id, "revive"))
    assert edit_deleted.value.code == "MESSAGE_DELETED"


def test_list_messages_paginates_newest_first(router, room, alice, bob, carol):
    sent = [asyncio.run(router.send(room.id, alice.id, f"m{i}")) for i in range(5)]

    first_page = router.list_messages(room.id, bob.id, page=1, limit=2)
    assert [m.content for m in first_page.items] == ["m4", "m3"]
    assert first_page.total == 5
    assert first_page.total_pages == 3

    older = router.list_messages(room.id, bob.id, limit=10, before_id=sent[2].id)
    assert [m.content for m in older.items] == ["m1", "m0"]

    with pytest.raises(NotParticipant):
        router.list_messages(room.id, carol.id)


def test_list_messages_rejects_foreign_or_unknown_cursor(db, hub, router, room, alice, bob, carol):
    other_room, _ = asyncio.run(RoomRegistry(db, hub).get_or_create_direct_room(alice.id, carol.id))
    elsewhere = asyncio.run(router.send(other_room.id, alice.id, "elsewhere"))
    asyncio.run(router.send(room.id, alice.id, "here"))

    for cursor in (elsewhere.id, uuid.uuid4()):
        with pytest.raises(BadRequest) as invalid:
            router.list_messages(room.id, bob.id, before_id=cursor)
        assert invalid.value.code == "INVALID_CURSOR"


def test_mark_read_resets_unread_and_broadcasts(db, router, hub, room, alice, bob):
    asyncio.run(router.send(room.id, alice.id, "one"))
    asyncio.run(router.send(room.id, alice.id, "two"))
    assert chat_participant_crud.get_active(db, room_id=room.id, user_id=bob.id).unread_count == 2

    async def read():
        alice_ws = FakeWebSocket()
        await hub.connections.connect(alice_ws, alice.id)
        receipt = await router.mark_read(room.id, bob.id)
        return receipt, alice_ws

    receipt, alice_ws = asyncio.run(read())
    assert receipt.user_id == bob.id
    assert alice_ws.events("room_read")[0]["payload"]["user_id"] == str(bob.id)
    part = chat_participant_crud.get_active(db, room_id=room.id, user_id=bob.id)
    assert part.unread_count == 0
    assert part.last_read_at is not None


def test_removed_member_stops_receiving_and_cannot_send(db, hub, router, room, alice, bob):
    async def scenario():
        bob_ws = FakeWebSocket()
        await hub.connections.connect(bob_ws, bob.id)
        await RoomRegistry(db, hub).remove_participant(room.id, alice.id, bob.id)
        await router.send(room.id, alice.id, "after removal")
        return bob_ws

    bob_ws = asyncio.run(scenario())
    assert bob_ws.events("participant_left")
    assert bob_ws.events("message_created") == []
    with pytest.raises(NotParticipant):
        asyncio.run(router.send(room.id, bob.id, "still here?"))


def test_send_clears_sender_typing(router, hub, room, alice):
    async def scenario():
        await hub.typing.start(room.id, alice.id)
        assert hub.typing.is_typing(room.id, alice.id)
        await router.send(room.id, alice.id, "done typing")
        return hub.typing.is_typing(room.id, alice.id)

    assert asyncio.run(scenario()) is False


@pytest.mark.parametrize("remove_first", [True, False])
def test_concurrent_removal_and_send_never_reach_removed_member(
    session_factory, hub, room, alice, bob, remove_first
):
    async def scenario():
        bob_ws = FakeWebSocket()
        await hub.connections.connect(bob_ws, bob.id)
        remove_db, send_db = session_factory(), session_factory()
        try:
            remove = RoomRegistry(remove_db, hub).remove_participant(room.id, alice.id, bob.id)
            send = MessageRouter(send_db, hub).send(room.id, alice.id, "racing")
            await asyncio.gather(*((remove, send) if remove_first else (send, remove)))
        finally:
            remove_db.close()
            send_db.close()
        return bob_ws

    bob_ws = asyncio.run(scenario())
    events = [frame["event"] for frame in bob_ws.sent]
    assert "participant_left" in events
    left_at = events.index("participant_left")
    assert "message_created" not in events[left_at:]
    if remove_first:
        assert "message_created" not in events
