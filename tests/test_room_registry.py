import asyncio
import uuid

import pytest

from relay.core.exceptions import BadRequest, Conflict, NotFound, NotParticipant, NotRoomAdmin
from relay.model.chat_participant import ChatParticipant
from relay.service.room_registry import RoomRegistry

from conftest import FakeWebSocket


@pytest.fixture
def registry(db, hub):
    return RoomRegistry(db, hub)


def test_direct_room_is_idempotent_per_unordered_pair(registry, alice, bob):
    room, created = asyncio.run(registry.get_or_create_direct_room(alice.id, bob.id))
    same, created_again = asyncio.run(registry.get_or_create_direct_room(bob.id, alice.id))

    assert created is True
    assert created_again is False
    assert same.id == room.id
    assert room.room_type == "direct"
    assert {p.user_id for p in room.participants} == {alice.id, bob.id}


def test_concurrent_direct_room_creation_converges(registry, alice, bob):
    async def scenario():
        return await asyncio.gather(
            registry.get_or_create_direct_room(alice.id, bob.id),
            registry.get_or_create_direct_room(bob.id, alice.id),
        )

    (first, c1), (second, c2) = asyncio.run(scenario())
    assert first.id == second.id
    assert sorted([c1, c2]) == [False, True]


def test_direct_room_rejects_self_and_unknown_user(registry, alice, make_user):
    with pytest.raises(BadRequest) as own:
        asyncio.run(registry.get_or_create_direct_room(alice.id, alice.id))
    assert own.value.code == "INVALID_OTHER_USER"

    with pytest.raises(NotFound) as missing:
        asyncio.run(registry.get_or_create_direct_room(alice.id, uuid.uuid4()))
    assert missing.value.code == "USER_NOT_FOUND"

    inactive = make_user(is_active=False)
    with pytest.raises(NotFound):
        asyncio.run(registry.get_or_create_direct_room(alice.id, inactive.id))


def test_direct_room_membership_is_immutable(registry, alice, bob, carol):
    room, _ = asyncio.run(registry.get_or_create_direct_room(alice.id, bob.id))

    with pytest.raises(BadRequest) as add:
        asyncio.run(registry.add_participant(room.id, alice.id, carol.id))
    assert add.value.code == "DIRECT_ROOM_IMMUTABLE"

    with pytest.raises(BadRequest):
        asyncio.run(registry.remove_participant(room.id, alice.id, alice.id))
    assert len(registry.list_participants(room.id, alice.id)) == 2


def test_group_room_creator_is_admin(registry, hub, alice, bob):
    async def scenario():
        bob_ws = FakeWebSocket()
        await hub.connections.connect(bob_ws, bob.id)
        room = await registry.create_group_room(alice.id, "Weekend", [bob.id, alice.id])
        return room, bob_ws

    room, bob_ws = asyncio.run(scenario())

    roles = {p.user_id: p.role for p in room.participants}
    assert roles == {alice.id: "admin", bob.id: "member"}
    assert room.role == "admin"
    assert room.name == "Weekend"
    assert bob_ws.events("participant_joined")


def test_only_admins_add_participants(registry, alice, bob, carol):
    room = asyncio.run(registry.create_group_room(alice.id, "Team", [bob.id]))

    with pytest.raises(NotRoomAdmin):
        asyncio.run(registry.add_participant(room.id, bob.id, carol.id))

    added = asyncio.run(registry.add_participant(room.id, alice.id, carol.id))
    assert added.user_id == carol.id
    assert added.role == "member"

    with pytest.raises(Conflict) as dup:
        asyncio.run(registry.add_participant(room.id, alice.id, carol.id))
    assert dup.value.code == "ALREADY_PARTICIPANT"


def test_membership_checks_distinguish_not_found_from_forbidden(registry, alice, bob, carol):
    room = asyncio.run(registry.create_group_room(alice.id, "Team", [bob.id]))

    with pytest.raises(NotFound) as missing:
        registry.require_member(uuid.uuid4(), alice.id)
    assert missing.value.status_code == 404
    assert missing.value.code == "ROOM_NOT_FOUND"

    with pytest.raises(NotParticipant) as outsider:
        registry.get_room(room.id, carol.id)
    assert outsider.value.status_code == 403


def test_member_can_leave_and_be_readded(db, registry, hub, alice, bob):
    room = asyncio.run(registry.create_group_room(alice.id, "Team", [bob.id]))

    async def leave():
        alice_ws = FakeWebSocket()
        bob_ws = FakeWebSocket()
        await hub.connections.connect(alice_ws, alice.id)
        await hub.connections.connect(bob_ws, bob.id)
        await registry.remove_participant(room.id, bob.id, bob.id)
        return alice_ws, bob_ws

    alice_ws, bob_ws = asyncio.run(leave())
    assert alice_ws.events("participant_left")[0]["payload"]["user_id"] == str(bob.id)
    assert bob_ws.events("participant_left")
    assert not registry.is_member(room.id, bob.id)

    with pytest.raises(NotParticipant):
        registry.get_room(room.id, bob.id)

    asyncio.run(registry.add_participant(room.id, alice.id, bob.id))
    assert registry.is_member(room.id, bob.id)
    rows = db.query(ChatParticipant).filter_by(room_id=room.id, user_id=bob.id).all()
    assert len(rows) == 2
    assert sum(1 for r in rows if r.left_at is None) == 1


def test_members_cannot_remove_others(registry, alice, bob, carol):
    room = asyncio.run(registry.create_group_room(alice.id, "Team", [bob.id, carol.id]))

    with pytest.raises(NotRoomAdmin):
        asyncio.run(registry.remove_participant(room.id, bob.id, carol.id))

    asyncio.run(registry.remove_participant(room.id, alice.id, carol.id))
    assert not registry.is_member(room.id, carol.id)


def test_last_admin_leaving_promotes_earliest_member(registry, alice, bob, carol):
    room = asyncio.run(registry.create_group_room(alice.id, "Team", [bob.id, carol.id]))

    asyncio.run(registry.remove_participant(room.id, alice.id, alice.id))

    roles = {p.user_id: p.role for p in registry.list_participants(room.id, bob.id)}
    assert roles == {bob.id: "admin", carol.id: "member"}


def test_list_rooms_only_shows_active_memberships(registry, alice, bob, carol):
    direct, _ = asyncio.run(registry.get_or_create_direct_room(alice.id, bob.id))
    group = asyncio.run(registry.create_group_room(carol.id, "Team", [alice.id]))

    page = registry.list_rooms(alice.id)
    assert {r.id for r in page.items} == {direct.id, group.id}
    assert page.total == 2
    assert page.total_pages == 1

    only_groups = registry.list_rooms(alice.id, room_type="group")
    assert [r.id for r in only_groups.items] == [group.id]

    asyncio.run(registry.remove_participant(group.id, alice.id, alice.id))
    assert [r.id for r in registry.list_rooms(alice.id).items] == [direct.id]


def test_notifications_toggle(registry, alice, bob):
    room, _ = asyncio.run(registry.get_or_create_direct_room(alice.id, bob.id))

    muted = registry.set_notifications(room.id, alice.id, False)

    assert muted.notifications_enabled is False
    assert registry.get_room(room.id, bob.id).notifications_enabled is True
