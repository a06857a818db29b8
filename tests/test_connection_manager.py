import asyncio
import uuid

from relay.chat.connection_manager import ConnectionManager
from relay.chat.room_locks import RoomLocks

from conftest import FakeWebSocket


def test_connect_and_disconnect_count_sockets_per_user():
    async def scenario():
        manager = ConnectionManager()
        user = uuid.uuid4()
        phone, laptop = FakeWebSocket(), FakeWebSocket()
        assert await manager.connect(phone, user) == 1
        assert await manager.connect(laptop, user) == 2
        assert manager.is_connected(user)
        assert await manager.disconnect(phone, user) == 1
        assert await manager.disconnect(laptop, user) == 0
        assert not manager.is_connected(user)
        assert await manager.disconnect(laptop, user) == 0

    asyncio.run(scenario())


def test_send_to_users_reaches_every_device_and_skips_excluded_socket():
    async def scenario():
        manager = ConnectionManager()
        alice, bob = uuid.uuid4(), uuid.uuid4()
        a1, a2, b1 = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        await manager.connect(a1, alice)
        await manager.connect(a2, alice)
        await manager.connect(b1, bob)
        room_id = uuid.uuid4()

        reached = await manager.send_to_users([alice, bob], "message_created", {"x": 1}, room_id=room_id, exclude_websocket=a2)

        assert reached == 2
        assert a1.sent == [{"event": "message_created", "room_id": str(room_id), "payload": {"x": 1}}]
        assert a2.sent == []
        assert b1.events("message_created")

    asyncio.run(scenario())


def test_failed_sockets_are_dropped():
    async def scenario():
        manager = ConnectionManager()
        user = uuid.uuid4()
        good, dead = FakeWebSocket(), FakeWebSocket(fail=True)
        await manager.connect(good, user)
        await manager.connect(dead, user)

        reached = await manager.send_to_users([user], "ping", {})

        assert reached == 1
        assert len(good.sent) == 1
        assert await manager.disconnect(good, user) == 0

    asyncio.run(scenario())


def test_slow_socket_does_not_block_delivery():
    class SlowWebSocket(FakeWebSocket):
        async def send_text(self, data):
            await asyncio.sleep(10)

    async def scenario():
        manager = ConnectionManager(send_timeout=0.05)
        fast_user, slow_user = uuid.uuid4(), uuid.uuid4()
        fast, slow = FakeWebSocket(), SlowWebSocket()
        await manager.connect(fast, fast_user)
        await manager.connect(slow, slow_user)

        reached = await asyncio.wait_for(
            manager.send_to_users([fast_user, slow_user], "ping", {}), timeout=1
        )

        assert reached == 1
        assert fast.events("ping")
        assert not manager.is_connected(slow_user)

    asyncio.run(scenario())


def test_room_lock_serializes_holders_and_is_pruned():
    async def scenario():
        locks = RoomLocks()
        room_id = uuid.uuid4()
        order = []

        async def worker(name, delay):
            async with locks.hold(room_id):
                order.append(f"{name}-in")
                await asyncio.sleep(delay)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a", 0.02), worker("b", 0))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0
        assert not locks.is_locked(room_id)

    asyncio.run(scenario())
