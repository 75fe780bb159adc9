"""StatusSynchronizer 单元测试

测试内容：
1. 发送：先落库后推送，房间内所有订阅者收到相同载荷
2. delivered 回执：状态前进，重复回执被吸收
3. seen 回执：单次批量更新，发送方收到一条聚合事件
4. 空消息：ValidationError，不落库不推送
5. 推送失败降级：消息仍已落库
6. 积压订阅者被摘除，不影响发送与其他订阅者
7. 同一房间并发发送：推送顺序与落库顺序一致
8. 房间锁在无人持有时回收
"""

import asyncio

import pytest
from parley.core.exceptions import NotFoundError, ValidationError
from parley.core.models import Identity, MessageStatus, ServerEventType, room_key
from parley.core.store import StoreGroup
from parley.gateway.services.delivery_channel import DeliveryChannel
from parley.gateway.services.status_sync import StatusSynchronizer


@pytest.fixture
def joined(connect, channel: DeliveryChannel, alice: Identity, bob: Identity):
    """alice 与 bob 各一条连接，均已加入双方房间"""

    async def _joined():
        key = room_key(alice.user_id, bob.user_id)
        alice_conn = connect(alice)
        bob_conn = connect(bob)
        await channel.subscribe(alice_conn.connection_id, key)
        await channel.subscribe(bob_conn.connection_id, key)
        return alice_conn, bob_conn

    return _joined


class TestSend:
    """发送"""

    async def test_send_persists_and_publishes(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        joined,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        alice_conn, bob_conn = await joined()

        message = await synchronizer.send(alice.user_id, bob.user_id, body="hi bob")

        history = await store_group.message_store.history(alice.user_id, bob.user_id)
        assert len(history) == 1
        assert history[0].status == MessageStatus.SENT

        alice_events = drain_outbox(alice_conn)
        bob_events = drain_outbox(bob_conn)
        assert len(alice_events) == 1
        assert alice_events == bob_events
        event = bob_events[0]
        assert event.event == ServerEventType.CHAT_MESSAGE
        assert event.data == message.model_dump(mode="json")
        assert event.data["message_id"] == history[0].message_id

    async def test_send_to_unknown_user(self, synchronizer: StatusSynchronizer, alice: Identity):
        with pytest.raises(NotFoundError) as exc_info:
            await synchronizer.send(alice.user_id, "01JNOPE0000000000000000000", body="x")
        assert exc_info.value.code == "USER_NOT_FOUND"

    async def test_empty_message_not_persisted_or_published(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        joined,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        alice_conn, bob_conn = await joined()
        with pytest.raises(ValidationError):
            await synchronizer.send(alice.user_id, bob.user_id, body="   ", media=None)

        assert await store_group.message_store.history(alice.user_id, bob.user_id) == []
        assert drain_outbox(alice_conn) == []
        assert drain_outbox(bob_conn) == []

    async def test_publish_failure_degrades(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        channel: DeliveryChannel,
        monkeypatch: pytest.MonkeyPatch,
        alice: Identity,
        bob: Identity,
    ):
        """推送异常不影响发送结果，消息已落库"""

        async def broken_publish(room, event):
            raise RuntimeError("transport down")

        monkeypatch.setattr(channel, "publish", broken_publish)
        message = await synchronizer.send(alice.user_id, bob.user_id, body="still saved")
        stored = await store_group.message_store.get_message(message.message_id)
        assert stored is not None

    async def test_self_chat(
        self, synchronizer: StatusSynchronizer, store_group: StoreGroup, alice: Identity
    ):
        message = await synchronizer.send(alice.user_id, alice.user_id, body="note to self")
        history = await synchronizer.history(alice.user_id, alice.user_id)
        assert [m.message_id for m in history] == [message.message_id]


class TestDeliveredAck:
    """delivered 回执"""

    async def test_recipient_ack_advances_and_publishes(
        self,
        synchronizer: StatusSynchronizer,
        joined,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        alice_conn, bob_conn = await joined()
        message = await synchronizer.send(alice.user_id, bob.user_id, body="x")
        drain_outbox(alice_conn)
        drain_outbox(bob_conn)

        updated = await synchronizer.ack_delivered(bob.user_id, message.message_id)
        assert updated is not None
        assert updated.status == MessageStatus.DELIVERED

        events = drain_outbox(alice_conn)
        assert len(events) == 1
        assert events[0].event == ServerEventType.MESSAGE_DELIVERED
        assert events[0].data == {"message_id": message.message_id, "status": "delivered"}

    async def test_duplicate_ack_is_absorbed(
        self,
        synchronizer: StatusSynchronizer,
        joined,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        alice_conn, _ = await joined()
        message = await synchronizer.send(alice.user_id, bob.user_id, body="x")
        await synchronizer.ack_delivered(bob.user_id, message.message_id)
        drain_outbox(alice_conn)

        assert await synchronizer.ack_delivered(bob.user_id, message.message_id) is None
        assert synchronizer.absorbed_races == 1
        assert drain_outbox(alice_conn) == []

    async def test_ack_after_seen_does_not_regress(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        alice: Identity,
        bob: Identity,
    ):
        message = await synchronizer.send(alice.user_id, bob.user_id, body="x")
        await synchronizer.ack_seen(bob.user_id, alice.user_id, bob.user_id)

        assert await synchronizer.ack_delivered(bob.user_id, message.message_id) is None
        stored = await store_group.message_store.get_message(message.message_id)
        assert stored.status == MessageStatus.SEEN

    async def test_ack_from_sender_is_absorbed(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        alice: Identity,
        bob: Identity,
    ):
        message = await synchronizer.send(alice.user_id, bob.user_id, body="x")
        assert await synchronizer.ack_delivered(alice.user_id, message.message_id) is None
        stored = await store_group.message_store.get_message(message.message_id)
        assert stored.status == MessageStatus.SENT
        assert synchronizer.absorbed_races == 1

    async def test_unknown_message_is_absorbed(
        self, synchronizer: StatusSynchronizer, bob: Identity
    ):
        assert await synchronizer.ack_delivered(bob.user_id, "01JNOPE0000000000000000000") is None
        assert synchronizer.absorbed_races == 1


class TestSeenAck:
    """seen 回执"""

    async def test_bulk_seen_single_event(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        joined,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        alice_conn, _ = await joined()
        for n in range(3):
            await synchronizer.send(alice.user_id, bob.user_id, body=f"m{n}")
        drain_outbox(alice_conn)

        count = await synchronizer.ack_seen(bob.user_id, alice.user_id, bob.user_id)
        assert count == 3

        events = drain_outbox(alice_conn)
        assert len(events) == 1
        assert events[0].event == ServerEventType.MESSAGES_SEEN
        assert events[0].data == {"from_id": alice.user_id, "to_id": bob.user_id}

        history = await store_group.message_store.history(alice.user_id, bob.user_id)
        assert all(m.status == MessageStatus.SEEN for m in history)

    async def test_second_seen_is_absorbed(
        self,
        synchronizer: StatusSynchronizer,
        joined,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        alice_conn, _ = await joined()
        await synchronizer.send(alice.user_id, bob.user_id, body="x")
        await synchronizer.ack_seen(bob.user_id, alice.user_id, bob.user_id)
        drain_outbox(alice_conn)

        assert await synchronizer.ack_seen(bob.user_id, alice.user_id, bob.user_id) == 0
        assert drain_outbox(alice_conn) == []
        assert synchronizer.absorbed_races == 1

    async def test_seen_by_non_reader_is_absorbed(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        alice: Identity,
        bob: Identity,
    ):
        """发送方不能替接收方标记已读"""
        await synchronizer.send(alice.user_id, bob.user_id, body="x")
        assert await synchronizer.ack_seen(alice.user_id, alice.user_id, bob.user_id) == 0
        assert await store_group.message_store.count_unseen(alice.user_id, bob.user_id) == 1


class TestHistory:
    async def test_history_unknown_peer(self, synchronizer: StatusSynchronizer, alice: Identity):
        with pytest.raises(NotFoundError):
            await synchronizer.history(alice.user_id, "01JNOPE0000000000000000000")


class TestFanOut:
    """房间扇出与顺序"""

    async def test_backlogged_subscriber_does_not_fail_send(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        channel: DeliveryChannel,
        connect,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        key = room_key(alice.user_id, bob.user_id)
        slow = connect(bob, outbox_maxsize=1)
        healthy = connect(alice)
        await channel.subscribe(slow.connection_id, key)
        await channel.subscribe(healthy.connection_id, key)

        first = await synchronizer.send(alice.user_id, bob.user_id, body="one")
        second = await synchronizer.send(alice.user_id, bob.user_id, body="two")

        assert slow.closed is True
        assert slow.close_reason == "dropped"
        assert channel.subscribers(key) == {healthy.connection_id}
        assert [e.data["message_id"] for e in drain_outbox(healthy)] == [
            first.message_id,
            second.message_id,
        ]
        history = await store_group.message_store.history(alice.user_id, bob.user_id)
        assert len(history) == 2

    async def test_concurrent_sends_publish_in_commit_order(
        self,
        synchronizer: StatusSynchronizer,
        store_group: StoreGroup,
        joined,
        drain_outbox,
        alice: Identity,
        bob: Identity,
    ):
        alice_conn, bob_conn = await joined()

        pairs = [(alice.user_id, bob.user_id), (bob.user_id, alice.user_id)]
        await asyncio.gather(
            *(synchronizer.send(*pairs[n % 2], body=f"m{n}") for n in range(20))
        )

        history = await store_group.message_store.history(alice.user_id, bob.user_id)
        committed = [m.message_id for m in history]
        assert len(committed) == 20
        for connection in (alice_conn, bob_conn):
            published = [e.data["message_id"] for e in drain_outbox(connection)]
            assert published == committed

    async def test_room_lock_released_when_idle(
        self,
        synchronizer: StatusSynchronizer,
        alice: Identity,
        bob: Identity,
    ):
        key = room_key(alice.user_id, bob.user_id)
        lock = await synchronizer._get_room_lock(key)
        assert await synchronizer._get_room_lock(key) is lock
        del lock
        assert key not in synchronizer._room_locks

        await synchronizer.send(alice.user_id, bob.user_id, body="x")
        assert len(synchronizer._room_locks) == 0
