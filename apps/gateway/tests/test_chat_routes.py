"""会话消息路由测试

测试内容：
1. HTTP 发送返回 201 并推送到房间订阅者
2. 历史双向一致、按时间升序
3. 空消息 400，未知 peer 404
"""

from httpx import AsyncClient
from parley.core.models import ServerEventType, room_key
from parley.gateway.services.delivery_channel import Connection


class TestSendMessage:
    """POST /api/chat/{peer_id}"""

    async def test_send_returns_message_and_publishes(
        self, app, client: AsyncClient, register, auth_headers, drain_outbox
    ):
        alice, alice_token = await register("alice")
        bob, _ = await register("bob")

        channel = app.state.delivery_channel
        bob_conn = Connection(bob["user_id"])
        channel.register(bob_conn)
        await channel.subscribe(bob_conn.connection_id, room_key(alice["user_id"], bob["user_id"]))

        resp = await client.post(
            f"/api/chat/{bob['user_id']}",
            json={"body": "over http"},
            headers=auth_headers(alice_token),
        )
        assert resp.status_code == 201
        message = resp.json()
        assert message["status"] == "sent"
        assert message["from_id"] == alice["user_id"]

        events = drain_outbox(bob_conn)
        assert len(events) == 1
        assert events[0].event == ServerEventType.CHAT_MESSAGE
        assert events[0].data == message

    async def test_empty_message(self, client: AsyncClient, register, auth_headers):
        _, alice_token = await register("alice")
        bob, _ = await register("bob")
        resp = await client.post(
            f"/api/chat/{bob['user_id']}",
            json={"body": "  "},
            headers=auth_headers(alice_token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["field"] == "body"

    async def test_unknown_peer(self, client: AsyncClient, register, auth_headers):
        _, alice_token = await register("alice")
        resp = await client.post(
            "/api/chat/01JNOPE0000000000000000000",
            json={"body": "hi"},
            headers=auth_headers(alice_token),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "USER_NOT_FOUND"


class TestHistory:
    """GET /api/chat/{peer_id}"""

    async def test_history_symmetric(self, client: AsyncClient, register, auth_headers):
        alice, alice_token = await register("alice")
        bob, bob_token = await register("bob")

        for token, peer, body in [
            (alice_token, bob, "1"),
            (bob_token, alice, "2"),
            (alice_token, bob, "3"),
        ]:
            resp = await client.post(
                f"/api/chat/{peer['user_id']}", json={"body": body}, headers=auth_headers(token)
            )
            assert resp.status_code == 201

        from_alice = (
            await client.get(f"/api/chat/{bob['user_id']}", headers=auth_headers(alice_token))
        ).json()
        from_bob = (
            await client.get(f"/api/chat/{alice['user_id']}", headers=auth_headers(bob_token))
        ).json()

        assert from_alice == from_bob
        assert from_alice["room_key"] == room_key(alice["user_id"], bob["user_id"])
        assert [m["body"] for m in from_alice["messages"]] == ["1", "2", "3"]

    async def test_history_requires_session(self, client: AsyncClient, register):
        bob, _ = await register("bob")
        resp = await client.get(f"/api/chat/{bob['user_id']}")
        assert resp.status_code == 401
