"""DeliveryChannel -- 内存中按房间的事件扇出

每个在线连接持有一个有界 asyncio.Queue 作为发送队列，由该连接的
writer 协程顺序写出；publish 仅做 put_nowait，因此同一房间内的推送顺序
与 publish 调用顺序一致。已关闭或队列已满的连接直接摘除，不重试。
"""

import asyncio
from collections import defaultdict

import structlog
from parley.core.models.payloads import ServerEvent
from ulid import ULID

log = structlog.get_logger()


class Connection:
    """一条实时连接（WebSocket 或测试替身）"""

    def __init__(
        self,
        user_id: str,
        outbox_maxsize: int = 256,
        session_key: str | None = None,
    ) -> None:
        self.connection_id = str(ULID())
        self.user_id = user_id
        # 建立连接所用会话的 token 摘要，注销时据此关闭连接
        self.session_key = session_key
        # None 作为停止 writer 的哨兵
        self.outbox: asyncio.Queue[ServerEvent | None] = asyncio.Queue(
            maxsize=outbox_maxsize
        )
        self.closed = False
        self.close_reason: str | None = None

    def offer(self, event: ServerEvent) -> bool:
        """非阻塞投递，连接已关闭或队列已满时返回 False"""
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self, reason: str = "dropped") -> None:
        """标记关闭并尽力唤醒 writer

        reason 供传输层选择关闭码：dropped（积压摘除）、revoked（会话注销）、
        disconnect（对端断开）。
        """
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason
        try:
            self.outbox.put_nowait(None)
        except asyncio.QueueFull:
            pass


class DeliveryChannel:
    """基于房间的发布/订阅扇出器"""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        # room_key -> set of connection_id
        self._rooms: dict[str, set[str]] = defaultdict(set)
        # connection_id -> set of room_key
        self._memberships: dict[str, set[str]] = defaultdict(set)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def register(self, connection: Connection) -> None:
        """登记一条新连接（尚未加入任何房间）"""
        self._connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> Connection | None:
        """移除连接并退出其全部房间

        Returns:
            被移除的连接，未登记时返回 None
        """
        connection = self._connections.pop(connection_id, None)
        for key in self._memberships.pop(connection_id, set()):
            members = self._rooms.get(key)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._rooms[key]
        return connection

    async def subscribe(self, connection_id: str, room_key: str) -> bool:
        """将连接加入房间（幂等）

        Returns:
            False 如果连接未登记
        """
        if connection_id not in self._connections:
            return False
        self._rooms[room_key].add(connection_id)
        self._memberships[connection_id].add(room_key)
        return True

    async def unsubscribe(self, connection_id: str, room_key: str) -> None:
        """将连接移出房间"""
        self._memberships.get(connection_id, set()).discard(room_key)
        members = self._rooms.get(room_key)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room_key]

    async def publish(self, room_key: str, event: ServerEvent) -> int:
        """向房间内所有订阅者（含发布者本身）推送事件

        Returns:
            成功投递的连接数
        """
        targets = list(self._rooms.get(room_key, set()))
        return self._deliver(targets, event, room_key=room_key)

    async def broadcast(self, event: ServerEvent) -> int:
        """向所有已登记连接推送事件（用于在线状态）"""
        return self._deliver(list(self._connections), event)

    def close_session(self, session_key: str) -> int:
        """关闭并摘除使用该会话建立的全部连接

        Returns:
            被关闭的连接数
        """
        matched = [
            connection_id
            for connection_id, connection in self._connections.items()
            if connection.session_key == session_key
        ]
        for connection_id in matched:
            connection = self.unregister(connection_id)
            if connection is not None:
                connection.close(reason="revoked")
        if matched:
            log.info("session_connections_closed", count=len(matched))
        return len(matched)

    def subscribers(self, room_key: str) -> set[str]:
        return set(self._rooms.get(room_key, set()))

    def rooms_of(self, connection_id: str) -> set[str]:
        return set(self._memberships.get(connection_id, set()))

    def _deliver(
        self,
        connection_ids: list[str],
        event: ServerEvent,
        room_key: str | None = None,
    ) -> int:
        delivered = 0
        dead: list[str] = []
        for connection_id in connection_ids:
            connection = self._connections.get(connection_id)
            if connection is not None and connection.offer(event):
                delivered += 1
            else:
                dead.append(connection_id)

        # 清理已断开或积压的连接
        for connection_id in dead:
            dropped = self.unregister(connection_id)
            if dropped is not None:
                dropped.close()
            log.warning(
                "subscriber_dropped",
                connection_id=connection_id,
                room_key=room_key,
                event_type=event.event.value,
            )
        return delivered
