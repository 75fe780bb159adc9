"""StatusSynchronizer -- 消息发送与投递状态同步

实现消息状态机 sent -> delivered -> seen 的业务流程：
1. send: 校验 -> 落库 -> 推送到房间（先持久化后推送，同一房间串行）
2. ack_delivered: 接收方回执单条消息 -> compare-and-update -> 推送状态变更
3. ack_seen: 接收方读完会话 -> 批量更新 -> 推送一条聚合 seen 事件

回执竞争（重复回执、未知消息、零条可更新）以 TransientRaceError 在内部
抛出并吸收：记录日志、计数，不返回给客户端。
"""

import asyncio
import weakref

import structlog
from parley.core.exceptions import NotFoundError, PersistenceError, TransientRaceError
from parley.core.models import (
    Message,
    MessageStatus,
    SeenAckPayload,
    ServerEvent,
    ServerEventType,
    StatusChangedPayload,
    room_key,
)
from parley.core.store import StoreGroup

from .delivery_channel import DeliveryChannel

log = structlog.get_logger()


class StatusSynchronizer:
    """消息发送与状态同步服务"""

    def __init__(self, store_group: StoreGroup, channel: DeliveryChannel) -> None:
        self._stores = store_group
        self._channel = channel
        # 无人持有或等待的房间锁随引用释放自动回收
        self._room_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._room_locks_guard = asyncio.Lock()
        self.absorbed_races = 0

    async def send(
        self,
        actor_id: str,
        to_id: str,
        body: str | None = None,
        media: str | None = None,
    ) -> Message:
        """发送消息（HTTP 与 WebSocket 共用入口）

        Raises:
            NotFoundError: 接收方不存在
            ValidationError: 正文与媒体同时为空
            PersistenceError: 落库失败（此时不推送）
        """
        if not await self._stores.user_store.exists(to_id):
            raise NotFoundError(
                f"User with id {to_id} does not exist", code="USER_NOT_FOUND"
            )

        key = room_key(actor_id, to_id)
        lock = await self._get_room_lock(key)
        async with lock:
            try:
                message = await self._stores.message_store.append(
                    actor_id, to_id, body=body, media=media
                )
            except PersistenceError:
                log.error("message_persist_failed", from_id=actor_id, to_id=to_id)
                raise

            log.info(
                "message_sent",
                message_id=message.message_id,
                room_key=key,
                has_media=message.media is not None,
            )
            await self._publish(
                key,
                ServerEvent(
                    event=ServerEventType.CHAT_MESSAGE,
                    data=message.model_dump(mode="json"),
                ),
            )
        return message

    async def ack_delivered(self, actor_id: str, message_id: str) -> Message | None:
        """接收方确认收到消息：sent -> delivered

        Returns:
            流转后的消息；回执被吸收时返回 None
        """
        try:
            return await self._apply_delivered(actor_id, message_id)
        except TransientRaceError as e:
            self._absorb(e, message_id=message_id, actor_id=actor_id)
            return None

    async def ack_seen(self, actor_id: str, from_id: str, to_id: str) -> int:
        """阅读方确认已读会话：from -> to 方向全部推进到 seen

        Returns:
            本次被推进的消息数；回执被吸收时返回 0
        """
        try:
            return await self._apply_seen(actor_id, from_id, to_id)
        except TransientRaceError as e:
            self._absorb(e, from_id=from_id, to_id=to_id, actor_id=actor_id)
            return 0

    async def history(self, actor_id: str, peer_id: str) -> list[Message]:
        """查询当前用户与 peer 的会话历史

        Raises:
            NotFoundError: peer 不存在
        """
        if not await self._stores.user_store.exists(peer_id):
            raise NotFoundError(
                f"User with id {peer_id} does not exist", code="USER_NOT_FOUND"
            )
        return await self._stores.message_store.history(actor_id, peer_id)

    async def _apply_delivered(self, actor_id: str, message_id: str) -> Message:
        message = await self._stores.message_store.get_message(message_id)
        if message is None:
            raise TransientRaceError(
                f"ack for unknown message {message_id}", reason="unknown_message"
            )
        if message.to_id != actor_id:
            raise TransientRaceError(
                "ack from a connection that is not the recipient",
                reason="not_recipient",
            )

        key = message.room_key
        lock = await self._get_room_lock(key)
        async with lock:
            try:
                update = await self._stores.message_store.update_status(
                    message_id, MessageStatus.DELIVERED
                )
            except NotFoundError as e:
                raise TransientRaceError(str(e), reason="unknown_message") from e
            if not update.changed:
                raise TransientRaceError(
                    f"message already {update.message.status}", reason="stale_ack"
                )

            await self._publish(
                key,
                ServerEvent(
                    event=ServerEventType.MESSAGE_DELIVERED,
                    data=StatusChangedPayload(
                        message_id=message_id,
                        status=update.message.status,
                    ).model_dump(mode="json"),
                ),
            )
        return update.message

    async def _apply_seen(self, actor_id: str, from_id: str, to_id: str) -> int:
        if to_id != actor_id:
            raise TransientRaceError(
                "seen ack from a connection that is not the reader",
                reason="not_recipient",
            )

        key = room_key(from_id, to_id)
        lock = await self._get_room_lock(key)
        async with lock:
            count = await self._stores.message_store.mark_all_seen(from_id, to_id)
            if count == 0:
                raise TransientRaceError(
                    "no messages eligible for seen", reason="nothing_to_mark"
                )

            log.info("messages_seen", room_key=key, count=count)
            await self._publish(
                key,
                ServerEvent(
                    event=ServerEventType.MESSAGES_SEEN,
                    data=SeenAckPayload(from_id=from_id, to_id=to_id).model_dump(),
                ),
            )
        return count

    async def _publish(self, key: str, event: ServerEvent) -> None:
        """推送失败只降级记录，消息已落库，可通过历史补齐"""
        try:
            delivered = await self._channel.publish(key, event)
        except Exception as e:
            log.error(
                "publish_failed_degraded",
                room_key=key,
                event_type=event.event.value,
                error_type=type(e).__name__,
            )
            return
        log.debug(
            "event_published",
            room_key=key,
            event_type=event.event.value,
            delivered=delivered,
        )

    def _absorb(self, error: TransientRaceError, **context) -> None:
        self.absorbed_races += 1
        log.info("ack_race_absorbed", reason=error.reason, detail=error.message, **context)

    async def _get_room_lock(self, key: str) -> asyncio.Lock:
        """获取房间级别锁，保证同一房间内 落库 -> 推送 的顺序"""
        async with self._room_locks_guard:
            lock = self._room_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._room_locks[key] = lock
            return lock
