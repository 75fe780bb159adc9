"""EventDispatcher -- 入站事件的统一分发表

每个入站帧 {"event": ..., "data": ...} 按 ClientEventType 查表分发到处理函数。
处理函数只返回 DispatchResult（回给发起连接的事件 + 是否关闭连接），
不直接回调传输层；房间/全局推送经由 DeliveryChannel 完成。
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import pydantic
import structlog
from parley.core.exceptions import (
    ChatError,
    ForbiddenError,
    Unauthenticated,
    ValidationError,
)
from parley.core.models import (
    ClientEventType,
    DeliveredAckPayload,
    ErrorPayload,
    JoinRoomPayload,
    SeenAckPayload,
    SendMessagePayload,
    ServerEvent,
    ServerEventType,
    UserOnlinePayload,
    parse_room_key,
    room_key,
)
from pydantic import BaseModel, Field

from .delivery_channel import Connection, DeliveryChannel
from .presence import PresenceRegistry
from .status_sync import StatusSynchronizer

log = structlog.get_logger()


class DispatchResult(BaseModel):
    """处理结果：仅回给发起连接的事件，以及是否需要关闭连接"""

    replies: list[ServerEvent] = Field(default_factory=list)
    close: bool = False


Handler = Callable[[Connection, Any], Awaitable[DispatchResult]]
PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _parse(model: type[PayloadT], data: Any) -> PayloadT:
    """将入站 data 解析为 payload 模型，失败时转换为 ValidationError"""
    try:
        return model.model_validate(data if data is not None else {})
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(
            f"invalid payload: {first.get('msg', 'malformed')}", field=field
        ) from e


class EventDispatcher:
    """入站事件分发器"""

    def __init__(
        self,
        synchronizer: StatusSynchronizer,
        presence: PresenceRegistry,
        channel: DeliveryChannel,
    ) -> None:
        self._sync = synchronizer
        self._presence = presence
        self._channel = channel
        self._handlers: dict[ClientEventType, Handler] = {
            ClientEventType.USER_ONLINE: self._on_user_online,
            ClientEventType.JOIN_ROOM: self._on_join_room,
            ClientEventType.CHAT_MESSAGE: self._on_chat_message,
            ClientEventType.MESSAGE_DELIVERED: self._on_message_delivered,
            ClientEventType.MESSAGES_SEEN: self._on_messages_seen,
            ClientEventType.DISCONNECT: self._on_disconnect,
        }

    async def dispatch(self, connection: Connection, frame: Any) -> DispatchResult:
        """分发一个入站帧；ChatError 转换为发给发起连接的 error 事件"""
        event_name = ""
        try:
            if not isinstance(frame, dict):
                raise ValidationError("frame must be a JSON object", field="event")
            event_name = str(frame.get("event", ""))
            try:
                event_type = ClientEventType(event_name)
            except ValueError:
                raise ValidationError(
                    f"unknown event {event_name!r}", field="event"
                ) from None
            handler = self._handlers[event_type]
            return await handler(connection, frame.get("data"))
        except ChatError as e:
            log.info(
                "client_event_rejected",
                client_event=event_name,
                code=e.code,
                detail=e.message,
            )
            error = ServerEvent(
                event=ServerEventType.ERROR,
                data=ErrorPayload(
                    code=e.code, message=e.message, event=event_name
                ).model_dump(),
            )
            return DispatchResult(
                replies=[error], close=isinstance(e, Unauthenticated)
            )

    async def disconnect(self, connection: Connection) -> DispatchResult:
        """传输层检测到连接关闭时调用"""
        return await self._on_disconnect(connection, None)

    async def _on_user_online(self, connection: Connection, data: Any) -> DispatchResult:
        if isinstance(data, str):
            data = {"user_id": data}
        payload = _parse(UserOnlinePayload, data)
        if payload.user_id != connection.user_id:
            raise Unauthenticated("identity does not match session")

        change = await self._presence.mark_online(
            connection.user_id, connection.connection_id
        )
        await self._channel.broadcast(
            ServerEvent(event=ServerEventType.USER_STATUS, data=change.model_dump())
        )
        log.info("presence_changed", user_id=change.user_id, online=True)
        return DispatchResult()

    async def _on_join_room(self, connection: Connection, data: Any) -> DispatchResult:
        if isinstance(data, str):
            data = {"room_key": data}
        payload = _parse(JoinRoomPayload, data)
        try:
            participants = parse_room_key(payload.room_key)
        except ValueError as e:
            raise ValidationError(str(e), field="room_key") from e
        if connection.user_id not in participants:
            raise ForbiddenError("not a participant of this room")

        await self._channel.subscribe(connection.connection_id, payload.room_key)
        return DispatchResult(
            replies=[
                ServerEvent(
                    event=ServerEventType.ROOM_JOINED,
                    data={"room_key": payload.room_key},
                )
            ]
        )

    async def _on_chat_message(self, connection: Connection, data: Any) -> DispatchResult:
        payload = _parse(SendMessagePayload, data)
        if payload.from_id is not None and payload.from_id != connection.user_id:
            raise ValidationError("sender does not match session", field="from_id")

        message = await self._sync.send(
            connection.user_id, payload.to_id, body=payload.body, media=payload.media
        )

        # 发送方未订阅该房间时，直接回送服务端确认后的消息
        key = room_key(message.from_id, message.to_id)
        if connection.connection_id in self._channel.subscribers(key):
            return DispatchResult()
        return DispatchResult(
            replies=[
                ServerEvent(
                    event=ServerEventType.CHAT_MESSAGE,
                    data=message.model_dump(mode="json"),
                )
            ]
        )

    async def _on_message_delivered(
        self, connection: Connection, data: Any
    ) -> DispatchResult:
        payload = _parse(DeliveredAckPayload, data)
        await self._sync.ack_delivered(connection.user_id, payload.message_id)
        return DispatchResult()

    async def _on_messages_seen(self, connection: Connection, data: Any) -> DispatchResult:
        payload = _parse(SeenAckPayload, data)
        await self._sync.ack_seen(connection.user_id, payload.from_id, payload.to_id)
        return DispatchResult()

    async def _on_disconnect(self, connection: Connection, data: Any) -> DispatchResult:
        change = await self._presence.mark_offline(connection.connection_id)
        self._channel.unregister(connection.connection_id)
        connection.close(reason="disconnect")
        if change is not None:
            await self._channel.broadcast(
                ServerEvent(event=ServerEventType.USER_STATUS, data=change.model_dump())
            )
            log.info("presence_changed", user_id=change.user_id, online=False)
        return DispatchResult(close=True)
