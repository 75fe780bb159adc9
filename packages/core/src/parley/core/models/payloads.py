"""Wire 事件 payload 定义

客户端入站 payload 与服务端出站 payload 的结构化模型。
"""

from typing import Any

from pydantic import BaseModel, Field

from .enums import MessageStatus, ServerEventType


class UserOnlinePayload(BaseModel):
    """userOnline 入站 payload"""

    user_id: str


class JoinRoomPayload(BaseModel):
    """joinRoom 入站 payload"""

    room_key: str


class SendMessagePayload(BaseModel):
    """chat message 入站 payload，from_id 可省略（以会话身份为准）"""

    to_id: str
    body: str | None = None
    media: str | None = None
    from_id: str | None = None


class DeliveredAckPayload(BaseModel):
    """message delivered 入站 payload"""

    message_id: str


class SeenAckPayload(BaseModel):
    """messages seen 入站 payload：from_id 为消息发送方，to_id 为阅读方"""

    from_id: str
    to_id: str


class StatusChangedPayload(BaseModel):
    """message delivered 出站 payload"""

    message_id: str
    status: MessageStatus


class PresencePayload(BaseModel):
    """userStatus 出站 payload"""

    user_id: str
    online: bool


class ErrorPayload(BaseModel):
    """error 出站 payload"""

    code: str
    message: str
    event: str = Field(default="", description="触发错误的入站事件名")


class ServerEvent(BaseModel):
    """服务端推送帧：{"event": ..., "data": {...}}"""

    event: ServerEventType
    data: dict[str, Any] = Field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        return {"event": self.event.value, "data": self.data}
