"""Message Domain Model

一条聊天消息：from/to/created_at 创建后不可变，status 只能单调前进。
房间键由参与双方 ID 排序后拼接得出，不落库，按需计算。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import MessageStatus

ROOM_KEY_SEPARATOR = "_"


class Message(BaseModel):
    """Message 数据模型（body 为解密后的明文）"""

    message_id: str = Field(description="唯一标识，ULID 格式")
    from_id: str = Field(description="发送者 user_id")
    to_id: str = Field(description="接收者 user_id")
    body: str = Field(default="", description="文本内容，可为空（有媒体时）")
    media: str | None = Field(default=None, description="媒体引用（相对路径或 URL）")
    status: MessageStatus = Field(default=MessageStatus.SENT, description="投递状态")
    created_at: datetime = Field(description="创建时间，会话内唯一排序键")

    @property
    def room_key(self) -> str:
        return room_key(self.from_id, self.to_id)


def room_key(user_a: str, user_b: str) -> str:
    """计算双方会话的房间键，与参数顺序无关"""
    first, second = sorted((user_a, user_b))
    return f"{first}{ROOM_KEY_SEPARATOR}{second}"


def parse_room_key(key: str) -> tuple[str, str]:
    """将房间键还原为 (user_a, user_b)

    Raises:
        ValueError: 房间键格式不合法
    """
    parts = key.split(ROOM_KEY_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"invalid room key: {key!r}")
    if room_key(parts[0], parts[1]) != key:
        raise ValueError(f"room key is not normalized: {key!r}")
    return parts[0], parts[1]
