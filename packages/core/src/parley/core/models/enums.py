"""枚举定义

包含 MessageStatus 状态机、客户端/服务端 wire 事件名，
以及 STATUS_ORDER 单调顺序（compare-and-update 的依据）。
"""

from enum import StrEnum


class MessageStatus(StrEnum):
    """消息投递状态机：sent -> delivered -> seen"""

    SENT = "sent"
    DELIVERED = "delivered"
    SEEN = "seen"


# 单调顺序：状态只能前进，不能回退
STATUS_ORDER: dict[MessageStatus, int] = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.SEEN: 2,
}


class ClientEventType(StrEnum):
    """客户端 -> 服务端 wire 事件"""

    USER_ONLINE = "userOnline"
    JOIN_ROOM = "joinRoom"
    CHAT_MESSAGE = "chat message"
    MESSAGE_DELIVERED = "message delivered"
    MESSAGES_SEEN = "messages seen"
    DISCONNECT = "disconnect"


class ServerEventType(StrEnum):
    """服务端 -> 客户端 wire 事件"""

    CHAT_MESSAGE = "chat message"
    MESSAGE_DELIVERED = "message delivered"
    MESSAGES_SEEN = "messages seen"
    USER_STATUS = "userStatus"
    ROOM_JOINED = "room joined"
    ERROR = "error"


def earlier_statuses(status: MessageStatus) -> list[MessageStatus]:
    """返回严格早于 status 的所有状态（用于 compare-and-update 条件）"""
    rank = STATUS_ORDER[status]
    return [s for s, r in STATUS_ORDER.items() if r < rank]
