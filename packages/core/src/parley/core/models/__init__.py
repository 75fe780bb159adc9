"""Parley Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    STATUS_ORDER,
    ClientEventType,
    MessageStatus,
    ServerEventType,
    earlier_statuses,
)
from .identity import Identity, Session
from .message import Message, parse_room_key, room_key
from .payloads import (
    DeliveredAckPayload,
    ErrorPayload,
    JoinRoomPayload,
    PresencePayload,
    SeenAckPayload,
    SendMessagePayload,
    ServerEvent,
    StatusChangedPayload,
    UserOnlinePayload,
)

__all__ = [
    # 枚举
    "MessageStatus",
    "ClientEventType",
    "ServerEventType",
    # 状态机
    "STATUS_ORDER",
    "earlier_statuses",
    # Message
    "Message",
    "room_key",
    "parse_room_key",
    # Identity
    "Identity",
    "Session",
    # Payloads
    "UserOnlinePayload",
    "JoinRoomPayload",
    "SendMessagePayload",
    "DeliveredAckPayload",
    "SeenAckPayload",
    "StatusChangedPayload",
    "PresencePayload",
    "ErrorPayload",
    "ServerEvent",
]
