"""Store Protocol 接口定义

定义 MessageStore、UserStore、SessionStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Protocol

from ..models.enums import MessageStatus
from ..models.identity import Identity, Session
from ..models.message import Message
from .message_store import StatusUpdate


class MessageStore(Protocol):
    """Conversation Store 接口

    消息只追加不删除，status 只允许单调前进。
    """

    async def append(
        self,
        from_id: str,
        to_id: str,
        body: str | None = None,
        media: str | None = None,
    ) -> Message:
        """持久化新消息（status=sent）"""
        ...

    async def get_message(self, message_id: str) -> Message | None:
        """根据 message_id 查询消息"""
        ...

    async def history(self, user_a: str, user_b: str) -> list[Message]:
        """查询双方会话历史，按 created_at 正序"""
        ...

    async def update_status(
        self,
        message_id: str,
        new_status: MessageStatus,
    ) -> StatusUpdate:
        """compare-and-update 推进消息状态"""
        ...

    async def mark_all_seen(self, from_id: str, to_id: str) -> int:
        """批量推进 from -> to 方向的消息到 seen，返回受影响数"""
        ...

    async def count_unseen(self, from_id: str, to_id: str) -> int:
        """统计 from -> to 方向尚未 seen 的消息数"""
        ...


class UserStore(Protocol):
    """用户目录接口"""

    async def create_user(
        self,
        username: str,
        email: str,
        profession: str = "",
        location: str = "",
        avatar: str | None = None,
    ) -> Identity:
        """注册新用户"""
        ...

    async def get_user(self, user_id: str) -> Identity | None:
        """根据 user_id 查询用户"""
        ...

    async def get_by_username(self, username: str) -> Identity | None:
        """根据用户名查询用户"""
        ...

    async def exists(self, user_id: str) -> bool:
        """用户是否存在"""
        ...

    async def list_users(self, exclude_user_id: str | None = None) -> list[Identity]:
        """查询用户目录"""
        ...


class SessionStore(Protocol):
    """会话存储接口"""

    async def issue(self, user_id: str) -> str:
        """签发会话，返回明文 token"""
        ...

    async def resolve(self, token: str) -> Session | None:
        """解析未过期会话"""
        ...

    async def revoke(self, token: str) -> bool:
        """注销会话"""
        ...
