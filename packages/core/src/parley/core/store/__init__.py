"""Parley Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from pathlib import Path

import aiosqlite

from .codec import FieldCodec
from .message_store import SqliteMessageStore, StatusUpdate
from .protocols import MessageStore, SessionStore, UserStore
from .session_store import SqliteSessionStore
from .sqlite_init import init_db
from .user_store import SqliteUserStore


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接与写锁

    所有写操作在同一把 asyncio.Lock 下提交，避免共享连接上的事务交错。
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        codec: FieldCodec,
        session_ttl_s: int,
    ) -> None:
        self.conn = conn
        self.codec = codec
        self.write_lock = asyncio.Lock()
        self.message_store: MessageStore = SqliteMessageStore(conn, codec, self.write_lock)
        self.user_store: UserStore = SqliteUserStore(conn, codec, self.write_lock)
        self.session_store: SessionStore = SqliteSessionStore(
            conn, session_ttl_s, self.write_lock
        )


async def create_store_group(
    db_path: str,
    field_key: str,
    session_ttl_s: int = 14 * 24 * 60 * 60,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        field_key: 字段加密密钥（Fernet）
        session_ttl_s: 会话有效期（秒）

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(
        conn=conn,
        codec=FieldCodec(field_key),
        session_ttl_s=session_ttl_s,
    )


__all__ = [
    "StoreGroup",
    "MessageStore",
    "UserStore",
    "SessionStore",
    "create_store_group",
    "FieldCodec",
    "SqliteMessageStore",
    "SqliteUserStore",
    "SqliteSessionStore",
    "StatusUpdate",
    "init_db",
]
