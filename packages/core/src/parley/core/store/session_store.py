"""SessionStore SQLite 实现

bearer token 只返回给调用方一次，落库的是其 SHA-256 摘要。
过期会话在解析时视为不存在。
"""

import asyncio
import hashlib
import secrets
from datetime import UTC, datetime, timedelta

import aiosqlite

from ..exceptions import PersistenceError
from ..models.identity import Session


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SqliteSessionStore:
    """SessionStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        ttl_s: int,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self._ttl = timedelta(seconds=ttl_s)
        self._write_lock = write_lock or asyncio.Lock()

    async def issue(self, user_id: str) -> str:
        """为用户签发新会话

        Returns:
            明文 bearer token（仅此一次可见）
        """
        token = secrets.token_urlsafe(32)
        now = datetime.now(UTC)
        async with self._write_lock:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO sessions (token_hash, user_id, created_at, expires_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        hash_token(token),
                        user_id,
                        now.isoformat(),
                        (now + self._ttl).isoformat(),
                    ),
                )
                await self._conn.commit()
            except aiosqlite.Error as e:
                await self._conn.rollback()
                raise PersistenceError("failed to persist session", e) from e
        return token

    async def resolve(self, token: str) -> Session | None:
        """解析 token，返回未过期的会话或 None"""
        try:
            cursor = await self._conn.execute(
                """
                SELECT token_hash, user_id, created_at, expires_at
                FROM sessions WHERE token_hash = ?
                """,
                (hash_token(token),),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError("failed to load session", e) from e
        if row is None:
            return None
        session = Session(
            token_hash=row[0],
            user_id=row[1],
            created_at=datetime.fromisoformat(row[2]),
            expires_at=datetime.fromisoformat(row[3]),
        )
        if session.expires_at <= datetime.now(UTC):
            return None
        return session

    async def revoke(self, token: str) -> bool:
        """注销会话（logout）

        Returns:
            True 如果确实删除了一条会话
        """
        async with self._write_lock:
            try:
                cursor = await self._conn.execute(
                    "DELETE FROM sessions WHERE token_hash = ?",
                    (hash_token(token),),
                )
                await self._conn.commit()
            except aiosqlite.Error as e:
                await self._conn.rollback()
                raise PersistenceError("failed to revoke session", e) from e
        return cursor.rowcount > 0
