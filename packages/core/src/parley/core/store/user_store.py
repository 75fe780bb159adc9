"""UserStore SQLite 实现（用户目录）

凭据与密码不在此存储；这里只保存身份与资料字段。
email/profession/location 经 FieldCodec 加密，email 另存摘要用于唯一性约束。
"""

import asyncio
import re
from datetime import UTC, datetime

import aiosqlite
from ulid import ULID

from ..config import MEDIA_REF_MAX_LENGTH, USERNAME_MIN_LENGTH
from ..exceptions import PersistenceError, ValidationError
from ..models.identity import Identity
from .codec import FieldCodec

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_SELECT_COLUMNS = "user_id, username, email, profession, location, avatar, created_at"


class SqliteUserStore:
    """UserStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        codec: FieldCodec,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self._codec = codec
        self._write_lock = write_lock or asyncio.Lock()

    async def create_user(
        self,
        username: str,
        email: str,
        profession: str = "",
        location: str = "",
        avatar: str | None = None,
    ) -> Identity:
        """注册新用户

        Raises:
            ValidationError: 用户名/邮箱格式不合法或已被占用
            PersistenceError: 写入失败
        """
        username = username.strip()
        email = email.strip()
        if len(username) < USERNAME_MIN_LENGTH:
            raise ValidationError(
                f"Username must be at least {USERNAME_MIN_LENGTH} characters.",
                field="username",
            )
        if not _EMAIL_RE.match(email):
            raise ValidationError("Invalid email format.", field="email")
        if avatar is not None and len(avatar) > MEDIA_REF_MAX_LENGTH:
            raise ValidationError("Avatar reference is too long.", field="avatar")

        email_digest = self._codec.digest(email)
        identity = Identity(
            user_id=str(ULID()),
            username=username,
            email=email,
            profession=profession.strip(),
            location=location.strip(),
            avatar=avatar,
            created_at=datetime.now(UTC),
        )

        async with self._write_lock:
            if await self.get_by_username(username) is not None:
                raise ValidationError(
                    "Username already taken. Choose another.", field="username"
                )
            if await self._email_digest_exists(email_digest):
                raise ValidationError("Email already registered.", field="email")
            try:
                await self._conn.execute(
                    """
                    INSERT INTO users (user_id, username, email, email_digest,
                                       profession, location, avatar, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        identity.user_id,
                        identity.username,
                        self._codec.encode(identity.email),
                        email_digest,
                        self._codec.encode(identity.profession),
                        self._codec.encode(identity.location),
                        identity.avatar,
                        identity.created_at.isoformat(),
                    ),
                )
                await self._conn.commit()
            except aiosqlite.Error as e:
                await self._conn.rollback()
                raise PersistenceError("failed to persist user", e) from e
        return identity

    async def get_user(self, user_id: str) -> Identity | None:
        """根据 user_id 查询用户"""
        return await self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM users WHERE user_id = ?", (user_id,)
        )

    async def get_by_username(self, username: str) -> Identity | None:
        """根据用户名查询用户"""
        return await self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM users WHERE username = ?", (username,)
        )

    async def exists(self, user_id: str) -> bool:
        try:
            cursor = await self._conn.execute(
                "SELECT 1 FROM users WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError("failed to load user", e) from e
        return row is not None

    async def list_users(self, exclude_user_id: str | None = None) -> list[Identity]:
        """查询用户目录，按用户名排序，可排除当前用户"""
        try:
            cursor = await self._conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM users
                WHERE user_id != ?
                ORDER BY username ASC
                """,
                (exclude_user_id or "",),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError("failed to list users", e) from e
        return [self._row_to_identity(row) for row in rows]

    async def _email_digest_exists(self, email_digest: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM users WHERE email_digest = ?", (email_digest,)
        )
        return await cursor.fetchone() is not None

    async def _fetch_one(self, sql: str, params: tuple) -> Identity | None:
        try:
            cursor = await self._conn.execute(sql, params)
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError("failed to load user", e) from e
        if row is None:
            return None
        return self._row_to_identity(row)

    def _row_to_identity(self, row: aiosqlite.Row) -> Identity:
        """将数据库行转换为 Identity 模型（解密资料字段）"""
        return Identity(
            user_id=row[0],
            username=row[1],
            email=self._codec.decode(row[2]) or "",
            profession=self._codec.decode(row[3]) or "",
            location=self._codec.decode(row[4]) or "",
            avatar=row[5],
            created_at=datetime.fromisoformat(row[6]),
        )
