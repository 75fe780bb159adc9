"""MessageStore SQLite 实现（Conversation Store）

messages 表 append-only：消息只插入不删除，仅 status 字段可单调前进。
状态更新采用 compare-and-update（WHERE status IN 早于目标的状态），
并发的重复/过期回执不会造成状态回退。
"""

import asyncio
from datetime import UTC, datetime
from typing import NamedTuple

import aiosqlite
from ulid import ULID

from ..config import MEDIA_REF_MAX_LENGTH, MESSAGE_BODY_MAX_LENGTH
from ..exceptions import NotFoundError, PersistenceError, ValidationError
from ..models.enums import MessageStatus, earlier_statuses
from ..models.message import Message
from .codec import FieldCodec

_SELECT_COLUMNS = "message_id, from_id, to_id, body, media, status, created_at"


class StatusUpdate(NamedTuple):
    """update_status 的结果：当前消息 + 本次是否真正发生了流转"""

    message: Message
    changed: bool


class SqliteMessageStore:
    """MessageStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        codec: FieldCodec,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self._codec = codec
        self._write_lock = write_lock or asyncio.Lock()

    async def append(
        self,
        from_id: str,
        to_id: str,
        body: str | None = None,
        media: str | None = None,
    ) -> Message:
        """持久化一条新消息，status=sent，created_at 由服务端生成

        Raises:
            ValidationError: 正文与媒体同时为空，或超出长度限制
            PersistenceError: 写入失败（已回滚）
        """
        body = (body or "").strip()
        media = (media or "").strip() or None
        if not body and not media:
            raise ValidationError("message must have a body or media", field="body")
        if len(body) > MESSAGE_BODY_MAX_LENGTH:
            raise ValidationError(
                f"message body exceeds {MESSAGE_BODY_MAX_LENGTH} characters",
                field="body",
            )
        if media is not None and len(media) > MEDIA_REF_MAX_LENGTH:
            raise ValidationError(
                f"media reference exceeds {MEDIA_REF_MAX_LENGTH} characters",
                field="media",
            )

        message = Message(
            message_id=str(ULID()),
            from_id=from_id,
            to_id=to_id,
            body=body,
            media=media,
            status=MessageStatus.SENT,
            created_at=datetime.now(UTC),
        )
        async with self._write_lock:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO messages (message_id, from_id, to_id, body, media,
                                          status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.message_id,
                        message.from_id,
                        message.to_id,
                        self._codec.encode(message.body),
                        message.media,
                        message.status.value,
                        message.created_at.isoformat(timespec="microseconds"),
                    ),
                )
                await self._conn.commit()
            except aiosqlite.Error as e:
                await self._conn.rollback()
                raise PersistenceError("failed to persist message", e) from e
        return message

    async def get_message(self, message_id: str) -> Message | None:
        """根据 message_id 查询消息"""
        try:
            cursor = await self._conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM messages WHERE message_id = ?",
                (message_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError("failed to load message", e) from e
        if row is None:
            return None
        return self._row_to_message(row)

    async def history(self, user_a: str, user_b: str) -> list[Message]:
        """查询双方会话历史，按 created_at 正序（同一时刻按写入顺序）"""
        try:
            cursor = await self._conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM messages
                WHERE (from_id = ? AND to_id = ?) OR (from_id = ? AND to_id = ?)
                ORDER BY created_at ASC, rowid ASC
                """,
                (user_a, user_b, user_b, user_a),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError("failed to load history", e) from e
        return [self._row_to_message(row) for row in rows]

    async def update_status(
        self,
        message_id: str,
        new_status: MessageStatus,
    ) -> StatusUpdate:
        """单调推进消息状态

        new_status 不晚于当前状态时为幂等 no-op（changed=False）。

        Raises:
            NotFoundError: 消息不存在
            PersistenceError: 写入失败（已回滚）
        """
        allowed_from = earlier_statuses(new_status)
        changed = False
        if allowed_from:
            placeholders = ", ".join("?" for _ in allowed_from)
            async with self._write_lock:
                try:
                    cursor = await self._conn.execute(
                        f"""
                        UPDATE messages SET status = ?
                        WHERE message_id = ? AND status IN ({placeholders})
                        """,
                        (new_status.value, message_id, *(s.value for s in allowed_from)),
                    )
                    changed = cursor.rowcount > 0
                    await self._conn.commit()
                except aiosqlite.Error as e:
                    await self._conn.rollback()
                    raise PersistenceError("failed to update message status", e) from e

        message = await self.get_message(message_id)
        if message is None:
            raise NotFoundError(
                f"Message with id {message_id} does not exist",
                code="MESSAGE_NOT_FOUND",
            )
        return StatusUpdate(message=message, changed=changed)

    async def mark_all_seen(self, from_id: str, to_id: str) -> int:
        """单条 UPDATE 将 from -> to 方向所有未读消息推进到 seen

        Returns:
            受影响的消息数（可能为 0）
        """
        async with self._write_lock:
            try:
                cursor = await self._conn.execute(
                    """
                    UPDATE messages SET status = ?
                    WHERE from_id = ? AND to_id = ? AND status != ?
                    """,
                    (
                        MessageStatus.SEEN.value,
                        from_id,
                        to_id,
                        MessageStatus.SEEN.value,
                    ),
                )
                count = cursor.rowcount
                await self._conn.commit()
            except aiosqlite.Error as e:
                await self._conn.rollback()
                raise PersistenceError("failed to mark messages seen", e) from e
        return count

    async def count_unseen(self, from_id: str, to_id: str) -> int:
        """统计 from -> to 方向尚未 seen 的消息数"""
        try:
            cursor = await self._conn.execute(
                """
                SELECT COUNT(*) FROM messages
                WHERE from_id = ? AND to_id = ? AND status != ?
                """,
                (from_id, to_id, MessageStatus.SEEN.value),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError("failed to count unseen messages", e) from e
        return row[0] if row else 0

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        """将数据库行转换为 Message 模型（解密 body）"""
        return Message(
            message_id=row[0],
            from_id=row[1],
            to_id=row[2],
            body=self._codec.decode(row[3]) or "",
            media=row[4],
            status=MessageStatus(row[5]),
            created_at=datetime.fromisoformat(row[6]),
        )
