"""SQLite 数据库初始化

PRAGMA 配置 + 三张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# users 表 DDL（email/profession/location 为密文）
_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    user_id      TEXT PRIMARY KEY,
    username     TEXT NOT NULL,
    email        TEXT NOT NULL DEFAULT '',
    email_digest TEXT NOT NULL DEFAULT '',
    profession   TEXT NOT NULL DEFAULT '',
    location     TEXT NOT NULL DEFAULT '',
    avatar       TEXT,
    created_at   TEXT NOT NULL
);
"""

_USERS_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_username ON users(username);",
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email_digest "
        "ON users(email_digest) WHERE email_digest != '';"
    ),
]

# messages 表 DDL（body 为密文，status 仅允许单调前进）
_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    message_id  TEXT PRIMARY KEY,
    from_id     TEXT NOT NULL,
    to_id       TEXT NOT NULL,
    body        TEXT NOT NULL DEFAULT '',
    media       TEXT,
    status      TEXT NOT NULL DEFAULT 'sent'
                CHECK (status IN ('sent', 'delivered', 'seen')),
    created_at  TEXT NOT NULL,

    FOREIGN KEY (from_id) REFERENCES users(user_id),
    FOREIGN KEY (to_id) REFERENCES users(user_id)
);
"""

_MESSAGES_INDEXES = [
    # 会话内按时间排序
    "CREATE INDEX IF NOT EXISTS idx_messages_pair_ts ON messages(from_id, to_id, created_at);",
    # markAllSeen 批量更新
    "CREATE INDEX IF NOT EXISTS idx_messages_pair_status ON messages(from_id, to_id, status);",
]

# sessions 表 DDL
_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    token_hash  TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL,

    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
"""

_SESSIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions(user_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_USERS_DDL)
    await conn.execute(_MESSAGES_DDL)
    await conn.execute(_SESSIONS_DDL)

    # 创建索引
    for idx_sql in _USERS_INDEXES + _MESSAGES_INDEXES + _SESSIONS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
