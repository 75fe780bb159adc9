"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、字段加密密钥、会话有效期、消息长度限制等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("PARLEY_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "PARLEY_DB_PATH",
        str(_get_base_dir() / "sqlite" / "parley.db"),
    )


def get_field_key_path() -> Path:
    """获取字段加密密钥文件路径（未配置 PARLEY_FIELD_KEY 时使用）"""
    return Path(
        os.environ.get(
            "PARLEY_FIELD_KEY_PATH",
            str(_get_base_dir() / "keys" / "field.key"),
        )
    )


def get_field_key() -> str | None:
    """获取字段加密密钥（Fernet urlsafe base64），未配置时返回 None"""
    return os.environ.get("PARLEY_FIELD_KEY") or None


def get_session_ttl_s() -> int:
    """获取会话有效期（秒），默认 14 天"""
    return int(os.environ.get("PARLEY_SESSION_TTL_S", str(14 * 24 * 60 * 60)))


def get_outbox_maxsize() -> int:
    """获取每个连接的发送队列容量"""
    return int(os.environ.get("PARLEY_OUTBOX_MAXSIZE", "256"))


# 消息正文最大字符数
MESSAGE_BODY_MAX_LENGTH: int = int(
    os.environ.get("PARLEY_MESSAGE_BODY_MAX_LENGTH", "4096")
)

# 媒体引用（相对路径或 URL）最大长度
MEDIA_REF_MAX_LENGTH: int = 512

# 用户名最小长度
USERNAME_MIN_LENGTH: int = 3

# 会话 Cookie 名称
SESSION_COOKIE_NAME: str = "parley_session"
