"""FieldCodec -- 存储边界的字段加解密

写入前 encode，读取后 decode；业务层始终只接触明文。
空字符串与 None 原样透传，保证 "正文为空" 的语义在存储层可判定。
"""

import hashlib
from pathlib import Path

import structlog
from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import PersistenceError

log = structlog.get_logger()


class FieldCodec:
    """基于 Fernet 的可逆字段变换"""

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key)

    def encode(self, plaintext: str | None) -> str | None:
        """明文 -> 密文"""
        if not plaintext:
            return plaintext
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decode(self, ciphertext: str | None) -> str | None:
        """密文 -> 明文

        Raises:
            PersistenceError: 密文损坏或密钥不匹配
        """
        if not ciphertext:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise PersistenceError("stored field could not be decrypted", e) from e

    @staticmethod
    def digest(value: str) -> str:
        """确定性摘要，用于密文字段的唯一性约束（如 email）"""
        return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")


def load_or_create_key(key: str | None, key_path: Path) -> str:
    """获取字段加密密钥

    优先使用显式配置的 key；否则读取 key_path，文件不存在时生成并持久化，
    保证进程重启后仍能解密历史数据。
    """
    if key:
        return key
    if key_path.exists():
        return key_path.read_text(encoding="ascii").strip()

    key_path.parent.mkdir(parents=True, exist_ok=True)
    new_key = FieldCodec.generate_key()
    key_path.write_text(new_key, encoding="ascii")
    key_path.chmod(0o600)
    log.warning("field_key_generated", path=str(key_path))
    return new_key
